"""aumai-docseal quickstart: offline demonstrations of the main features.

Run this file directly to verify your installation:

    python examples/quickstart.py

Every demo works on a throwaway CSCA / document signer pair generated in
memory.  The registration demo swaps the ledger, relayer and prover for
in-memory stand-ins, so no network access is needed.
"""

from __future__ import annotations

import asyncio
import hashlib
from datetime import UTC, datetime

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import Encoding, pkcs7
from cryptography.x509.oid import NameOID
from pyasn1.codec.der.encoder import encode as der_encode
from pyasn1.type import univ
from pyasn1_modules import rfc5280

from aumai_docseal import (
    Document,
    EPassportData,
    MasterList,
    PassportInfo,
    RegistrationHooks,
    RegistrationOrchestrator,
    RegistrationProof,
    SMTProof,
    SMTProofClient,
    TrustStore,
    TrustTree,
    classify,
    extract_dg1,
    parse_certificate,
    parse_sod,
    prove_inclusion,
    to_limbs,
    verify_inclusion,
)
from aumai_docseal.certificates import DataGroupHash, DataGroupHashValues, LDSSecurityObject
from aumai_docseal.query import build_query_inputs, compute_event_data

DG1 = b"P<IRNREZAEI<<ALI<<<<<<<<<<<<<<<<<<<<<<<<<<<<A1234567<8IRN9001014M3401012<<<<<<<<<<<<<<06"


# ---------------------------------------------------------------------------
# Fixture material
# ---------------------------------------------------------------------------


def _name(*attributes: tuple[x509.ObjectIdentifier, str]) -> x509.Name:
    return x509.Name([x509.NameAttribute(oid, value) for oid, value in attributes])


def _issue(subject, issuer, public_key, signing_key, serial: int) -> x509.Certificate:
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(public_key)
        .serial_number(serial)
        .not_valid_before(datetime(2024, 1, 1, tzinfo=UTC))
        .not_valid_after(datetime(2034, 1, 1, tzinfo=UTC))
        .sign(signing_key, hashes.SHA256())
    )


def _lds(data_groups: dict[int, bytes]) -> bytes:
    algorithm = rfc5280.AlgorithmIdentifier()
    algorithm["algorithm"] = univ.ObjectIdentifier("2.16.840.1.101.3.4.2.1")
    values = DataGroupHashValues()
    for position, (number, content) in enumerate(sorted(data_groups.items())):
        entry = DataGroupHash()
        entry["dataGroupNumber"] = number
        entry["dataGroupHashValue"] = hashlib.sha256(content).digest()
        values.setComponentByPosition(position, entry)
    lds = LDSSecurityObject()
    lds["version"] = 0
    lds["hashAlgorithm"] = algorithm
    lds["dataGroupHashValues"] = values
    return der_encode(lds)


def make_material() -> tuple[list[bytes], bytes, bytes]:
    """Return (CSCA DER list, document signer DER, SOD bytes)."""
    csca_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    dsc_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    csca_name = _name((NameOID.COUNTRY_NAME, "IR"), (NameOID.COMMON_NAME, "Demo CSCA"))
    csca = _issue(csca_name, csca_name, csca_key.public_key(), csca_key, serial=1)
    dsc_name = _name(
        (NameOID.COUNTRY_NAME, "IR"),
        (NameOID.ORGANIZATION_NAME, "Civil Registry"),
        (NameOID.GIVEN_NAME, "ALI"),
        (NameOID.SURNAME, "REZAEI"),
        (NameOID.COMMON_NAME, "0080166075"),
    )
    dsc = _issue(dsc_name, csca_name, dsc_key.public_key(), csca_key, serial=2**126 + 1)
    cms = (
        pkcs7.PKCS7SignatureBuilder()
        .set_data(_lds({1: DG1}))
        .add_signer(dsc, dsc_key, hashes.SHA256())
        .sign(Encoding.DER, [pkcs7.PKCS7Options.Binary])
    )
    length = len(cms).to_bytes(2, "big")
    sod = b"\x77\x82" + length + cms
    return [csca.public_bytes(Encoding.DER)], dsc.public_bytes(Encoding.DER), sod


# ---------------------------------------------------------------------------
# Demo 1: SOD inspection and dispatcher selection
# ---------------------------------------------------------------------------


def demo_inspect_sod(sod_bytes: bytes) -> None:
    print("\n=== Demo 1: SOD inspection ===")
    sod = parse_sod(sod_bytes)
    print(f"  Digest      : {sod.digest_algorithm}")
    print(f"  DG1 hash ok : {sod.verify_data_group(1, DG1)}")
    print(f"  Signer      : {sod.signing_certificate.subject}")
    print(f"  Dispatcher  : {classify(sod.signing_certificate)}")


# ---------------------------------------------------------------------------
# Demo 2: trust tree and inclusion proof
# ---------------------------------------------------------------------------


def demo_trust_tree(csca_ders: list[bytes]) -> None:
    print("\n=== Demo 2: Trust tree ===")
    roots = [parse_certificate(der) for der in csca_ders]
    tree = TrustTree.build(roots)
    proof = prove_inclusion(tree, roots[0])
    print(f"  Root        : 0x{tree.root().hex()}")
    print(f"  Proof valid : {verify_inclusion(proof, tree.root())}")


# ---------------------------------------------------------------------------
# Demo 3: circuit encodings
# ---------------------------------------------------------------------------


def demo_encodings(dsc_der: bytes) -> None:
    print("\n=== Demo 3: Circuit encodings ===")
    dsc = parse_certificate(dsc_der)
    dg1 = extract_dg1(dsc.tbs)
    print(f"  DG1 record  : {len(dg1)} bytes, country {dg1[:2].decode()}")
    limbs = to_limbs(int.from_bytes(dsc.public_key, "big"))
    print(f"  Modulus     : {len(limbs)} limbs of 120 bits")
    inputs = build_query_inputs(
        id_state_root=1,
        sk_identity=0x1234567890,
        pk_passport_hash=2,
        dg1=dg1,
        siblings=[0] * 80,
        timestamp=1_700_000_000,
        identity_counter=0,
        event_data=int(compute_event_data([0]), 16),
    )
    print(f"  Query inputs: {inputs.circuit} with {len(inputs.fields)} fields")


# ---------------------------------------------------------------------------
# Demo 4: offline registration
# ---------------------------------------------------------------------------


class MemoryLedger:
    async def get_proof(self, contract_address: str, key: bytes) -> SMTProof:
        return SMTProof(root=bytes(32), siblings=[], existence=True)

    async def get_passport_info(self, contract_address: str, key: bytes) -> PassportInfo:
        return PassportInfo(
            active_identity=bytes(32),
            identity_reissue_counter=0,
            active_passport=bytes(32),
            issue_timestamp=0,
        )


class MemoryRelayer:
    async def submit(self, tx_data: bytes, destination: str) -> str:
        return "demo-tx-" + hashlib.sha256(tx_data).hexdigest()[:8]


class EchoProver:
    async def prove(self, circuit, inputs, on_progress=None) -> RegistrationProof:
        sk = inputs.fields["sk_identity"]
        return RegistrationProof(pub_signals=["1", "2", "3", sk], proof=b"\x00")


def demo_registration(csca_ders: list[bytes], sod_bytes: bytes) -> None:
    print("\n=== Demo 4: Offline registration ===")
    roots = [parse_certificate(der) for der in csca_ders]
    master_list = MasterList(
        version="demo", certificates=csca_ders, published_root=TrustTree.build(roots).root()
    )
    ledger = MemoryLedger()
    orchestrator = RegistrationOrchestrator(
        trust_store=TrustStore(),
        master_list=master_list,
        smt_client=SMTProofClient(ledger),
        ledger=ledger,
        relayer=MemoryRelayer(),
        prover=EchoProver(),
        hooks=RegistrationHooks(
            on_stage=lambda state: print(f"  Stage       : {state.value}"),
            on_register=lambda tx_id: print(f"  Transaction : {tx_id}"),
        ),
    )
    document = Document(doc_code="P", dg1=DG1, sod=sod_bytes, variant=EPassportData())
    identity = asyncio.run(orchestrator.register(document, 0x1234567890))
    print(f"  Identity key: {identity.identity_key}")


def main() -> None:
    csca_ders, dsc_der, sod_bytes = make_material()
    demo_inspect_sod(sod_bytes)
    demo_trust_tree(csca_ders)
    demo_encodings(dsc_der)
    demo_registration(csca_ders, sod_bytes)


if __name__ == "__main__":
    main()
