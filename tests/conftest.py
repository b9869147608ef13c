"""Shared test fixtures for aumai-docseal."""

from __future__ import annotations

import asyncio
import hashlib
from collections.abc import Callable
from datetime import UTC, datetime

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import Encoding, pkcs7
from cryptography.x509.oid import NameOID
from pyasn1.codec.der.encoder import encode as der_encode
from pyasn1.type import univ
from pyasn1_modules import rfc5280

from aumai_docseal.certificates import (
    DataGroupHash,
    DataGroupHashValues,
    LDSSecurityObject,
    parse_certificate,
)
from aumai_docseal.models import (
    Certificate,
    CircuitInputs,
    Document,
    EIDData,
    EPassportData,
    MasterList,
    PassportInfo,
    PersonDetails,
    RegistrationProof,
    SMTProof,
)
from aumai_docseal.trust_tree import TrustTree

NOT_BEFORE = datetime(2024, 1, 1, tzinfo=UTC)
NOT_AFTER = datetime(2034, 1, 1, tzinfo=UTC)
# 16 content bytes, the serial width compact identity records are laid out for.
DSC_SERIAL = 2**126 + 12345
SHA256_OID = "2.16.840.1.101.3.4.2.1"
SK_IDENTITY = 0x1234567890

DG1_PASSPORT = b"P<IRNREZAEI<<ALI<<<<<<<<<<<<<<<<<<<<<<<<<<<<A1234567<8IRN9001014M3401012<<<<<<<<<<<<<<06"


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def root_name(common_name: str) -> x509.Name:
    return x509.Name(
        [
            x509.NameAttribute(NameOID.COUNTRY_NAME, "IR"),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )


def identity_name(
    given_name: str = "ALI",
    surname: str = "REZAEI",
    common_name: str = "0080166075",
    organization: str = "Civil Registry",
) -> x509.Name:
    return x509.Name(
        [
            x509.NameAttribute(NameOID.COUNTRY_NAME, "IR"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
            x509.NameAttribute(NameOID.GIVEN_NAME, given_name),
            x509.NameAttribute(NameOID.SURNAME, surname),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )


def issue(
    subject: x509.Name,
    issuer: x509.Name,
    public_key,
    signing_key,
    serial: int = DSC_SERIAL,
) -> x509.Certificate:
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(public_key)
        .serial_number(serial)
        .not_valid_before(NOT_BEFORE)
        .not_valid_after(NOT_AFTER)
        .sign(signing_key, hashes.SHA256())
    )


def der_length(length: int) -> bytes:
    if length < 0x80:
        return bytes([length])
    body = length.to_bytes((length.bit_length() + 7) // 8, "big")
    return bytes([0x80 | len(body)]) + body


def build_lds(data_groups: dict[int, bytes], hash_oid: str = SHA256_OID) -> bytes:
    """DER LDSSecurityObject over *data_groups* (hashed with SHA-256)."""
    algorithm = rfc5280.AlgorithmIdentifier()
    algorithm["algorithm"] = univ.ObjectIdentifier(hash_oid)
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


def build_sod(lds: bytes, certificate: x509.Certificate, key, wrap: bool = True) -> bytes:
    """CMS SignedData over *lds*, optionally inside the 0x77 application tag."""
    cms = (
        pkcs7.PKCS7SignatureBuilder()
        .set_data(lds)
        .add_signer(certificate, key, hashes.SHA256())
        .sign(Encoding.DER, [pkcs7.PKCS7Options.Binary])
    )
    if not wrap:
        return cms
    return b"\x77" + der_length(len(cms)) + cms


# ---------------------------------------------------------------------------
# Key material
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def root_keys() -> list[rsa.RSAPrivateKey]:
    """Three CSCA keys; the first one issues the document signer."""
    return [rsa.generate_private_key(public_exponent=65537, key_size=2048) for _ in range(3)]


@pytest.fixture(scope="session")
def dsc_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def ec_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


# ---------------------------------------------------------------------------
# Certificates
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def root_certs(root_keys: list[rsa.RSAPrivateKey]) -> list[x509.Certificate]:
    certs = []
    for index, key in enumerate(root_keys):
        name = root_name(f"Root {'ABC'[index]}")
        certs.append(issue(name, name, key.public_key(), key, serial=1000 + index))
    return certs


@pytest.fixture(scope="session")
def root_ders(root_certs: list[x509.Certificate]) -> list[bytes]:
    return [cert.public_bytes(Encoding.DER) for cert in root_certs]


@pytest.fixture(scope="session")
def roots(root_ders: list[bytes]) -> list[Certificate]:
    return [parse_certificate(der) for der in root_ders]


@pytest.fixture(scope="session")
def dsc_cert(
    root_certs: list[x509.Certificate],
    root_keys: list[rsa.RSAPrivateKey],
    dsc_key: rsa.RSAPrivateKey,
) -> x509.Certificate:
    """RSA-2048 document signer laid out as a compact identity record."""
    return issue(identity_name(), root_certs[0].subject, dsc_key.public_key(), root_keys[0])


@pytest.fixture(scope="session")
def dsc_der(dsc_cert: x509.Certificate) -> bytes:
    return dsc_cert.public_bytes(Encoding.DER)


@pytest.fixture(scope="session")
def dsc(dsc_der: bytes) -> Certificate:
    return parse_certificate(dsc_der)


@pytest.fixture(scope="session")
def ec_dsc_cert(
    root_certs: list[x509.Certificate],
    root_keys: list[rsa.RSAPrivateKey],
    ec_key: ec.EllipticCurvePrivateKey,
) -> x509.Certificate:
    return issue(identity_name(), root_certs[0].subject, ec_key.public_key(), root_keys[0])


@pytest.fixture(scope="session")
def ec_self_signed(ec_key: ec.EllipticCurvePrivateKey) -> Certificate:
    """Self-signed P-256 certificate with an ecdsa-with-SHA256 signature."""
    name = root_name("EC Root")
    cert = issue(name, name, ec_key.public_key(), ec_key, serial=77)
    return parse_certificate(cert.public_bytes(Encoding.DER))


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def sod_bytes(dsc_cert: x509.Certificate, dsc_key: rsa.RSAPrivateKey) -> bytes:
    return build_sod(build_lds({1: DG1_PASSPORT}), dsc_cert, dsc_key)


@pytest.fixture(scope="session")
def ec_sod_bytes(ec_dsc_cert: x509.Certificate, ec_key: ec.EllipticCurvePrivateKey) -> bytes:
    return build_sod(build_lds({1: DG1_PASSPORT}), ec_dsc_cert, ec_key)


@pytest.fixture()
def passport(sod_bytes: bytes) -> Document:
    return Document(
        doc_code="P",
        person_details=PersonDetails(first_name="ALI", last_name="REZAEI", nationality="IRN"),
        dg1=DG1_PASSPORT,
        sod=sod_bytes,
        variant=EPassportData(),
    )


@pytest.fixture()
def eid(sod_bytes: bytes) -> Document:
    return Document(doc_code="I", dg1=DG1_PASSPORT, sod=sod_bytes, variant=EIDData())


# ---------------------------------------------------------------------------
# Trust material
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def master_list(root_ders: list[bytes], roots: list[Certificate]) -> MasterList:
    """All three roots, with the root the ledger publishes for them."""
    return MasterList(
        version="2024-01",
        certificates=root_ders,
        published_root=TrustTree.build(roots).root(),
    )


@pytest.fixture(scope="session")
def master_list_without_issuer(root_ders: list[bytes], roots: list[Certificate]) -> MasterList:
    return MasterList(
        version="2024-01-no-issuer",
        certificates=root_ders[1:],
        published_root=TrustTree.build(roots[1:]).root(),
    )


# ---------------------------------------------------------------------------
# Fakes for the ledger, relayer and prover
# ---------------------------------------------------------------------------


SMT_ROOT = bytes.fromhex("11" * 32)
SMT_SIBLINGS = [bytes.fromhex("22" * 32), bytes.fromhex("33" * 32)]


class FakeLedger:
    """In-memory ledger.  ``existence`` answers are consumed in order."""

    def __init__(
        self,
        existence: list[bool] | None = None,
        active_identity: int = 0,
        siblings: list[bytes] | None = None,
    ) -> None:
        self.existence = list(existence or [True])
        self.active_identity = active_identity
        self.siblings = SMT_SIBLINGS if siblings is None else siblings
        self.proof_requests: list[tuple[str, bytes]] = []
        self.info_requests: list[tuple[str, bytes]] = []

    async def get_proof(self, contract_address: str, key: bytes) -> SMTProof:
        self.proof_requests.append((contract_address, key))
        existence = self.existence.pop(0) if len(self.existence) > 1 else self.existence[0]
        return SMTProof(root=SMT_ROOT, siblings=self.siblings, existence=existence)

    async def get_passport_info(self, contract_address: str, key: bytes) -> PassportInfo:
        self.info_requests.append((contract_address, key))
        return PassportInfo(
            active_identity=self.active_identity.to_bytes(32, "big"),
            identity_reissue_counter=0,
            active_passport=bytes(32),
            issue_timestamp=0,
        )


class FakeRelayer:
    def __init__(self) -> None:
        self.submissions: list[tuple[bytes, str]] = []

    async def submit(self, tx_data: bytes, destination: str) -> str:
        self.submissions.append((tx_data, destination))
        return f"tx-{len(self.submissions)}"


class EchoProver:
    """Returns the identity secret as the identity key signal."""

    def __init__(self, gate: asyncio.Event | None = None) -> None:
        self.gate = gate
        self.requests: list[CircuitInputs] = []

    async def prove(
        self,
        circuit: str,
        inputs: CircuitInputs,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> RegistrationProof:
        self.requests.append(inputs)
        if on_progress is not None:
            on_progress(1, 1)
        if self.gate is not None:
            await self.gate.wait()
        sk = inputs.fields["sk_identity"]
        return RegistrationProof(pub_signals=["111", "222", "333", sk], proof=b"\x01\x02\x03")


@pytest.fixture()
def fake_ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture()
def fake_relayer() -> FakeRelayer:
    return FakeRelayer()


@pytest.fixture()
def echo_prover() -> EchoProver:
    return EchoProver()


@pytest.fixture()
def ledger_factory() -> type[FakeLedger]:
    return FakeLedger


@pytest.fixture()
def prover_factory() -> type[EchoProver]:
    return EchoProver


@pytest.fixture()
def make_lds() -> Callable[..., bytes]:
    return build_lds


@pytest.fixture()
def make_sod() -> Callable[..., bytes]:
    return build_sod


@pytest.fixture()
def issue_identity_certificate(
    root_certs: list[x509.Certificate],
    root_keys: list[rsa.RSAPrivateKey],
    dsc_key: rsa.RSAPrivateKey,
) -> Callable[..., Certificate]:
    """Issue an identity-record certificate under the first root with custom names."""

    def _issue(**names: str) -> Certificate:
        cert = issue(identity_name(**names), root_certs[0].subject, dsc_key.public_key(), root_keys[0])
        return parse_certificate(cert.public_bytes(Encoding.DER))

    return _issue


@pytest.fixture()
def dg1_passport() -> bytes:
    return DG1_PASSPORT
