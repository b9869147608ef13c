"""Registration state machine.

One :class:`RegistrationOrchestrator` drives at most one attempt at a time::

    IDLE -> FETCHING_INCLUSION_PROOF -> BUILDING_INPUTS -> GENERATING_PROOF -> REGISTERED

Any failure moves the attempt to ``FAILED`` and records the error in
:attr:`RegistrationOrchestrator.failure`.  Cancellation is honoured only when
entering a stage.
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, assert_never

from eth_utils import keccak

from aumai_docseal.calldata import encode_register_certificate, encode_register_identity
from aumai_docseal.certificates import parse_sod
from aumai_docseal.circuit_inputs import RegistrationContext, build_registration_inputs
from aumai_docseal.config import Settings
from aumai_docseal.dispatcher import classify, dispatcher_data_type
from aumai_docseal.errors import (
    IdentityAlreadyRegisteredWithAnotherKey,
    RegistrationCancelled,
    RegistrationInProgress,
    UntrustedIssuer,
)
from aumai_docseal.identity import Identity, parse_signal
from aumai_docseal.ledger import Ledger, SMTProofClient
from aumai_docseal.models import (
    Certificate,
    CircuitInputs,
    Document,
    EIDData,
    EPassportData,
    InclusionProof,
    MasterList,
    RegistrationProof,
    SecurityObject,
    SMTProof,
)
from aumai_docseal.relayer import Relayer
from aumai_docseal.trust_tree import TrustStore, TrustTree, prove_inclusion, verify_inclusion

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class RegistrationState(str, Enum):
    IDLE = "idle"
    FETCHING_INCLUSION_PROOF = "fetching_inclusion_proof"
    BUILDING_INPUTS = "building_inputs"
    GENERATING_PROOF = "generating_proof"
    REGISTERED = "registered"
    FAILED = "failed"


class Prover(Protocol):
    """Black-box proof generation: inputs in, proof out."""

    async def prove(
        self,
        circuit: str,
        inputs: CircuitInputs,
        on_progress: ProgressCallback | None = None,
    ) -> RegistrationProof: ...


@dataclass
class RegistrationHooks:
    """Progress callbacks for the presentation layer.

    ``on_register`` receives the relayer transaction id, or None when the
    identity was already registered with the same key.
    """

    on_stage: Callable[[RegistrationState], None] | None = None
    on_download_progress: ProgressCallback | None = None
    on_generate_proof: Callable[[str], None] | None = None
    on_register: Callable[[str | None], None] | None = None


class RegistrationOrchestrator:
    """Runs registration attempts against one trust store and ledger."""

    def __init__(
        self,
        *,
        trust_store: TrustStore,
        master_list: MasterList,
        smt_client: SMTProofClient,
        ledger: Ledger,
        relayer: Relayer,
        prover: Prover,
        settings: Settings | None = None,
        hooks: RegistrationHooks | None = None,
    ) -> None:
        self._trust_store = trust_store
        self._master_list = master_list
        self._smt_client = smt_client
        self._ledger = ledger
        self._relayer = relayer
        self._prover = prover
        self._settings = settings or Settings()
        self._hooks = hooks or RegistrationHooks()
        self._state = RegistrationState.IDLE
        self._failure: Exception | None = None
        self._busy = False
        self._cancel_requested = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> RegistrationState:
        return self._state

    @property
    def failure(self) -> Exception | None:
        """Error that moved the last attempt to ``FAILED``."""
        return self._failure

    @property
    def busy(self) -> bool:
        return self._busy

    def cancel(self) -> None:
        """Request cancellation; takes effect at the next stage boundary."""
        if self._busy:
            self._cancel_requested = True

    def _set_state(self, state: RegistrationState) -> None:
        self._state = state
        logger.info("registration stage: %s", state.value)
        if self._hooks.on_stage is not None:
            self._hooks.on_stage(state)

    def _enter(self, state: RegistrationState) -> None:
        if self._cancel_requested:
            raise RegistrationCancelled(f"registration cancelled before {state.value}")
        self._set_state(state)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def register(self, document: Document, sk_identity: int) -> Identity:
        """Register *document* under the identity secret *sk_identity*.

        Raises:
            RegistrationInProgress: if another attempt is still running.
            UntrustedIssuer: if the document does not chain to a trusted
                root known to the ledger.
            IdentityAlreadyRegisteredWithAnotherKey: if the ledger binds the
                document to a different identity key.
            RegistrationCancelled: if :meth:`cancel` was called.
        """
        if self._busy:
            raise RegistrationInProgress("a registration attempt is already running")
        self._busy = True
        self._cancel_requested = False
        self._failure = None
        self._state = RegistrationState.IDLE
        try:
            return await self._run(document, sk_identity)
        except Exception as exc:
            self._failure = exc
            self._set_state(RegistrationState.FAILED)
            logger.warning("registration failed: %s", type(exc).__name__)
            raise
        finally:
            self._busy = False
            self._cancel_requested = False

    async def _run(self, document: Document, sk_identity: int) -> Identity:
        self._enter(RegistrationState.FETCHING_INCLUSION_PROOF)
        sod = parse_sod(document.sod)
        tree = self._trust_store.tree_for(self._master_list)
        master = tree.find_issuer(sod.signing_certificate)
        if master is None:
            raise UntrustedIssuer("issuer of the signing certificate is not a trusted root")
        inclusion = prove_inclusion(tree, master)
        self._check_root(tree, inclusion)
        smt_proof = await self._certificate_proof(sod, master, inclusion)

        self._enter(RegistrationState.BUILDING_INPUTS)
        context = RegistrationContext(
            document=document,
            sod=sod,
            master=master,
            dispatcher=self._dispatcher(document, sod, master),
            sk_identity=sk_identity,
            certificates_root=smt_proof.root,
            siblings=list(smt_proof.siblings),
            number_format=self._settings.number_format,
            limb_bits=self._settings.limb_bits,
            overflow_bits=self._settings.barrett_overflow_bits,
        )
        inputs = build_registration_inputs(context)

        self._enter(RegistrationState.GENERATING_PROOF)
        if self._hooks.on_generate_proof is not None:
            self._hooks.on_generate_proof(inputs.circuit)
        proof = await self._prover.prove(
            inputs.circuit, inputs, self._hooks.on_download_progress
        )
        identity = Identity.from_proof(document, proof)

        if self._cancel_requested:
            raise RegistrationCancelled("registration cancelled before submission")
        tx_id = await self._submit_identity(identity, context, inputs.circuit)
        if self._hooks.on_register is not None:
            self._hooks.on_register(tx_id)
        self._set_state(RegistrationState.REGISTERED)
        return identity

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _check_root(self, tree: TrustTree, inclusion: InclusionProof) -> None:
        root = tree.root()
        if not verify_inclusion(inclusion, root):
            raise UntrustedIssuer("inclusion proof does not recompute to the trust tree root")
        published = self._trust_store.published_root
        if published is not None and not hmac.compare_digest(root, published):
            raise UntrustedIssuer(
                f"trust tree for master list {self._trust_store.version} "
                "does not match the published root"
            )

    async def _certificate_proof(
        self, sod: SecurityObject, master: Certificate, inclusion: InclusionProof
    ) -> SMTProof:
        contract = self._settings.certificates_smt_contract
        proof = await self._smt_client.get_proof(contract, sod.certificate_index)
        if proof.existence:
            return proof
        if not self._settings.register_missing_certificates:
            raise UntrustedIssuer("signing certificate is not registered on the ledger")

        signing = sod.signing_certificate
        calldata = encode_register_certificate(
            data_type=dispatcher_data_type(classify(master)),
            tbs=signing.tbs,
            key_offset=signing.key_offset,
            expiration_offset=signing.expiration_offset,
            signature=signing.signature,
            master_public_key=master.public_key,
            siblings=inclusion.siblings,
        )
        tx_id = await self._relayer.submit(calldata, self._settings.registration_contract)
        logger.info("signing certificate submitted for registration: %s", tx_id)

        proof = await self._smt_client.get_proof(contract, sod.certificate_index)
        if not proof.existence:
            raise UntrustedIssuer("signing certificate is still absent from the ledger")
        return proof

    @staticmethod
    def _dispatcher(document: Document, sod: SecurityObject, master: Certificate) -> str:
        # The circuit verifies the signature made with this key.
        variant = document.variant
        match variant:
            case EPassportData():
                return classify(sod.signing_certificate)
            case EIDData():
                return classify(master)
            case _:
                assert_never(variant)

    @staticmethod
    def _active_authentication(document: Document) -> tuple[bytes, bytes]:
        variant = document.variant
        match variant:
            case EPassportData(aa_signature=signature):
                return signature or b"", document.dg15 or b""
            case EIDData():
                return b"", b""
            case _:
                assert_never(variant)

    async def _submit_identity(
        self, identity: Identity, context: RegistrationContext, circuit: str
    ) -> str | None:
        info = await self._ledger.get_passport_info(
            self._settings.state_keeper_contract, identity.passport_info_key()
        )
        identity_key = parse_signal(identity.identity_key)
        active = int.from_bytes(info.active_identity, "big")
        if active and active != identity_key:
            raise IdentityAlreadyRegisteredWithAnotherKey(
                "document is bound to a different identity key",
                active_identity="0x" + info.active_identity.hex(),
            )
        if active == identity_key:
            logger.info("identity already registered with this key")
            return None

        signature, public_key = self._active_authentication(identity.document)
        calldata = encode_register_identity(
            certificates_root=context.certificates_root,
            identity_key=identity_key,
            dg1_commitment=parse_signal(identity.dg1_commitment),
            data_type=dispatcher_data_type(context.dispatcher),
            zk_type=keccak(text=circuit),
            signature=signature,
            public_key=public_key,
            passport_hash=parse_signal(identity.passport_hash).to_bytes(32, "big"),
            proof=identity.registration_proof.proof,
        )
        return await self._relayer.submit(calldata, self._settings.registration_contract)


__all__ = [
    "Prover",
    "RegistrationHooks",
    "RegistrationOrchestrator",
    "RegistrationState",
]
