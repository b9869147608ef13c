"""aumai-docseal: ePassport / eID verification for zero-knowledge identity registration."""

from aumai_docseal.certificates import parse_certificate, parse_sod
from aumai_docseal.circuit_inputs import (
    CIRCUIT_VARIANTS,
    CircuitVariant,
    RegistrationContext,
    barrett_reduction_parameter,
    build_registration_inputs,
    extract_dg1,
    format_number,
    from_limbs,
    register_variant,
    to_limbs,
)
from aumai_docseal.config import Settings
from aumai_docseal.dispatcher import classify, dispatcher_data_type, dispatcher_family
from aumai_docseal.errors import (
    DocsealError,
    IdentityAlreadyRegisteredWithAnotherKey,
    MalformedCertificate,
    MalformedDocument,
    MalformedSOD,
    NotFound,
    ProofFetchFailed,
    QueryBoundsViolation,
    RegistrationCancelled,
    RegistrationInProgress,
    RegistrationSubmissionFailed,
    UnsupportedKeyAlgorithm,
    UntrustedIssuer,
)
from aumai_docseal.identity import Identity
from aumai_docseal.ledger import JsonRpcLedger, SMTProofClient
from aumai_docseal.models import (
    Certificate,
    CircuitInputs,
    Document,
    EIDData,
    EPassportData,
    InclusionProof,
    MasterList,
    NumberFormat,
    PassportInfo,
    PersonDetails,
    RegistrationProof,
    SecurityObject,
    SMTProof,
)
from aumai_docseal.orchestrator import (
    RegistrationHooks,
    RegistrationOrchestrator,
    RegistrationState,
)
from aumai_docseal.relayer import RelayerClient
from aumai_docseal.trust_tree import (
    TrustStore,
    TrustTree,
    compute_root,
    prove_inclusion,
    verify_inclusion,
)

__version__ = "0.1.0"

__all__ = [
    "CIRCUIT_VARIANTS",
    "Certificate",
    "CircuitInputs",
    "CircuitVariant",
    "DocsealError",
    "Document",
    "EIDData",
    "EPassportData",
    "Identity",
    "IdentityAlreadyRegisteredWithAnotherKey",
    "InclusionProof",
    "JsonRpcLedger",
    "MalformedCertificate",
    "MalformedDocument",
    "MalformedSOD",
    "MasterList",
    "NotFound",
    "NumberFormat",
    "PassportInfo",
    "PersonDetails",
    "ProofFetchFailed",
    "QueryBoundsViolation",
    "RegistrationCancelled",
    "RegistrationContext",
    "RegistrationHooks",
    "RegistrationInProgress",
    "RegistrationOrchestrator",
    "RegistrationProof",
    "RegistrationState",
    "RegistrationSubmissionFailed",
    "RelayerClient",
    "SMTProof",
    "SMTProofClient",
    "SecurityObject",
    "Settings",
    "TrustStore",
    "TrustTree",
    "UnsupportedKeyAlgorithm",
    "UntrustedIssuer",
    "barrett_reduction_parameter",
    "build_registration_inputs",
    "classify",
    "compute_root",
    "dispatcher_data_type",
    "dispatcher_family",
    "extract_dg1",
    "format_number",
    "from_limbs",
    "parse_certificate",
    "parse_sod",
    "prove_inclusion",
    "register_variant",
    "to_limbs",
    "verify_inclusion",
]
