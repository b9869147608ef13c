"""Pydantic models for aumai-docseal."""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field, PlainSerializer


def _coerce_bytes(value: Any) -> Any:
    if isinstance(value, str):
        text = value[2:] if value[:2] in ("0x", "0X") else value
        try:
            return bytes.fromhex(text)
        except ValueError as exc:
            raise ValueError(f"invalid hex string: {exc}") from exc
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    return value


# Raw bytes in Python, lowercase hex (no prefix) in JSON.
HexBytes = Annotated[
    bytes,
    BeforeValidator(_coerce_bytes),
    PlainSerializer(lambda value: value.hex(), return_type=str, when_used="json"),
]


def _freeze_fields(value: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(value))


# Circuit inputs by name; serialized as a plain object.
InputFields = Annotated[
    Mapping[str, str | tuple[str, ...]],
    AfterValidator(_freeze_fields),
    PlainSerializer(lambda value: dict(value), return_type=dict),
]


class NumberFormat(str, Enum):
    """Presentation of numeric circuit inputs."""

    decimal = "decimal"
    hex = "hex"


# ---------------------------------------------------------------------------
# Certificates
# ---------------------------------------------------------------------------


class Certificate(BaseModel):
    """A parsed X.509 certificate plus the byte ranges the circuit proves over."""

    model_config = ConfigDict(frozen=True)

    der: HexBytes
    subject: str
    issuer: str
    serial_number: int
    not_before: datetime
    not_after: datetime
    public_key_algorithm: str  # dotted OID
    public_key: HexBytes  # RSA modulus without sign byte, or EC X||Y
    rsa_exponent: int | None = None
    curve: str | None = None
    ec_parameters: Literal["named", "explicit"] | None = None
    signature_algorithm: str  # dotted OID
    signature: HexBytes
    tbs: HexBytes
    key_offset: int = Field(ge=0)
    expiration_offset: int = Field(ge=0)
    expiration_length: int = Field(ge=0)

    @property
    def expiration(self) -> bytes:
        """Raw notAfter time value as it appears in the TBS region."""
        end = self.expiration_offset + self.expiration_length
        return self.tbs[self.expiration_offset : end]


class SecurityObject(BaseModel):
    """Decoded Security Object Document (SOD)."""

    model_config = ConfigDict(frozen=True)

    signing_certificate: Certificate
    certificate_index: HexBytes  # 32-byte tree key of the signing certificate
    digest_algorithm: str  # hashlib name, e.g. "sha256"
    data_group_hashes: dict[int, HexBytes]
    encapsulated_content: HexBytes
    signed_attributes: HexBytes  # DER, re-tagged as SET for signing
    signature: HexBytes
    signature_algorithm: str  # dotted OID

    def issuer_signature(self) -> bytes:
        """Signature the master certificate placed on the signing certificate."""
        return self.signing_certificate.signature

    def issuer_public_key(self, master: Certificate) -> bytes:
        """Public key of *master* that verifies :meth:`issuer_signature`."""
        return master.public_key

    def verify_data_group(self, number: int, data: bytes) -> bool:
        """Return True if *data* hashes to the value recorded for DG *number*."""
        expected = self.data_group_hashes.get(number)
        if expected is None:
            return False
        return hashlib.new(self.digest_algorithm, data).digest() == expected


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class PersonDetails(BaseModel):
    """Display-only holder details.  Never fed to a circuit in raw form."""

    first_name: str = ""
    last_name: str = ""
    gender: str = ""
    birth_date: str = ""
    expiry_date: str = ""
    document_number: str = ""
    nationality: str = ""
    issuing_authority: str = ""


class EPassportData(BaseModel):
    """Payload specific to ICAO ePassports."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["passport"] = "passport"
    aa_signature: HexBytes | None = None


class EIDData(BaseModel):
    """Payload specific to generic eID cards."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["eid"] = "eid"


DocumentVariant = Annotated[EPassportData | EIDData, Field(discriminator="kind")]


class Document(BaseModel):
    """A scanned identity document.

    The common fields live here; variant-only fields live in :attr:`variant`,
    which consumers match on exhaustively.
    """

    model_config = ConfigDict(frozen=True)

    doc_code: str
    person_details: PersonDetails = Field(default_factory=PersonDetails)
    dg1: HexBytes
    sod: HexBytes
    dg15: HexBytes | None = None
    dg11: HexBytes | None = None
    variant: DocumentVariant

    @property
    def kind(self) -> str:
        return self.variant.kind

    def serialize(self) -> str:
        return self.model_dump_json()

    @classmethod
    def deserialize(cls, raw: str) -> Document:
        return cls.model_validate_json(raw)


# ---------------------------------------------------------------------------
# Proofs
# ---------------------------------------------------------------------------


class InclusionProof(BaseModel):
    """Membership proof for a trust-tree leaf.

    ``siblings`` are ordered root-to-leaf and zero-padded to the tree depth.
    """

    model_config = ConfigDict(frozen=True)

    key: HexBytes
    value: HexBytes
    siblings: list[HexBytes]
    root: HexBytes


class SMTProof(BaseModel):
    """Sparse Merkle tree proof returned by the ledger."""

    model_config = ConfigDict(frozen=True)

    root: HexBytes
    siblings: list[HexBytes]
    existence: bool


class CircuitInputs(BaseModel):
    """Named numeric inputs for one proving request.

    ``fields`` is a read-only mapping; list-valued inputs are tuples.
    """

    model_config = ConfigDict(frozen=True)

    circuit: str
    fields: InputFields
    number_format: NumberFormat = NumberFormat.decimal


class RegistrationProof(BaseModel):
    """Output of the external prover: public signals plus proof bytes."""

    model_config = ConfigDict(frozen=True)

    pub_signals: list[str]
    proof: HexBytes
    layout_version: int = 1


class PassportInfo(BaseModel):
    """Ledger view of which identity a passport is bound to."""

    active_identity: HexBytes
    identity_reissue_counter: int = Field(ge=0)
    active_passport: HexBytes
    issue_timestamp: int = Field(ge=0)


class MasterList(BaseModel):
    """A versioned set of trusted root certificates.

    ``certificates`` are DER blobs already extracted from the signed envelope.
    ``published_root`` is the trust-tree root held by the ledger, when known.
    """

    version: str
    certificates: list[HexBytes]
    published_root: HexBytes | None = None


class WhitelistData(BaseModel):
    """Decoded voting whitelist attached to a proposal."""

    selector: int
    nationalities: list[str]
    identity_creation_timestamp_upper_bound: int
    identity_counter_upper_bound: int
    sex: str
    birth_date_lower_bound: str
    birth_date_upper_bound: str
    expiration_date_lower_bound: str


__all__ = [
    "Certificate",
    "CircuitInputs",
    "Document",
    "DocumentVariant",
    "EIDData",
    "EPassportData",
    "HexBytes",
    "InclusionProof",
    "MasterList",
    "NumberFormat",
    "PassportInfo",
    "PersonDetails",
    "RegistrationProof",
    "SMTProof",
    "SecurityObject",
    "WhitelistData",
]
