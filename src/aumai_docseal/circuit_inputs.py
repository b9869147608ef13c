"""Circuit input construction.

The proving system works over a field much smaller than RSA moduli and
signatures, so large integers are split into fixed-width limbs, least
significant limb first.  Builders are chosen from :data:`CIRCUIT_VARIANTS` by
``(document kind, dispatcher family)``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature

from aumai_docseal.dispatcher import FAMILY_ECDSA, FAMILY_RSA, dispatcher_family
from aumai_docseal.errors import MalformedDocument, UnsupportedKeyAlgorithm
from aumai_docseal.models import (
    Certificate,
    CircuitInputs,
    Document,
    NumberFormat,
    SecurityObject,
)

logger = logging.getLogger(__name__)

DEFAULT_LIMB_BITS = 120
DEFAULT_OVERFLOW_BITS = 4

DG1_LENGTH = 108
_RECORD_START = 28
_VALIDITY_FIELD = 16
_NAME_FIELD = 31
_NAME_MAX = 30

FieldValue = str | tuple[str, ...]


# ---------------------------------------------------------------------------
# DG1 extraction from a compact identity record
# ---------------------------------------------------------------------------


def _byte_at(tbs: bytes, index: int, field_name: str) -> int:
    if index < 0 or index >= len(tbs):
        raise MalformedDocument(
            "identity record ends before expected field", field=field_name, offset=index
        )
    return tbs[index]


def _bytes_at(tbs: bytes, start: int, length: int, field_name: str) -> bytes:
    if start < 0 or start + length > len(tbs):
        raise MalformedDocument(
            f"identity record ends before {length}-byte field",
            field=field_name,
            offset=start,
        )
    return tbs[start : start + length]


def _validity(tbs: bytes, start: int, length: int, field_name: str) -> bytes:
    copied = min(_VALIDITY_FIELD, length)
    value = bytearray(_VALIDITY_FIELD)
    value[:copied] = _bytes_at(tbs, start, copied, field_name)
    value[_VALIDITY_FIELD - 1] = length
    return bytes(value)


def _name(tbs: bytes, offset: int, field_name: str) -> tuple[bytes, int]:
    offset += 7 + _byte_at(tbs, offset + 5, field_name)
    length = _byte_at(tbs, offset, field_name)
    copied = min(_NAME_MAX, length)
    value = bytearray(_NAME_FIELD)
    value[:copied] = _bytes_at(tbs, offset + 1, copied, field_name)
    value[_NAME_MAX] = length
    return bytes(value), offset + length + 1


def extract_dg1(tbs: bytes) -> bytes:
    """Extract the 108-byte DG1 record from a compact identity certificate.

    The record layout is fixed: country code (2), notBefore (13), notAfter
    (13), given name (31), surname (31) and the first 18 bytes of the common
    name.  Name fields are zero padded with their true length in the last
    byte.

    Raises:
        MalformedDocument: if any length byte points outside *tbs*.
    """
    offset = _RECORD_START
    offset += _byte_at(tbs, offset, "signature") + 1
    offset += _byte_at(tbs, offset + 1, "issuer") + 2

    validity_length = _byte_at(tbs, offset + 3, "validity.notBefore")
    not_before = _validity(tbs, offset + 4, validity_length, "validity.notBefore")
    not_after = _validity(
        tbs, offset + 6 + validity_length, validity_length, "validity.notAfter"
    )
    offset += _byte_at(tbs, offset + 1, "validity") + 2

    country = _bytes_at(tbs, offset + 13, 2, "subject.country")
    offset += _byte_at(tbs, offset + 3, "subject") + 4
    offset += _byte_at(tbs, offset + 1, "subject.organization") + 2

    given_name, offset = _name(tbs, offset, "subject.givenName")
    surname, offset = _name(tbs, offset, "subject.surname")
    common_name, _ = _name(tbs, offset, "subject.commonName")

    return country + not_before[:13] + not_after[:13] + given_name + surname + common_name[:18]


# ---------------------------------------------------------------------------
# Big integers
# ---------------------------------------------------------------------------


def limb_count_for(bits: int, limb_bits: int = DEFAULT_LIMB_BITS) -> int:
    """Number of limbs needed to hold a *bits*-wide value."""
    return max(1, -(-bits // limb_bits))


def to_limbs(
    value: int, limb_bits: int = DEFAULT_LIMB_BITS, limb_count: int | None = None
) -> list[int]:
    """Split *value* into little-limb-first chunks of *limb_bits* bits.

    Raises:
        ValueError: if *value* is negative or does not fit in *limb_count*
            limbs.
    """
    if value < 0:
        raise ValueError("cannot chunk a negative integer")
    if limb_bits < 1:
        raise ValueError("limb width must be positive")
    if limb_count is None:
        limb_count = limb_count_for(value.bit_length(), limb_bits)
    if value >> (limb_bits * limb_count):
        raise ValueError(f"value needs more than {limb_count} limbs of {limb_bits} bits")
    mask = (1 << limb_bits) - 1
    return [(value >> (index * limb_bits)) & mask for index in range(limb_count)]


def from_limbs(limbs: Sequence[int], limb_bits: int = DEFAULT_LIMB_BITS) -> int:
    return sum(limb << (index * limb_bits) for index, limb in enumerate(limbs))


def barrett_reduction_parameter(
    modulus: int, overflow_bits: int = DEFAULT_OVERFLOW_BITS
) -> int:
    """``floor(2^(2*bits + overflow_bits) / modulus)`` with ``bits = modulus.bit_length()``.

    Must match the verifier's constant exactly; a mismatch yields proofs that
    succeed locally and fail on-chain.
    """
    if modulus <= 0:
        raise ValueError("modulus must be positive")
    bits = modulus.bit_length()
    return (1 << (2 * bits + overflow_bits)) // modulus


def format_number(value: int, number_format: NumberFormat = NumberFormat.decimal) -> str:
    """Render *value* as a decimal or ``0x``-prefixed hex string."""
    if number_format is NumberFormat.hex:
        return hex(value)
    return str(value)


# ---------------------------------------------------------------------------
# Variant table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RegistrationContext:
    """Everything a registration builder may read."""

    document: Document
    sod: SecurityObject
    master: Certificate
    dispatcher: str
    sk_identity: int
    certificates_root: bytes
    siblings: list[bytes]
    number_format: NumberFormat = NumberFormat.decimal
    limb_bits: int = DEFAULT_LIMB_BITS
    overflow_bits: int = DEFAULT_OVERFLOW_BITS


Builder = Callable[[RegistrationContext], dict[str, int | list[int]]]


@dataclass(frozen=True)
class CircuitVariant:
    """A registration circuit family and the builder for its inputs."""

    prefix: str
    build: Builder
    description: str = field(default="", compare=False)

    def circuit_name(self, dispatcher: str) -> str:
        return f"{self.prefix}_{dispatcher}"


def _rsa_key_fields(key: Certificate, signature: bytes, ctx: RegistrationContext) -> dict:
    modulus = int.from_bytes(key.public_key, "big")
    count = limb_count_for(modulus.bit_length(), ctx.limb_bits)
    signature_int = int.from_bytes(signature, "big")
    if signature_int >= modulus:
        raise MalformedDocument(
            f"RSA signature does not fit the {modulus.bit_length()}-bit modulus",
            field="signature",
        )
    return {
        "pubkey": to_limbs(modulus, ctx.limb_bits, count),
        "reduction": to_limbs(
            barrett_reduction_parameter(modulus, ctx.overflow_bits), ctx.limb_bits, count
        ),
        "signature": to_limbs(signature_int, ctx.limb_bits, count),
    }


def _ecdsa_key_fields(key: Certificate, signature: bytes, ctx: RegistrationContext) -> dict:
    half = len(key.public_key) // 2
    count = limb_count_for(half * 8, ctx.limb_bits)
    try:
        r, s = decode_dss_signature(signature)
    except ValueError as exc:
        raise MalformedDocument("ECDSA signature is not a DER (r, s) pair", field="signature") from exc
    if max(r.bit_length(), s.bit_length()) > half * 8:
        raise MalformedDocument("ECDSA signature is wider than the curve", field="signature")
    x = int.from_bytes(key.public_key[:half], "big")
    y = int.from_bytes(key.public_key[half:], "big")
    return {
        "pubkey": to_limbs(x, ctx.limb_bits, count) + to_limbs(y, ctx.limb_bits, count),
        "signature": to_limbs(r, ctx.limb_bits, count) + to_limbs(s, ctx.limb_bits, count),
    }


def _passport_common(ctx: RegistrationContext) -> dict:
    document = ctx.document
    return {
        "sk_identity": ctx.sk_identity,
        "slave_merkle_root": int.from_bytes(ctx.certificates_root, "big"),
        "slave_merkle_inclusion_branches": [int.from_bytes(s, "big") for s in ctx.siblings],
        "dg1": list(document.dg1),
        "dg15": list(document.dg15 or b""),
        "encapsulated_content": list(ctx.sod.encapsulated_content),
        "signed_attributes": list(ctx.sod.signed_attributes),
    }


def _eid_common(ctx: RegistrationContext) -> dict:
    tbs = ctx.sod.signing_certificate.tbs
    return {
        "sk_identity": ctx.sk_identity,
        "icao_root": int.from_bytes(ctx.certificates_root, "big"),
        "inclusion_branches": [int.from_bytes(s, "big") for s in ctx.siblings],
        "tbs": list(tbs),
        "dg1": list(extract_dg1(tbs)),
    }


def build_passport_rsa(ctx: RegistrationContext) -> dict[str, int | list[int]]:
    fields = _passport_common(ctx)
    fields.update(_rsa_key_fields(ctx.sod.signing_certificate, ctx.sod.signature, ctx))
    return fields


def build_passport_ecdsa(ctx: RegistrationContext) -> dict[str, int | list[int]]:
    fields = _passport_common(ctx)
    fields.update(_ecdsa_key_fields(ctx.sod.signing_certificate, ctx.sod.signature, ctx))
    return fields


def build_eid_rsa(ctx: RegistrationContext) -> dict[str, int | list[int]]:
    fields = _eid_common(ctx)
    fields.update(_rsa_key_fields(ctx.master, ctx.sod.signing_certificate.signature, ctx))
    return fields


def build_eid_ecdsa(ctx: RegistrationContext) -> dict[str, int | list[int]]:
    fields = _eid_common(ctx)
    fields.update(_ecdsa_key_fields(ctx.master, ctx.sod.signing_certificate.signature, ctx))
    return fields


CIRCUIT_VARIANTS: dict[tuple[str, str], CircuitVariant] = {
    ("passport", FAMILY_RSA): CircuitVariant(
        "register_identity_passport", build_passport_rsa, "SOD signed with an RSA DSC key"
    ),
    ("passport", FAMILY_ECDSA): CircuitVariant(
        "register_identity_passport", build_passport_ecdsa, "SOD signed with an ECDSA DSC key"
    ),
    ("eid", FAMILY_RSA): CircuitVariant(
        "register_identity_eid", build_eid_rsa, "identity record signed with an RSA CA key"
    ),
    ("eid", FAMILY_ECDSA): CircuitVariant(
        "register_identity_eid", build_eid_ecdsa, "identity record signed with an ECDSA CA key"
    ),
}


def register_variant(kind: str, family: str, variant: CircuitVariant) -> None:
    """Add a circuit variant.  Existing entries are never replaced.

    Raises:
        ValueError: if ``(kind, family)`` already has a variant.
    """
    key = (kind, family)
    if key in CIRCUIT_VARIANTS:
        raise ValueError(f"circuit variant for {key} already registered")
    CIRCUIT_VARIANTS[key] = variant


def _format_field(value: int | list[int], number_format: NumberFormat) -> FieldValue:
    if isinstance(value, list):
        return tuple(format_number(item, number_format) for item in value)
    return format_number(value, number_format)


def build_registration_inputs(context: RegistrationContext) -> CircuitInputs:
    """Build the inputs for the circuit matching *context*.

    Raises:
        UnsupportedKeyAlgorithm: if no variant serves the document kind and
            dispatcher family.
        MalformedDocument: if document bytes needed by the builder are broken.
    """
    family = dispatcher_family(context.dispatcher)
    variant = CIRCUIT_VARIANTS.get((context.document.kind, family))
    if variant is None:
        raise UnsupportedKeyAlgorithm(
            f"no registration circuit for {context.document.kind} with {family} keys"
        )

    raw = variant.build(context)
    circuit = variant.circuit_name(context.dispatcher)
    logger.debug("built inputs for %s: %d fields", circuit, len(raw))
    return CircuitInputs(
        circuit=circuit,
        fields={name: _format_field(value, context.number_format) for name, value in raw.items()},
        number_format=context.number_format,
    )


__all__ = [
    "CIRCUIT_VARIANTS",
    "DEFAULT_LIMB_BITS",
    "DEFAULT_OVERFLOW_BITS",
    "DG1_LENGTH",
    "CircuitVariant",
    "RegistrationContext",
    "barrett_reduction_parameter",
    "build_eid_ecdsa",
    "build_eid_rsa",
    "build_passport_ecdsa",
    "build_passport_rsa",
    "build_registration_inputs",
    "extract_dg1",
    "format_number",
    "from_limbs",
    "limb_count_for",
    "register_variant",
    "to_limbs",
]
