"""Registered identity: a document plus the proof that registered it."""

from __future__ import annotations

from typing import assert_never

from pydantic import BaseModel, ConfigDict, ValidationError

from aumai_docseal.errors import MalformedDocument
from aumai_docseal.models import Document, EIDData, EPassportData, RegistrationProof

IDENTITY_FORMAT_VERSION = 1

# Public-signal index of each projection, per circuit output layout version.
SIGNAL_LAYOUTS: dict[int, dict[str, int]] = {
    1: {
        "public_key": 0,
        "passport_hash": 1,
        "dg1_commitment": 2,
        "identity_key": 3,
        "pk_identity_hash": 3,
    },
}


def parse_signal(value: str) -> int:
    """Public signals arrive as decimal or ``0x`` hex strings."""
    text = value.strip()
    if text[:2] in ("0x", "0X"):
        return int(text, 16)
    return int(text)


def _check_signals(proof: RegistrationProof) -> None:
    layout = SIGNAL_LAYOUTS.get(proof.layout_version)
    if layout is None:
        raise MalformedDocument(
            f"unknown public signal layout {proof.layout_version}", field="layout_version"
        )
    needed = max(layout.values()) + 1
    if len(proof.pub_signals) < needed:
        raise MalformedDocument(
            f"registration proof carries {len(proof.pub_signals)} public signals, "
            f"expected at least {needed}",
            field="pub_signals",
        )
    for name, index in layout.items():
        try:
            parse_signal(proof.pub_signals[index])
        except ValueError as exc:
            raise MalformedDocument(
                f"public signal {name} is not a number", field="pub_signals"
            ) from exc


class Identity(BaseModel):
    """A document bound to its registration proof.

    Projections read fixed public-signal indices from
    :data:`SIGNAL_LAYOUTS`; the layout is selected by the proof's
    ``layout_version``.
    """

    model_config = ConfigDict(frozen=True)

    version: int = IDENTITY_FORMAT_VERSION
    document: Document
    registration_proof: RegistrationProof

    @classmethod
    def from_proof(cls, document: Document, proof: RegistrationProof) -> Identity:
        """Bind *document* to *proof*.

        Raises:
            MalformedDocument: if the proof's signal layout is unknown or
                carries too few public signals.
        """
        _check_signals(proof)
        return cls(document=document, registration_proof=proof)

    def _signal(self, name: str) -> str:
        index = SIGNAL_LAYOUTS[self.registration_proof.layout_version][name]
        return self.registration_proof.pub_signals[index]

    @property
    def identity_key(self) -> str:
        return self._signal("identity_key")

    @property
    def public_key(self) -> str:
        return self._signal("public_key")

    @property
    def passport_hash(self) -> str:
        return self._signal("passport_hash")

    @property
    def dg1_commitment(self) -> str:
        return self._signal("dg1_commitment")

    @property
    def pk_identity_hash(self) -> str:
        return self._signal("pk_identity_hash")

    def passport_info_key(self) -> bytes:
        """32-byte key under which the ledger records this document.

        Passports with an Active Authentication key (DG15) are recorded by
        their public key; everything else by the passport hash.
        """
        variant = self.document.variant
        match variant:
            case EPassportData():
                signal = self.public_key if self.document.dg15 else self.passport_hash
            case EIDData():
                signal = self.passport_hash
            case _:
                assert_never(variant)
        return parse_signal(signal).to_bytes(32, "big")

    def serialize(self) -> str:
        return self.model_dump_json()

    @classmethod
    def deserialize(cls, raw: str) -> Identity:
        """Load an identity written by :meth:`serialize`.

        Raises:
            MalformedDocument: if the blob is not a supported identity record.
        """
        try:
            identity = cls.model_validate_json(raw)
        except ValidationError as exc:
            raise MalformedDocument(
                f"invalid identity record: {exc.error_count()} errors", field="identity"
            ) from exc
        if identity.version != IDENTITY_FORMAT_VERSION:
            raise MalformedDocument(
                f"unsupported identity format version {identity.version}", field="version"
            )
        _check_signals(identity.registration_proof)
        return identity


__all__ = [
    "IDENTITY_FORMAT_VERSION",
    "SIGNAL_LAYOUTS",
    "Identity",
    "parse_signal",
]
