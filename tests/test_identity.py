"""Tests for aumai_docseal.identity."""

from __future__ import annotations

import json

import pytest

from aumai_docseal.errors import MalformedDocument
from aumai_docseal.identity import Identity, parse_signal
from aumai_docseal.models import Document, EPassportData, RegistrationProof

SIGNALS = ["1001", "1002", "1003", "1004", "1005"]


def _proof(signals: list[str] = SIGNALS, layout_version: int = 1) -> RegistrationProof:
    return RegistrationProof(pub_signals=signals, proof=b"\xaa\xbb", layout_version=layout_version)


# ===========================================================================
# Projections
# ===========================================================================


class TestProjections:
    def test_signal_indices(self, passport: Document) -> None:
        identity = Identity.from_proof(passport, _proof())
        assert identity.public_key == "1001"
        assert identity.passport_hash == "1002"
        assert identity.dg1_commitment == "1003"
        assert identity.identity_key == "1004"
        assert identity.pk_identity_hash == "1004"

    def test_too_few_signals_raises(self, passport: Document) -> None:
        with pytest.raises(MalformedDocument, match="public signals"):
            Identity.from_proof(passport, _proof(SIGNALS[:3]))

    def test_unknown_layout_raises(self, passport: Document) -> None:
        with pytest.raises(MalformedDocument, match="layout"):
            Identity.from_proof(passport, _proof(layout_version=9))

    def test_parse_signal_decimal_and_hex(self) -> None:
        assert parse_signal("255") == 255
        assert parse_signal("0xff") == 255
        assert parse_signal(" 0XFF ") == 255


class TestPassportInfoKey:
    def test_passport_without_dg15_uses_passport_hash(self, passport: Document) -> None:
        identity = Identity.from_proof(passport, _proof())
        assert identity.passport_info_key() == (1002).to_bytes(32, "big")

    def test_passport_with_dg15_uses_public_key(self, passport: Document) -> None:
        with_aa = passport.model_copy(update={"dg15": b"\x30\x00"})
        identity = Identity.from_proof(with_aa, _proof())
        assert identity.passport_info_key() == (1001).to_bytes(32, "big")

    def test_eid_uses_passport_hash(self, eid: Document) -> None:
        identity = Identity.from_proof(eid, _proof())
        assert identity.passport_info_key() == (1002).to_bytes(32, "big")

    def test_key_is_32_bytes(self, eid: Document) -> None:
        identity = Identity.from_proof(eid, _proof(["0x01", "0x" + "ff" * 31, "3", "4"]))
        assert len(identity.passport_info_key()) == 32


# ===========================================================================
# Persistence
# ===========================================================================


class TestPersistence:
    def test_round_trip(self, passport: Document) -> None:
        identity = Identity.from_proof(passport, _proof())
        restored = Identity.deserialize(identity.serialize())
        assert restored == identity
        assert restored.document.dg1 == passport.dg1

    def test_round_trip_keeps_optional_data_groups(self, passport: Document) -> None:
        full = passport.model_copy(
            update={
                "dg15": b"\x6f\x03\x30\x01\x00",
                "dg11": b"\x6b\x02\x5f\x0e",
                "variant": EPassportData(aa_signature=b"\x99" * 8),
            }
        )
        identity = Identity.from_proof(full, _proof())
        restored = Identity.deserialize(identity.serialize())
        assert restored == identity
        assert restored.document.dg15 == b"\x6f\x03\x30\x01\x00"
        assert restored.document.dg11 == b"\x6b\x02\x5f\x0e"
        assert restored.passport_info_key() == (1001).to_bytes(32, "big")

    def test_eid_round_trip_keeps_variant(self, eid: Document) -> None:
        restored = Identity.deserialize(Identity.from_proof(eid, _proof()).serialize())
        assert restored.document.kind == "eid"

    def test_serialized_bytes_are_hex(self, passport: Document) -> None:
        payload = json.loads(Identity.from_proof(passport, _proof()).serialize())
        assert payload["registration_proof"]["proof"] == "aabb"
        assert payload["version"] == 1

    def test_invalid_json_raises(self) -> None:
        with pytest.raises(MalformedDocument, match="invalid identity"):
            Identity.deserialize("{not json")

    def test_unsupported_version_raises(self, passport: Document) -> None:
        payload = json.loads(Identity.from_proof(passport, _proof()).serialize())
        payload["version"] = 2
        with pytest.raises(MalformedDocument, match="version"):
            Identity.deserialize(json.dumps(payload))

    def test_deserialize_short_signal_list_raises(self, passport: Document) -> None:
        payload = json.loads(Identity.from_proof(passport, _proof()).serialize())
        payload["registration_proof"]["pub_signals"] = ["1"]
        with pytest.raises(MalformedDocument, match="public signals") as exc_info:
            Identity.deserialize(json.dumps(payload))
        assert exc_info.value.field == "pub_signals"

    def test_deserialize_unknown_layout_raises(self, passport: Document) -> None:
        payload = json.loads(Identity.from_proof(passport, _proof()).serialize())
        payload["registration_proof"]["layout_version"] = 9
        with pytest.raises(MalformedDocument, match="layout") as exc_info:
            Identity.deserialize(json.dumps(payload))
        assert exc_info.value.field == "layout_version"

    def test_deserialize_non_numeric_signal_raises(self, passport: Document) -> None:
        payload = json.loads(Identity.from_proof(passport, _proof()).serialize())
        payload["registration_proof"]["pub_signals"][1] = "not-a-number"
        with pytest.raises(MalformedDocument, match="passport_hash"):
            Identity.deserialize(json.dumps(payload))
