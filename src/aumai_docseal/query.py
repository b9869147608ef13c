"""Query-proof inputs for registered identities (voting and selective disclosure)."""

from __future__ import annotations

import secrets
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak

from aumai_docseal.calldata import encode_execute_noir, encode_vote_user_data, vote_masks
from aumai_docseal.circuit_inputs import DG1_LENGTH, format_number
from aumai_docseal.errors import MalformedDocument, QueryBoundsViolation
from aumai_docseal.identity import parse_signal
from aumai_docseal.models import CircuitInputs, NumberFormat, PassportInfo, WhitelistData

# BN254 scalar field modulus.
PRIME = 21888242871839275222246405745257275088548364400416034343698204186575808495617
MAX_FIELD = PRIME - 1
MAX_UINT32 = 0xFFFFFFFF

QUERY_CIRCUIT = "query_identity_eid"
DEFAULT_SELECTOR = 262143
DEFAULT_CITIZENSHIP_MASK = 0x20000000000000000000000000

WHITELIST_TYPES = ["(uint256,uint256[],uint256,uint256,uint256,uint256,uint256,uint256)"]
_EVENT_DATA_MASK = (1 << 248) - 1

# Public-signal indices of the query circuit read by the voting contract.
QUERY_SIGNALS = {
    "nullifier": 0,
    "citizenship": 6,
    "current_date": 13,
    "timestamp_upperbound": 15,
}


def random_field_element(bits: int = 250) -> int:
    """Random value of *bits* bits reduced into the proving field."""
    return int.from_bytes(secrets.token_bytes(-(-bits // 8)), "big") % PRIME


def compute_event_data(answers: Iterable[int]) -> str:
    """Commitment to a set of vote answers.

    Each answer index becomes the bitmask ``1 << index``; the ABI-encoded
    ``uint256[]`` is hashed and truncated to 248 bits so it fits the field.
    """
    encoded = encode(["uint256[]"], [vote_masks(list(answers))])
    truncated = int.from_bytes(keccak(encoded), "big") & _EVENT_DATA_MASK
    return "0x" + truncated.to_bytes(32, "big").hex()


def _to_be_hex(value: int) -> str:
    length = max(1, (value.bit_length() + 7) // 8)
    return "0x" + value.to_bytes(length, "big").hex()


def _to_ascii(value: int) -> str:
    length = max(1, (value.bit_length() + 7) // 8)
    return value.to_bytes(length, "big").decode("latin-1")


def decode_whitelist_data(data: bytes | str) -> WhitelistData:
    """Decode the ABI-encoded voting whitelist attached to a proposal.

    Raises:
        MalformedDocument: if *data* is not a valid whitelist tuple.
    """
    if isinstance(data, str):
        text = data[2:] if data[:2] in ("0x", "0X") else data
        try:
            data = bytes.fromhex(text)
        except ValueError as exc:
            raise MalformedDocument("whitelist data is not hex", field="whitelist") from exc
    try:
        (values,) = decode(WHITELIST_TYPES, data)
    except DecodingError as exc:
        raise MalformedDocument(f"cannot decode whitelist: {exc}", field="whitelist") from exc

    return WhitelistData(
        selector=values[0],
        nationalities=[_to_ascii(item) for item in values[1]],
        identity_creation_timestamp_upper_bound=values[2],
        identity_counter_upper_bound=values[3],
        sex=_to_ascii(values[4]),
        birth_date_lower_bound=_to_be_hex(values[5]),
        birth_date_upper_bound=_to_be_hex(values[6]),
        expiration_date_lower_bound=_to_be_hex(values[7]),
    )


@dataclass(frozen=True)
class VotingBounds:
    timestamp_upper: int
    identity_count_upper: int


def voting_bounds(
    whitelist: WhitelistData, passport_info: PassportInfo, root_validity: int
) -> VotingBounds:
    """Upper bounds a vote proof must satisfy for this identity.

    Identities never reissued are bounded by the proposal creation limit minus
    the root validity window.  Reissued identities are bounded by their own
    issue timestamp and the proposal's reissue limit.

    Raises:
        QueryBoundsViolation: if the identity was reissued more often than the
            proposal allows.
    """
    if passport_info.issue_timestamp == 0:
        return VotingBounds(
            timestamp_upper=whitelist.identity_creation_timestamp_upper_bound - root_validity,
            identity_count_upper=MAX_UINT32,
        )

    limit = whitelist.identity_counter_upper_bound
    if passport_info.identity_reissue_counter > limit:
        raise QueryBoundsViolation(
            f"identity reissued {passport_info.identity_reissue_counter} times, "
            f"proposal allows {limit}"
        )
    return VotingBounds(
        timestamp_upper=passport_info.issue_timestamp,
        identity_count_upper=limit,
    )


def build_query_inputs(
    *,
    id_state_root: int,
    sk_identity: int,
    pk_passport_hash: int,
    dg1: bytes,
    siblings: Sequence[int],
    timestamp: int,
    identity_counter: int,
    event_id: int | None = None,
    event_data: int | None = None,
    selector: int = DEFAULT_SELECTOR,
    timestamp_lowerbound: int = 0,
    timestamp_upperbound: int = MAX_FIELD,
    identity_count_lowerbound: int = 0,
    identity_count_upperbound: int = MAX_FIELD,
    birth_date_lowerbound: int = 0,
    birth_date_upperbound: int = MAX_FIELD,
    expiration_date_lowerbound: int = 0,
    expiration_date_upperbound: int = MAX_FIELD,
    citizenship_mask: int = DEFAULT_CITIZENSHIP_MASK,
    number_format: NumberFormat = NumberFormat.decimal,
) -> CircuitInputs:
    """Inputs for the identity query circuit.

    ``event_id`` and ``event_data`` default to fresh random field elements.
    Bounds default to the full field range so they do not constrain the proof.

    Raises:
        MalformedDocument: if *dg1* is not a 108-byte record.
    """
    if len(dg1) != DG1_LENGTH:
        raise MalformedDocument(
            f"dg1 must be {DG1_LENGTH} bytes, got {len(dg1)}", field="dg1"
        )
    values: dict[str, int | list[int]] = {
        "event_id": random_field_element() if event_id is None else event_id,
        "event_data": random_field_element() if event_data is None else event_data,
        "id_state_root": id_state_root,
        "selector": selector,
        "timestamp_lowerbound": timestamp_lowerbound,
        "timestamp_upperbound": timestamp_upperbound,
        "timestamp": timestamp,
        "identity_counter": identity_counter,
        "identity_count_lowerbound": identity_count_lowerbound,
        "identity_count_upperbound": identity_count_upperbound,
        "birth_date_lowerbound": birth_date_lowerbound,
        "birth_date_upperbound": birth_date_upperbound,
        "expiration_date_lowerbound": expiration_date_lowerbound,
        "expiration_date_upperbound": expiration_date_upperbound,
        "citizenship_mask": citizenship_mask,
        "sk_identity": sk_identity,
        "pk_passport_hash": pk_passport_hash,
        "dg1": list(dg1),
        "siblings": list(siblings),
    }
    fields: dict[str, str | tuple[str, ...]] = {}
    for name, value in values.items():
        if isinstance(value, list):
            fields[name] = tuple(format_number(item, number_format) for item in value)
        else:
            fields[name] = format_number(value, number_format)
    return CircuitInputs(circuit=QUERY_CIRCUIT, fields=fields, number_format=number_format)


def build_vote_calldata(
    *,
    proposal_id: int,
    answers: Sequence[int],
    registration_root: bytes,
    pub_signals: Sequence[str],
    proof: bytes,
) -> bytes:
    """``executeNoir`` calldata for a vote backed by a query proof.

    *pub_signals* are the query circuit outputs as decimal or ``0x`` hex
    strings; the contract reads the ones listed in :data:`QUERY_SIGNALS`.
    The result is what :meth:`RelayerClient.submit_vote` carries.

    Raises:
        MalformedDocument: if a needed public signal is missing or not a number.
    """
    values: dict[str, int] = {}
    for name, index in QUERY_SIGNALS.items():
        try:
            values[name] = parse_signal(pub_signals[index])
        except (IndexError, ValueError) as exc:
            raise MalformedDocument(
                f"query proof public signal {name} (index {index}) is unusable",
                field="pub_signals",
            ) from exc

    user_data = encode_vote_user_data(
        proposal_id=proposal_id,
        answers=answers,
        nullifier=values["nullifier"],
        citizenship=values["citizenship"],
        timestamp_upper=values["timestamp_upperbound"],
    )
    return encode_execute_noir(
        registration_root=registration_root,
        current_date=values["current_date"],
        user_data=user_data,
        proof=proof,
    )


__all__ = [
    "DEFAULT_CITIZENSHIP_MASK",
    "DEFAULT_SELECTOR",
    "MAX_FIELD",
    "MAX_UINT32",
    "PRIME",
    "QUERY_CIRCUIT",
    "QUERY_SIGNALS",
    "VotingBounds",
    "build_query_inputs",
    "build_vote_calldata",
    "compute_event_data",
    "decode_whitelist_data",
    "random_field_element",
    "voting_bounds",
]
