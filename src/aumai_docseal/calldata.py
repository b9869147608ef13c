"""ABI encoding of the ledger calls.

Function signatures are part of the wire contract: field order and types must
match the deployed contracts exactly.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from eth_abi import decode, encode, grammar
from eth_utils import function_signature_to_4byte_selector

from aumai_docseal.models import PassportInfo, SMTProof

REGISTER_CERTIFICATE = (
    "registerCertificate((bytes32,bytes,uint256,uint256),(bytes,bytes),bytes32[])"
)
REGISTER_IDENTITY = (
    "register(bytes32,uint256,uint256,(bytes32,bytes32,bytes,bytes,bytes32),bytes)"
)
GET_PROOF = "getProof(bytes32)"
GET_PASSPORT_INFO = "getPassportInfo(bytes32)"
EXECUTE_NOIR = "executeNoir(bytes32,uint256,bytes,bytes)"

GET_PROOF_RETURNS = ["(bytes32,bytes32[],bool)"]
GET_PASSPORT_INFO_RETURNS = ["(bytes32,uint64)", "(bytes32,uint64)"]
VOTE_USER_DATA_TYPES = ["uint256", "uint256[]", "(uint256,uint256,uint256)"]


def argument_types(signature: str) -> list[str]:
    """Top-level argument types of a function signature."""
    arguments = signature[signature.index("(") :]
    if arguments == "()":
        return []
    return [component.to_type_str() for component in grammar.parse(arguments).components]


def selector(signature: str) -> bytes:
    return function_signature_to_4byte_selector(signature)


def encode_call(signature: str, *args: Any) -> bytes:
    """Selector followed by the ABI-encoded arguments."""
    return selector(signature) + encode(argument_types(signature), list(args))


def _bytes32(value: bytes, name: str) -> bytes:
    if len(value) > 32:
        raise ValueError(f"{name} is {len(value)} bytes, expected at most 32")
    return value.rjust(32, b"\x00")


def encode_register_certificate(
    *,
    data_type: bytes,
    tbs: bytes,
    key_offset: int,
    expiration_offset: int,
    signature: bytes,
    master_public_key: bytes,
    siblings: Sequence[bytes],
) -> bytes:
    """Calldata for registering a signing certificate under a trusted master.

    The first tuple describes the signed certificate region, the second the
    issuer signature with the key that verifies it; ``siblings`` is the
    flattened inclusion proof of the master key.
    """
    return encode_call(
        REGISTER_CERTIFICATE,
        (_bytes32(data_type, "data_type"), tbs, key_offset, expiration_offset),
        (signature, master_public_key),
        [_bytes32(sibling, "sibling") for sibling in siblings],
    )


def encode_register_identity(
    *,
    certificates_root: bytes,
    identity_key: int,
    dg1_commitment: int,
    data_type: bytes,
    zk_type: bytes,
    signature: bytes,
    public_key: bytes,
    passport_hash: bytes,
    proof: bytes,
) -> bytes:
    """Calldata binding a freshly proven identity key to a document."""
    return encode_call(
        REGISTER_IDENTITY,
        _bytes32(certificates_root, "certificates_root"),
        identity_key,
        dg1_commitment,
        (
            _bytes32(data_type, "data_type"),
            _bytes32(zk_type, "zk_type"),
            signature,
            public_key,
            _bytes32(passport_hash, "passport_hash"),
        ),
        proof,
    )


def vote_masks(answers: Sequence[int]) -> list[int]:
    """One bit per chosen option: answer index *i* becomes ``1 << i``."""
    return [1 << answer for answer in answers]


def encode_vote_user_data(
    *,
    proposal_id: int,
    answers: Sequence[int],
    nullifier: int,
    citizenship: int,
    timestamp_upper: int,
) -> bytes:
    """User payload carried by ``executeNoir``: the proposal, the vote masks
    and the disclosed (nullifier, citizenship, timestamp upper bound) triple.
    """
    return encode(
        VOTE_USER_DATA_TYPES,
        [proposal_id, vote_masks(answers), (nullifier, citizenship, timestamp_upper)],
    )


def encode_execute_noir(
    *, registration_root: bytes, current_date: int, user_data: bytes, proof: bytes
) -> bytes:
    """Calldata submitting a query proof to the voting contract."""
    return encode_call(
        EXECUTE_NOIR,
        _bytes32(registration_root, "registration_root"),
        current_date,
        user_data,
        proof,
    )


def encode_get_proof(key: bytes) -> bytes:
    return encode_call(GET_PROOF, _bytes32(key, "key"))


def encode_get_passport_info(key: bytes) -> bytes:
    return encode_call(GET_PASSPORT_INFO, _bytes32(key, "key"))


def decode_get_proof(raw: bytes) -> SMTProof:
    ((root, siblings, existence),) = decode(GET_PROOF_RETURNS, raw)
    return SMTProof(root=root, siblings=list(siblings), existence=existence)


def decode_get_passport_info(raw: bytes) -> PassportInfo:
    (active_identity, reissue_counter), (active_passport, issue_timestamp) = decode(
        GET_PASSPORT_INFO_RETURNS, raw
    )
    return PassportInfo(
        active_identity=active_identity,
        identity_reissue_counter=reissue_counter,
        active_passport=active_passport,
        issue_timestamp=issue_timestamp,
    )


__all__ = [
    "EXECUTE_NOIR",
    "GET_PASSPORT_INFO",
    "GET_PROOF",
    "REGISTER_CERTIFICATE",
    "REGISTER_IDENTITY",
    "VOTE_USER_DATA_TYPES",
    "argument_types",
    "decode_get_passport_info",
    "decode_get_proof",
    "encode_call",
    "encode_execute_noir",
    "encode_get_passport_info",
    "encode_get_proof",
    "encode_register_certificate",
    "encode_register_identity",
    "encode_vote_user_data",
    "selector",
    "vote_masks",
]
