"""Ledger reads: SMT proofs and passport bindings.

The ledger is a black box reached over JSON-RPC ``eth_call``.  Any transport or
decoding failure surfaces as :class:`~aumai_docseal.errors.ProofFetchFailed`;
retrying is left to the caller.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Protocol

import aiohttp
from eth_abi.exceptions import DecodingError

from aumai_docseal.calldata import (
    decode_get_passport_info,
    decode_get_proof,
    encode_get_passport_info,
    encode_get_proof,
)
from aumai_docseal.errors import ProofFetchFailed
from aumai_docseal.models import PassportInfo, SMTProof

logger = logging.getLogger(__name__)

DEFAULT_SMT_DEPTH = 80
DEFAULT_TIMEOUT = 30.0


class Ledger(Protocol):
    """The two reads the registration flow needs from the ledger."""

    async def get_proof(self, contract_address: str, key: bytes) -> SMTProof: ...

    async def get_passport_info(self, contract_address: str, key: bytes) -> PassportInfo: ...


class SMTProofClient:
    """Fetches SMT proofs and checks only their sibling count."""

    def __init__(self, ledger: Ledger, depth: int = DEFAULT_SMT_DEPTH) -> None:
        self._ledger = ledger
        self.depth = depth

    async def get_proof(self, contract_address: str, key: bytes) -> SMTProof:
        """Return the ledger's proof for *key*.

        Raises:
            ProofFetchFailed: on transport or decoding failure, or when the
                proof carries more siblings than the tree depth allows.
        """
        try:
            proof = await self._ledger.get_proof(contract_address, key)
        except ProofFetchFailed:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as exc:
            raise ProofFetchFailed(f"SMT proof read failed: {exc}") from exc

        if len(proof.siblings) > self.depth:
            raise ProofFetchFailed(
                f"SMT proof has {len(proof.siblings)} siblings, depth is {self.depth}"
            )
        logger.debug(
            "SMT proof fetched: existence=%s siblings=%d", proof.existence, len(proof.siblings)
        )
        return proof


class JsonRpcLedger:
    """:class:`Ledger` over an Ethereum JSON-RPC endpoint."""

    def __init__(self, rpc_url: str, *, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._ids = itertools.count(1)

    async def eth_call(self, contract_address: str, data: bytes) -> bytes:
        """Run a read-only call and return the raw return data."""
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": "eth_call",
            "params": [{"to": contract_address, "data": "0x" + data.hex()}, "latest"],
        }
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.rpc_url, json=payload) as resp:
                    if resp.status != 200:
                        raise ProofFetchFailed(f"RPC endpoint returned HTTP {resp.status}")
                    body = await resp.json(content_type=None)
        except asyncio.TimeoutError as exc:
            raise ProofFetchFailed("RPC request timed out") from exc
        except aiohttp.ClientError as exc:
            raise ProofFetchFailed(f"RPC request failed: {exc}") from exc
        except ValueError as exc:
            raise ProofFetchFailed("RPC response is not JSON") from exc

        if not isinstance(body, dict):
            raise ProofFetchFailed("RPC response is not a JSON object")
        if body.get("error"):
            error = body["error"]
            message = error.get("message", "unknown error") if isinstance(error, dict) else error
            raise ProofFetchFailed(f"RPC error: {message}")

        result = body.get("result")
        if not isinstance(result, str) or not result.startswith("0x"):
            raise ProofFetchFailed("RPC response carries no hex result")
        try:
            return bytes.fromhex(result[2:])
        except ValueError as exc:
            raise ProofFetchFailed("RPC result is not valid hex") from exc

    async def get_proof(self, contract_address: str, key: bytes) -> SMTProof:
        raw = await self.eth_call(contract_address, encode_get_proof(key))
        try:
            return decode_get_proof(raw)
        except DecodingError as exc:
            raise ProofFetchFailed(f"cannot decode getProof result: {exc}") from exc

    async def get_passport_info(self, contract_address: str, key: bytes) -> PassportInfo:
        raw = await self.eth_call(contract_address, encode_get_passport_info(key))
        try:
            return decode_get_passport_info(raw)
        except DecodingError as exc:
            raise ProofFetchFailed(f"cannot decode getPassportInfo result: {exc}") from exc


__all__ = [
    "DEFAULT_SMT_DEPTH",
    "JsonRpcLedger",
    "Ledger",
    "SMTProofClient",
]
