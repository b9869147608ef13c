"""Tests for aumai_docseal.ledger against a local JSON-RPC server."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import pytest
from aiohttp import test_utils, web
from eth_abi import encode

from aumai_docseal.calldata import (
    GET_PASSPORT_INFO,
    GET_PASSPORT_INFO_RETURNS,
    GET_PROOF,
    GET_PROOF_RETURNS,
    selector,
)
from aumai_docseal.errors import ProofFetchFailed
from aumai_docseal.ledger import JsonRpcLedger, SMTProofClient
from aumai_docseal.models import SMTProof

CONTRACT = "0x" + "bb" * 20
KEY = bytes.fromhex("42" * 32)
ROOT = bytes.fromhex("11" * 32)
SIBLINGS = [bytes.fromhex("22" * 32), bytes.fromhex("33" * 32)]

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _proof_result(siblings: list[bytes] = SIBLINGS, existence: bool = True) -> str:
    return "0x" + encode(GET_PROOF_RETURNS, [(ROOT, siblings, existence)]).hex()


async def _with_ledger(handler: Handler, scenario: Callable[[JsonRpcLedger], Awaitable]) -> object:
    app = web.Application()
    app.router.add_post("/", handler)
    async with test_utils.TestServer(app) as server:
        ledger = JsonRpcLedger(str(server.make_url("/")), timeout=5)
        return await scenario(ledger)


def _rpc_result(result: str, calls: list[dict] | None = None) -> Handler:
    async def handler(request: web.Request) -> web.Response:
        body = await request.json()
        if calls is not None:
            calls.append(body)
        return web.json_response({"jsonrpc": "2.0", "id": body["id"], "result": result})

    return handler


# ===========================================================================
# JsonRpcLedger
# ===========================================================================


class TestJsonRpcLedger:
    def test_get_proof(self) -> None:
        calls: list[dict] = []

        async def scenario(ledger: JsonRpcLedger):
            return await ledger.get_proof(CONTRACT, KEY)

        proof = asyncio.run(_with_ledger(_rpc_result(_proof_result(), calls), scenario))
        assert proof.root == ROOT
        assert proof.siblings == SIBLINGS
        assert proof.existence is True

        request = calls[0]
        assert request["method"] == "eth_call"
        call, block = request["params"]
        assert block == "latest"
        assert call["to"] == CONTRACT
        assert call["data"] == "0x" + (selector(GET_PROOF) + KEY).hex()

    def test_get_passport_info(self) -> None:
        active = (7).to_bytes(32, "big")
        passport = (8).to_bytes(32, "big")
        result = "0x" + encode(GET_PASSPORT_INFO_RETURNS, [(active, 2), (passport, 1700000000)]).hex()
        calls: list[dict] = []

        async def scenario(ledger: JsonRpcLedger):
            return await ledger.get_passport_info(CONTRACT, KEY)

        info = asyncio.run(_with_ledger(_rpc_result(result, calls), scenario))
        assert info.active_identity == active
        assert info.identity_reissue_counter == 2
        assert info.active_passport == passport
        assert info.issue_timestamp == 1700000000
        assert calls[0]["params"][0]["data"].startswith("0x" + selector(GET_PASSPORT_INFO).hex())

    def test_rpc_error(self) -> None:
        async def handler(request: web.Request) -> web.Response:
            body = await request.json()
            return web.json_response(
                {"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32000, "message": "reverted"}}
            )

        async def scenario(ledger: JsonRpcLedger):
            return await ledger.get_proof(CONTRACT, KEY)

        with pytest.raises(ProofFetchFailed, match="reverted"):
            asyncio.run(_with_ledger(handler, scenario))

    def test_http_error(self) -> None:
        async def handler(request: web.Request) -> web.Response:
            return web.Response(status=500, text="boom")

        async def scenario(ledger: JsonRpcLedger):
            return await ledger.get_proof(CONTRACT, KEY)

        with pytest.raises(ProofFetchFailed, match="HTTP 500"):
            asyncio.run(_with_ledger(handler, scenario))

    def test_undecodable_result(self) -> None:
        async def scenario(ledger: JsonRpcLedger):
            return await ledger.get_proof(CONTRACT, KEY)

        with pytest.raises(ProofFetchFailed, match="decode"):
            asyncio.run(_with_ledger(_rpc_result("0x1234"), scenario))

    def test_missing_result(self) -> None:
        async def handler(request: web.Request) -> web.Response:
            return web.json_response({"jsonrpc": "2.0", "id": 1})

        async def scenario(ledger: JsonRpcLedger):
            return await ledger.get_proof(CONTRACT, KEY)

        with pytest.raises(ProofFetchFailed, match="no hex result"):
            asyncio.run(_with_ledger(handler, scenario))

    def test_non_json_body(self) -> None:
        async def handler(request: web.Request) -> web.Response:
            return web.Response(text="<html>gateway</html>", content_type="text/html")

        async def scenario(ledger: JsonRpcLedger):
            return await ledger.get_passport_info(CONTRACT, KEY)

        with pytest.raises(ProofFetchFailed, match="not JSON"):
            asyncio.run(_with_ledger(handler, scenario))

    def test_unreachable_endpoint(self) -> None:
        ledger = JsonRpcLedger("http://127.0.0.1:1/", timeout=2)
        with pytest.raises(ProofFetchFailed):
            asyncio.run(ledger.get_proof(CONTRACT, KEY))


# ===========================================================================
# SMTProofClient
# ===========================================================================


class _StaticLedger:
    def __init__(self, siblings: list[bytes] | None = None, error: Exception | None = None) -> None:
        self.siblings = SIBLINGS if siblings is None else siblings
        self.error = error

    async def get_proof(self, contract_address: str, key: bytes):
        if self.error is not None:
            raise self.error
        return SMTProof(root=ROOT, siblings=self.siblings, existence=True)

    async def get_passport_info(self, contract_address: str, key: bytes):
        raise NotImplementedError


class TestSMTProofClient:
    def test_passes_proof_through(self) -> None:
        proof = asyncio.run(SMTProofClient(_StaticLedger()).get_proof(CONTRACT, KEY))
        assert proof.siblings == SIBLINGS

    def test_depth_limit(self) -> None:
        client = SMTProofClient(_StaticLedger([bytes(32)] * 3), depth=2)
        with pytest.raises(ProofFetchFailed, match="3 siblings"):
            asyncio.run(client.get_proof(CONTRACT, KEY))

    def test_exactly_depth_is_accepted(self) -> None:
        client = SMTProofClient(_StaticLedger([bytes(32)] * 2), depth=2)
        assert len(asyncio.run(client.get_proof(CONTRACT, KEY)).siblings) == 2

    def test_transport_errors_are_wrapped(self) -> None:
        client = SMTProofClient(_StaticLedger(error=ConnectionResetError("reset")))
        with pytest.raises(ProofFetchFailed, match="reset"):
            asyncio.run(client.get_proof(CONTRACT, KEY))

    def test_proof_fetch_failed_is_not_rewrapped(self) -> None:
        original = ProofFetchFailed("upstream")
        client = SMTProofClient(_StaticLedger(error=original))
        with pytest.raises(ProofFetchFailed) as exc_info:
            asyncio.run(client.get_proof(CONTRACT, KEY))
        assert exc_info.value is original
