"""
Tests for the async JSON-RPC transport.

Tests:
  - Successful call returns ``result``
  - JSON-RPC error objects raise RpcError without retry
  - HTTP 5xx / 429 and network errors are retried, then LedgerUnavailable
  - Non-retryable HTTP status and garbled bodies raise LedgerUnavailable
"""

import json
import os
import sys

import httpx
import pytest

# ── Path setup ────────────────────────────────────────────────────────
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from tokenbridge.bridge.rpc import JsonRpcClient
from tokenbridge.exceptions import LedgerUnavailable, RpcError


URL = "http://node.test"


# ═══════════════════════════════════════════════════════════════════════
#  HELPERS
# ═══════════════════════════════════════════════════════════════════════

def _client(handler, max_attempts=3) -> JsonRpcClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return JsonRpcClient(URL, client=http, max_attempts=max_attempts, backoff_base=0, backoff_max=0)


def _ok(request: httpx.Request, result) -> httpx.Response:
    body = json.loads(request.content)
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


# ═══════════════════════════════════════════════════════════════════════
#  1. SUCCESS & ERROR OBJECTS
# ═══════════════════════════════════════════════════════════════════════

class TestCall:

    @pytest.mark.asyncio
    async def test_returns_result(self):
        seen = []

        def handler(request):
            body = json.loads(request.content)
            seen.append(body)
            return _ok(request, "0x10")

        rpc = _client(handler)
        assert await rpc.call("eth_blockNumber") == "0x10"
        assert seen[0]["method"] == "eth_blockNumber"
        assert seen[0]["params"] == []
        assert seen[0]["jsonrpc"] == "2.0"

    @pytest.mark.asyncio
    async def test_request_ids_increment(self):
        ids = []

        def handler(request):
            ids.append(json.loads(request.content)["id"])
            return _ok(request, None)

        rpc = _client(handler)
        await rpc.call("a")
        await rpc.call("b")
        assert ids[1] == ids[0] + 1

    @pytest.mark.asyncio
    async def test_error_object_raises_without_retry(self):
        calls = []

        def handler(request):
            calls.append(1)
            body = json.loads(request.content)
            return httpx.Response(200, json={
                "jsonrpc": "2.0",
                "id": body["id"],
                "error": {"code": -32000, "message": "execution reverted", "data": "0x08c379a0"},
            })

        rpc = _client(handler)
        with pytest.raises(RpcError) as exc_info:
            await rpc.call("eth_estimateGas", [{}])
        assert exc_info.value.code == -32000
        assert exc_info.value.rpc_message == "execution reverted"
        assert exc_info.value.data == "0x08c379a0"
        assert len(calls) == 1


# ═══════════════════════════════════════════════════════════════════════
#  2. TRANSPORT FAILURES
# ═══════════════════════════════════════════════════════════════════════

class TestRetry:

    @pytest.mark.asyncio
    async def test_retries_5xx_then_succeeds(self):
        calls = []

        def handler(request):
            calls.append(1)
            if len(calls) < 3:
                return httpx.Response(503)
            return _ok(request, {"ok": True})

        rpc = _client(handler)
        assert await rpc.call("sui_getObject", ["0x1"]) == {"ok": True}
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_retries_network_error_then_unavailable(self):
        calls = []

        def handler(request):
            calls.append(1)
            raise httpx.ConnectError("connection refused", request=request)

        rpc = _client(handler, max_attempts=4)
        with pytest.raises(LedgerUnavailable) as exc_info:
            await rpc.call("eth_gasPrice")
        assert len(calls) == 4
        assert exc_info.value.handle is None
        assert "4 attempts" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(429)

        rpc = _client(handler, max_attempts=2)
        with pytest.raises(LedgerUnavailable):
            await rpc.call("eth_gasPrice")
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_client_error_status_not_retried(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(404)

        rpc = _client(handler)
        with pytest.raises(LedgerUnavailable):
            await rpc.call("eth_gasPrice")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_garbled_body(self):
        rpc = _client(lambda request: httpx.Response(200, content=b"<html>"))
        with pytest.raises(LedgerUnavailable):
            await rpc.call("eth_gasPrice")

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            JsonRpcClient(URL, max_attempts=0)

    def test_backoff_is_capped(self):
        rpc = JsonRpcClient(URL, client=httpx.AsyncClient(), backoff_base=0.5, backoff_max=2.0)
        assert rpc._backoff(0) == 0.5
        assert rpc._backoff(1) == 1.0
        assert rpc._backoff(5) == 2.0
