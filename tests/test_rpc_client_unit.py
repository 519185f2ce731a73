import asyncio
import json

import httpx
import pytest

from src.domain.errors import ConfigurationError, ExhaustedFailoverError, RpcError, TransportError
from src.rpc.client import RpcConfig, SolanaRpcConnection, build_executor, load_rpc_config
from src.rpc.executor import is_retriable_error


def _run_call(handler, method="getBalance", params=None):
    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            conn = SolanaRpcConnection("https://rpc.example", client)
            return await conn.call(method, params or ["Wallet111"])

    return asyncio.run(scenario())


def test_call_posts_jsonrpc_body_and_returns_result():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured.update(json.loads(request.content))
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": captured["id"], "result": {"value": 42}})

    assert _run_call(handler) == {"value": 42}
    assert captured["jsonrpc"] == "2.0"
    assert captured["method"] == "getBalance"
    assert captured["params"] == ["Wallet111"]


def test_service_unavailable_is_retriable_transport_error():
    with pytest.raises(TransportError) as info:
        _run_call(lambda request: httpx.Response(503, text="busy"))
    assert info.value.retriable is True
    assert info.value.status_code == 503


@pytest.mark.parametrize("code", [500, 501, 429])
def test_server_errors_agree_with_retry_rule(code):
    with pytest.raises(TransportError) as info:
        _run_call(lambda request: httpx.Response(code, text="oops"))
    assert info.value.retriable is True
    assert is_retriable_error(info.value) is True


def test_client_error_is_not_retriable():
    with pytest.raises(TransportError) as info:
        _run_call(lambda request: httpx.Response(401, text="bad api key"))
    assert info.value.retriable is False


def test_connect_failure_becomes_retriable_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError) as info:
        _run_call(handler)
    assert info.value.retriable is True


def test_jsonrpc_error_object_raises_rpc_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "Invalid param"}})

    with pytest.raises(RpcError) as info:
        _run_call(handler)
    assert info.value.code == -32602


def test_executor_fails_over_between_endpoints():
    hits: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        hits.append(request.url.host)
        if request.url.host == "a.example":
            return httpx.Response(503)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": 7})

    cfg = RpcConfig(
        endpoints=["https://a.example", "https://b.example"],
        retry_attempts=2,
        retry_delay_ms=0,
        timeout_seconds=1.0,
        commitment="confirmed",
    )

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            ex = build_executor(cfg, client)
            return await ex.execute(lambda conn: conn.call("getSlot")), ex

    result, ex = asyncio.run(scenario())
    assert result == 7
    assert hits == ["a.example", "a.example", "b.example"]
    assert ex.pool.current() == "https://b.example"


def test_executor_does_not_fail_over_on_rpc_error():
    hits: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        hits.append(request.url.host)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "bad"}})

    cfg = RpcConfig(["https://a.example", "https://b.example"], 3, 0, 1.0, "confirmed")

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            ex = build_executor(cfg, client)
            await ex.execute(lambda conn: conn.call("getSlot"))

    with pytest.raises(RpcError):
        asyncio.run(scenario())
    assert hits == ["a.example"]


def test_executor_exhausts_all_endpoints():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    cfg = RpcConfig(["https://a.example", "https://b.example"], 2, 0, 1.0, "confirmed")

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            ex = build_executor(cfg, client)
            await ex.execute(lambda conn: conn.call("getSlot"))

    with pytest.raises(ExhaustedFailoverError) as info:
        asyncio.run(scenario())
    assert info.value.attempts == 4


def test_load_rpc_config_accepts_comma_separated_string():
    cfg = load_rpc_config({"rpc": {"endpoints": "https://a, https://b ,", "retry_attempts": 2}})
    assert cfg.endpoints == ["https://a", "https://b"]
    assert cfg.retry_attempts == 2
    assert cfg.retry_delay_ms == 1000


def test_load_rpc_config_requires_endpoints():
    with pytest.raises(ConfigurationError):
        load_rpc_config({"rpc": {"endpoints": []}})
