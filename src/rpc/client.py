from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from src.domain.errors import ConfigurationError, RpcError, TransportError
from src.rpc.endpoint_pool import EndpointPool
from src.rpc.executor import ResilientRequestExecutor, is_retriable_status

logger = logging.getLogger(__name__)

DEFAULT_COMMITMENT = "confirmed"


@dataclass(frozen=True)
class RpcConfig:
    endpoints: list[str]
    retry_attempts: int
    retry_delay_ms: int
    timeout_seconds: float
    commitment: str


def load_rpc_config(config: dict) -> RpcConfig:
    r = (config.get("rpc") or {}) if isinstance(config, dict) else {}
    endpoints = r.get("endpoints") or []
    if isinstance(endpoints, str):
        endpoints = endpoints.split(",")
    endpoints = [str(e).strip() for e in endpoints if str(e or "").strip()]
    if not endpoints:
        raise ConfigurationError("rpc.endpoints must list at least one endpoint")
    return RpcConfig(
        endpoints=endpoints,
        retry_attempts=int(r.get("retry_attempts", 3)),
        retry_delay_ms=int(r.get("retry_delay_ms", 1000)),
        timeout_seconds=float(r.get("timeout_seconds", 15.0)),
        commitment=str(r.get("commitment", DEFAULT_COMMITMENT)),
    )


class SolanaRpcConnection:
    """
    JSON-RPC 2.0 handle bound to one endpoint.

    Handles are cheap; every handle shares the caller's `httpx.AsyncClient`, so swapping
    endpoints on failover never leaks sockets.
    """

    _ids = itertools.count(1)

    def __init__(self, endpoint: str, http_client: httpx.AsyncClient, *, commitment: str = DEFAULT_COMMITMENT):
        self.endpoint = endpoint
        self.http_client = http_client
        self.commitment = commitment

    def __repr__(self) -> str:
        return f"SolanaRpcConnection({self.endpoint!r})"

    async def call(self, method: str, params: list[Any] | None = None) -> Any:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": list(params or [])}
        try:
            resp = await self.http_client.post(self.endpoint, json=body)
        except httpx.TimeoutException as exc:
            raise TransportError(f"{method} timeout on {self.endpoint}: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransportError(f"{method} failed on {self.endpoint}: {type(exc).__name__}: {exc}") from exc

        status = resp.status_code
        if is_retriable_status(status):
            raise TransportError(
                f"{method} on {self.endpoint}: HTTP {status} (service unavailable)",
                retriable=True,
                status_code=status,
            )
        if status >= 400:
            raise TransportError(
                f"{method} on {self.endpoint}: HTTP {status}: {resp.text[:200]}",
                retriable=False,
                status_code=status,
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise TransportError(f"{method} on {self.endpoint}: invalid JSON response", retriable=True) from exc

        err = data.get("error") if isinstance(data, dict) else None
        if err:
            if isinstance(err, dict):
                raise RpcError(str(err.get("message") or err), code=err.get("code"), data=err.get("data"))
            raise RpcError(str(err))
        if not isinstance(data, dict) or "result" not in data:
            raise TransportError(f"{method} on {self.endpoint}: response missing result", retriable=True)
        return data["result"]


def build_executor(
    rpc_config: RpcConfig, http_client: httpx.AsyncClient
) -> ResilientRequestExecutor[SolanaRpcConnection]:
    pool = EndpointPool(rpc_config.endpoints)
    logger.info("Using RPC endpoints: %s", ", ".join(pool.endpoints))
    return ResilientRequestExecutor(
        pool,
        lambda endpoint: SolanaRpcConnection(endpoint, http_client, commitment=rpc_config.commitment),
        attempts_per_endpoint=rpc_config.retry_attempts,
        retry_delay_seconds=rpc_config.retry_delay_ms / 1000.0,
    )
