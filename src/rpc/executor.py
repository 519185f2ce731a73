from __future__ import annotations

import asyncio
import logging
import socket
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

import httpx

from src.domain.errors import ExhaustedFailoverError, RpcError, TransportError
from src.rpc.endpoint_pool import EndpointPool

logger = logging.getLogger(__name__)

C = TypeVar("C")
T = TypeVar("T")

DEFAULT_ATTEMPTS_PER_ENDPOINT = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0

RETRIABLE_STATUS_CODES = frozenset({429, 502, 503, 504})

# Lower-cased fragments seen in transient network/availability failures.
_TRANSIENT_MARKERS = (
    "failed to fetch",
    "network request failed",
    "timeout",
    "timed out",
    "econnrefused",
    "econnreset",
    "enotfound",
    "esockettimedout",
    "connection refused",
    "connection reset",
    "service unavailable",
)


def is_retriable_status(status_code: int) -> bool:
    return status_code in RETRIABLE_STATUS_CODES or status_code >= 500


def is_retriable_error(exc: BaseException) -> bool:
    """True when the failure looks transient and a wait/failover may help."""
    if isinstance(exc, TransportError):
        return exc.retriable
    if isinstance(exc, RpcError):
        return False
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return is_retriable_status(exc.response.status_code)
    if isinstance(exc, (ConnectionRefusedError, ConnectionResetError, TimeoutError, socket.gaierror)):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


@dataclass
class RetryContext:
    attempts_left_on_endpoint: int
    cycles_left: int
    total_attempts: int = 0
    last_error: BaseException | None = None


class ResilientRequestExecutor(Generic[C]):
    """
    Runs a remote call against the pool's current endpoint with per-endpoint retries and
    cross-endpoint failover.

    `connection_factory(endpoint)` builds the connection handle an action receives. The handle
    for the current endpoint is cached and swapped in a single assignment on failover.
    """

    def __init__(
        self,
        pool: EndpointPool,
        connection_factory: Callable[[str], C],
        *,
        attempts_per_endpoint: int = DEFAULT_ATTEMPTS_PER_ENDPOINT,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        is_retriable: Callable[[BaseException], bool] = is_retriable_error,
    ) -> None:
        if int(attempts_per_endpoint) < 1:
            raise ValueError("attempts_per_endpoint must be >= 1")
        self.pool = pool
        self.connection_factory = connection_factory
        self.attempts_per_endpoint = int(attempts_per_endpoint)
        self.retry_delay_seconds = max(0.0, float(retry_delay_seconds))
        self.is_retriable = is_retriable

        self._connection: tuple[str, C] | None = None
        # Lifetime counters (observability only).
        self.attempts = 0
        self.failovers = 0

    def connection(self) -> C:
        endpoint = self.pool.current()
        cached = self._connection
        if cached is not None and cached[0] == endpoint:
            return cached[1]
        logger.info("Connecting to RPC endpoint: %s", endpoint)
        conn = self.connection_factory(endpoint)
        self._connection = (endpoint, conn)
        return conn

    def _fail_over(self, failed_endpoint: str) -> C:
        self.pool.advance(expected=failed_endpoint)
        self.failovers += 1
        return self.connection()

    async def execute(
        self,
        action: Callable[[C], Awaitable[T]],
        is_retriable: Callable[[BaseException], bool] | None = None,
    ) -> T:
        check = is_retriable or self.is_retriable
        endpoints = len(self.pool)
        ctx = RetryContext(attempts_left_on_endpoint=self.attempts_per_endpoint, cycles_left=endpoints)

        conn = self.connection()
        for cycle in range(endpoints):
            endpoint = self.pool.current()
            ctx.cycles_left = endpoints - cycle
            ctx.attempts_left_on_endpoint = self.attempts_per_endpoint
            logger.debug("RPC call on %s (cycle %s/%s)", endpoint, cycle + 1, endpoints)

            for attempt in range(self.attempts_per_endpoint):
                ctx.total_attempts += 1
                ctx.attempts_left_on_endpoint -= 1
                self.attempts += 1
                try:
                    return await action(conn)
                except Exception as exc:
                    ctx.last_error = exc
                    retriable = check(exc)
                    logger.warning(
                        "RPC call attempt %s/%s on %s failed: %s: %s",
                        attempt + 1,
                        self.attempts_per_endpoint,
                        endpoint,
                        type(exc).__name__,
                        exc,
                    )
                    if ctx.attempts_left_on_endpoint > 0:
                        if not retriable:
                            raise
                        if self.retry_delay_seconds:
                            await asyncio.sleep(self.retry_delay_seconds)
                        continue
                    if not retriable:
                        logger.error("Non-retriable error on last attempt against %s: %s", endpoint, exc)
                        raise
                    if ctx.cycles_left > 1:
                        logger.warning("All attempts on %s failed. Switching RPC endpoint.", endpoint)
                        conn = self._fail_over(endpoint)
                        break
                    logger.error(
                        "All RPC endpoints tried and failed after %s total attempts.", ctx.total_attempts
                    )
                    raise ExhaustedFailoverError(
                        attempts=ctx.total_attempts, endpoints=endpoints, last_error=exc
                    ) from exc

        raise ExhaustedFailoverError(attempts=ctx.total_attempts, endpoints=endpoints, last_error=ctx.last_error)


def describe_executor(executor: ResilientRequestExecutor[Any]) -> dict[str, Any]:
    return {
        "endpoints": executor.pool.endpoints,
        "current_endpoint": executor.pool.current(),
        "attempts_per_endpoint": executor.attempts_per_endpoint,
        "retry_delay_seconds": executor.retry_delay_seconds,
        "attempts": executor.attempts,
        "failovers": executor.failovers,
    }
