from __future__ import annotations

import logging
import threading
from typing import Iterable, Iterator

from src.domain.errors import ConfigurationError

logger = logging.getLogger(__name__)


class EndpointPool:
    """
    Ordered set of interchangeable service endpoints with a "current" pointer.

    Only the failover step should call `advance()`. Passing `expected` makes the rotation a
    compare-and-swap so two callers failing on the same endpoint rotate once, not twice.
    """

    def __init__(self, endpoints: Iterable[str]):
        self._endpoints: list[str] = [str(e).strip() for e in endpoints if str(e or "").strip()]
        self._index = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._endpoints)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._endpoints))

    @property
    def endpoints(self) -> list[str]:
        return list(self._endpoints)

    @property
    def index(self) -> int:
        return self._index

    def current(self) -> str:
        if not self._endpoints:
            raise ConfigurationError("No RPC endpoints configured")
        return self._endpoints[self._index]

    def advance(self, expected: str | None = None) -> str:
        if not self._endpoints:
            raise ConfigurationError("No RPC endpoints configured")
        with self._lock:
            current = self._endpoints[self._index]
            if expected is not None and expected != current:
                # Someone else already rotated away from the failing endpoint.
                return current
            self._index = (self._index + 1) % len(self._endpoints)
            nxt = self._endpoints[self._index]
        logger.warning("Switching to next RPC endpoint: %s (index: %s)", nxt, self._index)
        return nxt
