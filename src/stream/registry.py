from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

TokenCallback = Callable[[str, Any], Any]


class CallbackRegistry:
    """
    Consumers invoked with (identifier, decoded payload) for every dispatched event.

    Callbacks run synchronously in registration order. A coroutine returned by a callback is
    scheduled as a task so slow consumers fan out instead of holding up the socket reader.
    """

    def __init__(self) -> None:
        self._callbacks: list[TokenCallback] = []
        self._pending: set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._callbacks)

    def add(self, callback: TokenCallback) -> None:
        self._callbacks.append(callback)

    def remove(self, callback: TokenCallback) -> None:
        try:
            self._callbacks.remove(callback)
        except ValueError:
            pass

    @property
    def pending(self) -> int:
        return len(self._pending)

    def dispatch(self, identifier: str, payload: Any) -> int:
        """Invoke every callback; returns how many completed (or were scheduled) without raising."""
        delivered = 0
        for cb in list(self._callbacks):
            try:
                result = cb(identifier, payload)
            except Exception:
                logger.exception("Token callback %s failed for %s", getattr(cb, "__name__", cb), identifier)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._on_task_done)
            delivered += 1
        return delivered

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Async token callback failed: %s: %s", type(exc).__name__, exc)

    async def drain(self, timeout: float | None = None) -> None:
        if not self._pending:
            return
        _, pending = await asyncio.wait(set(self._pending), timeout=timeout)
        for task in pending:
            task.cancel()
