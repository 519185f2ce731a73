from __future__ import annotations

from typing import Awaitable, Callable, Protocol


class StreamConnection(Protocol):
    async def send(self, message: str | bytes) -> None: ...

    async def recv(self) -> str | bytes: ...

    async def close(self) -> None: ...


Connector = Callable[[str], Awaitable[StreamConnection]]
