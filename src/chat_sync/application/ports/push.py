from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol

PushHandler = Callable[[dict[str, Any]], Awaitable[None] | None]


class PushChannel(Protocol):
    """Real-time transport (socket.io in production)."""

    async def emit(self, event: str, payload: dict[str, Any]) -> None: ...

    def on(self, event: str, handler: PushHandler) -> None: ...

    def off(self, event: str, handler: PushHandler) -> None: ...
