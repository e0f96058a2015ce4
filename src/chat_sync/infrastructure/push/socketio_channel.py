"""Push channel over a socket.io client connection."""
from __future__ import annotations

import asyncio
import logging
from typing import Any

import socketio
from socketio.exceptions import ConnectionError as SioConnectionError
from socketio.exceptions import SocketIOError

from chat_sync.application.exceptions import NetworkError
from chat_sync.application.ports.push import PushHandler

logger = logging.getLogger(__name__)


class SocketIOPushChannel:
    """Fans each inbound event out to every registered handler.

    The socket.io client keeps one callback per event, so this adapter
    registers a single dispatcher per event name and owns the handler lists.
    """

    def __init__(
        self,
        url: str,
        *,
        path: str = "socket.io",
        token: str = "",
        connect_timeout: float = 10.0,
        client: socketio.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._path = path
        self._token = token
        self._connect_timeout = connect_timeout
        self._sio = client or socketio.AsyncClient(
            reconnection=True,
            reconnection_delay=1,
            reconnection_delay_max=30,
            logger=False,
            engineio_logger=False,
        )
        self._handlers: dict[str, list[PushHandler]] = {}

        self._sio.on("connect", self._on_connect)
        self._sio.on("disconnect", self._on_disconnect)

    @property
    def connected(self) -> bool:
        return bool(self._sio.connected)

    async def connect(self) -> None:
        if self._sio.connected:
            return
        try:
            await self._sio.connect(
                self._url,
                socketio_path=self._path,
                auth={"token": self._token} if self._token else None,
                transports=["websocket", "polling"],
                wait_timeout=self._connect_timeout,
            )
        except SioConnectionError as exc:
            raise NetworkError(f"Push channel connect to {self._url} failed: {exc}") from exc

    async def disconnect(self) -> None:
        if self._sio.connected:
            await self._sio.disconnect()

    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        if not self._sio.connected:
            raise NetworkError(f"Push channel not connected, cannot emit {event}")
        try:
            await self._sio.emit(event, payload)
        except SocketIOError as exc:
            raise NetworkError(f"Emit of {event} failed: {exc}") from exc

    def on(self, event: str, handler: PushHandler) -> None:
        handlers = self._handlers.get(event)
        if handlers is None:
            handlers = self._handlers[event] = []
            self._sio.on(event, self._dispatcher(event))
        handlers.append(handler)

    def off(self, event: str, handler: PushHandler) -> None:
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def _dispatcher(self, event: str):
        async def _dispatch(data: Any = None) -> None:
            if not isinstance(data, dict):
                logger.debug("Ignoring non-object %s payload: %r", event, data)
                return
            for handler in list(self._handlers.get(event, ())):
                try:
                    result = handler(data)
                    if asyncio.iscoroutine(result):
                        await result
                except Exception:
                    logger.exception("Push handler for %s failed", event)

        return _dispatch

    async def _on_connect(self) -> None:
        logger.info("Push channel connected to %s", self._url)

    async def _on_disconnect(self, *args: Any) -> None:
        logger.warning("Push channel disconnected from %s", self._url)
