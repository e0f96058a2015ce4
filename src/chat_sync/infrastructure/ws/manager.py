"""In-process WebSocket connection manager."""
from __future__ import annotations

import logging
from typing import Any

from fastapi import WebSocket

from chat_sync.infrastructure.ws.protocol import OutboundType, WsOutbound

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks bridge WebSocket connections per conversation."""

    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = {}

    async def connect(self, ws: WebSocket, conversation_id: str) -> None:
        await ws.accept()
        self._connections.setdefault(conversation_id, set()).add(ws)
        logger.debug(
            "WS connected to %s (total=%d)",
            conversation_id, len(self._connections[conversation_id]),
        )

    def disconnect(self, ws: WebSocket, conversation_id: str) -> None:
        conns = self._connections.get(conversation_id)
        if conns:
            conns.discard(ws)
            if not conns:
                del self._connections[conversation_id]
        logger.debug("WS disconnected from %s", conversation_id)

    def connection_count(self, conversation_id: str) -> int:
        return len(self._connections.get(conversation_id, ()))

    async def send(self, ws: WebSocket, event_type: OutboundType, data: dict[str, Any]) -> None:
        await ws.send_text(WsOutbound(type=event_type, data=data).model_dump_json())

    async def broadcast_to_conversation(
        self,
        conversation_id: str,
        event_type: OutboundType,
        data: dict[str, Any],
    ) -> None:
        """Send a WS message to every connection watching a conversation."""
        raw = WsOutbound(type=event_type, data=data).model_dump_json()
        dead: list[WebSocket] = []
        for ws in list(self._connections.get(conversation_id, ())):
            try:
                await ws.send_text(raw)
            except Exception:
                dead.append(ws)
        for ws in dead:
            self.disconnect(ws, conversation_id)
