from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError as PayloadError

from chat_sync.application.dto.history import HistoryPage
from chat_sync.application.dto.wire import ConversationPayload, MessagePagePayload, MessagePayload
from chat_sync.application.exceptions import NetworkError
from chat_sync.application.ports.rest import RestClient
from chat_sync.domain.entities.conversation import Conversation
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import MessageDirection, MessageType

logger = logging.getLogger(__name__)


def _unwrap(data: Any, key: str) -> Any:
    if isinstance(data, dict) and isinstance(data.get(key), dict):
        return data[key]
    return data


class RestChatGateway:
    """ChatGateway over the backend's ``/api/conversations`` resources."""

    def __init__(self, rest: RestClient) -> None:
        self._rest = rest

    async def fetch_messages(
        self,
        conversation_id: str,
        *,
        limit: int = 50,
        before: str | None = None,
    ) -> HistoryPage:
        data = await self._rest.get(
            f"/api/conversations/{conversation_id}/messages",
            params={"limit": limit, "before": before},
        )
        if isinstance(data, list):
            data = {"messages": data, "hasMore": len(data) >= limit}
        try:
            page = MessagePagePayload.model_validate(data)
        except PayloadError as exc:
            raise NetworkError(f"Malformed message page for {conversation_id}: {exc}") from exc
        messages = sorted(
            (m.to_domain(conversation_id) for m in page.messages),
            key=lambda m: m.timestamp,
        )
        return HistoryPage(messages=tuple(messages), has_more=page.has_more)

    async def fetch_conversation(self, conversation_id: str) -> Conversation:
        data = await self._rest.get(f"/api/conversations/{conversation_id}")
        try:
            return ConversationPayload.model_validate(_unwrap(data, "conversation")).to_domain()
        except PayloadError as exc:
            raise NetworkError(f"Malformed conversation {conversation_id}: {exc}") from exc

    async def send_message(
        self,
        conversation_id: str,
        *,
        client_msg_id: str,
        content: str,
        type: MessageType,
        metadata: dict[str, Any],
    ) -> Message:
        data = await self._rest.post(
            f"/api/conversations/{conversation_id}/messages",
            json={
                "content": content,
                "type": type.value,
                "metadata": metadata,
                "clientMessageId": client_msg_id,
            },
        )
        try:
            payload = MessagePayload.model_validate(_unwrap(data, "message"))
        except PayloadError as exc:
            raise NetworkError(f"Malformed send response for {client_msg_id}: {exc}") from exc
        # the sender of a message we posted is always us
        return replace(payload.to_domain(conversation_id), direction=MessageDirection.OUTBOUND)

    async def mark_read(self, conversation_id: str, message_ids: list[str]) -> None:
        read_at = datetime.now(timezone.utc).isoformat()
        for message_id in message_ids:
            await self._rest.put(
                f"/api/conversations/{conversation_id}/messages/{message_id}/read",
                json={"readAt": read_at},
            )
        logger.debug("Marked %d messages read in %s", len(message_ids), conversation_id)
