from __future__ import annotations

from typing import Any, Protocol

from chat_sync.application.dto.history import HistoryPage
from chat_sync.domain.entities.conversation import Conversation
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import MessageType


class ChatGateway(Protocol):
    """Typed persistence API the sessions talk to."""

    async def fetch_messages(
        self,
        conversation_id: str,
        *,
        limit: int = 50,
        before: str | None = None,
    ) -> HistoryPage: ...

    async def fetch_conversation(self, conversation_id: str) -> Conversation: ...

    async def send_message(
        self,
        conversation_id: str,
        *,
        client_msg_id: str,
        content: str,
        type: MessageType,
        metadata: dict[str, Any],
    ) -> Message: ...

    async def mark_read(self, conversation_id: str, message_ids: list[str]) -> None: ...
