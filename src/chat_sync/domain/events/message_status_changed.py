from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from chat_sync.domain.value_objects.enums import MessageStatus


@dataclass(frozen=True, slots=True)
class MessageStatusChanged:
    conversation_id: str
    message_ids: tuple[str, ...]
    status: MessageStatus
    at: datetime | None = None
