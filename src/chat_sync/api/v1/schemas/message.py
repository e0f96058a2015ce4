from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import MessageDirection, MessageStatus, MessageType


class SendMessageRequest(BaseModel):
    content: str = Field(min_length=1)
    type: MessageType = MessageType.TEXT
    metadata: dict[str, Any] = Field(default_factory=dict)


class MarkReadRequest(BaseModel):
    message_ids: list[str] | None = None


class MessageResponse(BaseModel):
    id: str
    pending: bool
    conversation_id: str
    content: str
    type: MessageType
    direction: MessageDirection
    status: MessageStatus
    timestamp: datetime
    read_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_domain(cls, message: Message) -> MessageResponse:
        return cls(
            id=message.id,
            pending=message.is_pending,
            conversation_id=message.conversation_id,
            content=message.content,
            type=message.type,
            direction=message.direction,
            status=message.status,
            timestamp=message.timestamp,
            read_at=message.read_at,
            metadata=dict(message.metadata),
        )
