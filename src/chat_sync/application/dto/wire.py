"""Wire payloads shared by the REST gateway, push channel and change feed."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from chat_sync.domain.entities.conversation import Conversation
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import (
    MessageDirection,
    MessageStatus,
    MessageType,
)
from chat_sync.domain.value_objects.ids import Confirmed, ServerMessageId

_STATUS_ALIASES: dict[str, MessageStatus] = {
    "queued": MessageStatus.SENT,
    "pending": MessageStatus.SENT,
    "sending": MessageStatus.SENT,
    "accepted": MessageStatus.SENT,
    "sent": MessageStatus.SENT,
    "delivered": MessageStatus.DELIVERED,
    "read": MessageStatus.READ,
    "failed": MessageStatus.FAILED,
    "error": MessageStatus.FAILED,
    "undelivered": MessageStatus.FAILED,
}

_TYPE_ALIASES: dict[str, MessageType] = {
    "voice": MessageType.AUDIO,
    "file": MessageType.DOCUMENT,
    "message_with_files": MessageType.DOCUMENT,
}

_TYPE_VALUES = frozenset(t.value for t in MessageType)


def normalize_status(value: Any) -> Any:
    if isinstance(value, str):
        return _STATUS_ALIASES.get(value.lower(), MessageStatus.SENT)
    return value


def as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class MessagePayload(WireModel):
    id: str
    conversation_id: str | None = None
    content: str = ""
    type: MessageType = MessageType.TEXT
    direction: MessageDirection = MessageDirection.INBOUND
    status: MessageStatus = MessageStatus.SENT
    timestamp: datetime
    read_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _fill_aliases(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if data.get("timestamp") is None:
            data["timestamp"] = data.get("createdAt") or data.get("created_at")
        if not data.get("content"):
            data["content"] = data.get("text") or data.get("body") or ""
        if data.get("direction") is None and data.get("sender"):
            data["direction"] = "outbound" if data["sender"] == "agent" else "inbound"
        if data.get("metadata") is None:
            data.pop("metadata", None)
        return data

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        return normalize_status(value)

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            lowered = value.lower()
            if lowered in _TYPE_ALIASES:
                return _TYPE_ALIASES[lowered]
            if lowered in _TYPE_VALUES:
                return lowered
            return MessageType.TEXT
        return value

    @field_validator("direction", mode="before")
    @classmethod
    def _normalize_direction(cls, value: Any) -> Any:
        if value is None:
            return MessageDirection.INBOUND
        return value

    def to_domain(self, conversation_id: str) -> Message:
        return Message(
            ref=Confirmed(ServerMessageId(self.id)),
            conversation_id=self.conversation_id or conversation_id,
            content=self.content,
            type=self.type,
            direction=self.direction,
            status=self.status,
            timestamp=as_utc(self.timestamp),
            read_at=as_utc(self.read_at) if self.read_at else None,
            metadata=dict(self.metadata),
        )


class ConversationPayload(WireModel):
    id: str
    title: str = ""
    participants: list[str] = Field(default_factory=list)
    last_message: str | None = None
    last_message_at: datetime | None = None
    unread_count: int = 0

    @field_validator("participants", mode="before")
    @classmethod
    def _participant_ids(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [
                str(p.get("id") or p.get("email") or p.get("phone") or "") if isinstance(p, dict) else p
                for p in value
            ]
        return value

    @field_validator("last_message", mode="before")
    @classmethod
    def _flatten_last_message(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return value.get("content") or value.get("text")
        return value

    def to_domain(self) -> Conversation:
        return Conversation(
            id=self.id,
            title=self.title,
            participants=tuple(self.participants),
            last_message=self.last_message,
            last_message_at=as_utc(self.last_message_at) if self.last_message_at else None,
            unread_count=self.unread_count,
        )


class MessagePagePayload(WireModel):
    messages: list[MessagePayload] = Field(default_factory=list)
    has_more: bool = False
    total: int | None = None


class ApiEnvelope(WireModel):
    success: bool = True
    data: Any = None
    error: str | None = None
    message: str | None = None


def patch_conversation(conversation: Conversation, updates: dict[str, Any]) -> Conversation:
    """Apply a partial server update (camelCase or snake_case keys) to a conversation."""
    base = ConversationPayload(
        id=conversation.id,
        title=conversation.title,
        participants=list(conversation.participants),
        last_message=conversation.last_message,
        last_message_at=conversation.last_message_at,
        unread_count=conversation.unread_count,
    ).model_dump()
    renamed = {
        name: updates[key]
        for name, field in ConversationPayload.model_fields.items()
        for key in (field.alias, name)
        if key in updates
    }
    renamed.pop("id", None)
    return ConversationPayload.model_validate({**base, **renamed}).to_domain()
