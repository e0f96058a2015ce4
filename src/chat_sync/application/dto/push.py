"""Inbound push-channel and change-feed payloads, mapped to domain events."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import Field, field_validator, model_validator

from chat_sync.application.dto.wire import MessagePayload, WireModel, as_utc, normalize_status
from chat_sync.domain.events.conversation_updated import ConversationUpdated
from chat_sync.domain.events.membership_confirmed import MembershipConfirmed
from chat_sync.domain.events.message_received import MessageReceived
from chat_sync.domain.events.message_status_changed import MessageStatusChanged
from chat_sync.domain.events.server_error import ServerErrorReported
from chat_sync.domain.events.typing_changed import TypingChanged
from chat_sync.domain.value_objects.enums import EventSource, MembershipState, MessageStatus

# Server -> client
CONVERSATION_JOINED = "conversation-joined"
CONVERSATION_LEFT = "conversation-left"
NEW_MESSAGE = "new-message"
MESSAGE_SENT = "message-sent"
MESSAGE_DELIVERED = "message-delivered"
MESSAGE_READ = "message-read"
TYPING_START = "typing-start"
TYPING_STOP = "typing-stop"
CONVERSATION_EVENT = "conversation-event"
SERVER_ERROR = "error"

# Client -> server
JOIN_CONVERSATION = "join-conversation"
LEAVE_CONVERSATION = "leave-conversation"
SEND_MESSAGE = "send-message"
MARK_AS_READ = "mark-as-read"


class MembershipPayload(WireModel):
    conversation_id: str
    online_users: list[str] = Field(default_factory=list)

    def to_event(self, state: MembershipState) -> MembershipConfirmed:
        return MembershipConfirmed(
            conversation_id=self.conversation_id,
            state=state,
            online_users=tuple(self.online_users),
        )


class NewMessagePayload(WireModel):
    conversation_id: str
    message: MessagePayload

    def to_event(self, source: EventSource = EventSource.PUSH) -> MessageReceived:
        return MessageReceived(
            message=self.message.to_domain(self.conversation_id),
            source=source,
        )


class _SentRef(WireModel):
    id: str
    status: MessageStatus = MessageStatus.SENT

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        return normalize_status(value)


class MessageSentPayload(WireModel):
    conversation_id: str
    message: _SentRef

    def to_event(self) -> MessageStatusChanged:
        return MessageStatusChanged(
            conversation_id=self.conversation_id,
            message_ids=(self.message.id,),
            status=self.message.status,
        )


class MessageDeliveredPayload(WireModel):
    conversation_id: str
    message_id: str

    def to_event(self) -> MessageStatusChanged:
        return MessageStatusChanged(
            conversation_id=self.conversation_id,
            message_ids=(self.message_id,),
            status=MessageStatus.DELIVERED,
        )


class MessageReadPayload(WireModel):
    conversation_id: str
    message_ids: list[str]
    read_at: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def _single_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and "messageIds" not in data and "messageId" in data:
            return {**data, "messageIds": [data["messageId"]]}
        return data

    def to_event(self) -> MessageStatusChanged:
        return MessageStatusChanged(
            conversation_id=self.conversation_id,
            message_ids=tuple(self.message_ids),
            status=MessageStatus.READ,
            at=as_utc(self.read_at) if self.read_at else None,
        )


class TypingPayload(WireModel):
    conversation_id: str
    user_id: str | None = None
    user_email: str | None = None

    def to_event(self, typing: bool) -> TypingChanged:
        return TypingChanged(
            conversation_id=self.conversation_id,
            user_id=self.user_id or self.user_email or "unknown",
            typing=typing,
        )


class ConversationEventPayload(WireModel):
    conversation_id: str
    updates: dict[str, Any] = Field(default_factory=dict)

    def to_event(self) -> ConversationUpdated:
        return ConversationUpdated(conversation_id=self.conversation_id, updates=dict(self.updates))


class ServerErrorPayload(WireModel):
    conversation_id: str | None = None
    error: str = "server_error"
    message: str = ""

    def to_event(self) -> ServerErrorReported:
        return ServerErrorReported(
            conversation_id=self.conversation_id or "",
            code=self.error,
            message=self.message or self.error,
        )


class FeedChangePayload(WireModel):
    """One change-feed document change."""

    change: Literal["added", "modified", "removed"] = "added"
    message: MessagePayload

    def to_event(self, conversation_id: str) -> MessageReceived:
        return MessageReceived(
            message=self.message.to_domain(conversation_id),
            source=EventSource.FEED,
        )
