from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from chat_sync.domain.entities.conversation import Conversation
from chat_sync.domain.value_objects.enums import MembershipState
from chat_sync.services.sync_session import ConversationSyncSession


class ConversationResponse(BaseModel):
    id: str
    title: str
    participants: list[str] = Field(default_factory=list)
    last_message: str | None = None
    last_message_at: datetime | None = None
    unread_count: int = 0

    @classmethod
    def from_domain(cls, conversation: Conversation) -> ConversationResponse:
        return cls(
            id=conversation.id,
            title=conversation.title,
            participants=list(conversation.participants),
            last_message=conversation.last_message,
            last_message_at=conversation.last_message_at,
            unread_count=conversation.unread_count,
        )


class SessionResponse(BaseModel):
    conversation_id: str
    state: MembershipState
    has_more: bool = False
    online_users: list[str] = Field(default_factory=list)
    typing_users: list[str] = Field(default_factory=list)
    conversation: ConversationResponse | None = None

    @classmethod
    def from_session(cls, session: ConversationSyncSession) -> SessionResponse:
        conversation = session.conversation
        return cls(
            conversation_id=session.conversation_id,
            state=session.state,
            has_more=session.has_more,
            online_users=list(session.online_users),
            typing_users=sorted(session.typing_users),
            conversation=ConversationResponse.from_domain(conversation) if conversation else None,
        )
