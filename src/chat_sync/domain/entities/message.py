from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from chat_sync.domain.value_objects.enums import MessageDirection, MessageStatus, MessageType
from chat_sync.domain.value_objects.ids import Confirmed, MessageRef, Pending


@dataclass(frozen=True, slots=True)
class Message:
    ref: MessageRef
    conversation_id: str
    content: str
    type: MessageType
    direction: MessageDirection
    status: MessageStatus
    timestamp: datetime
    read_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.ref.value

    @property
    def is_pending(self) -> bool:
        return isinstance(self.ref, Pending)

    @property
    def is_confirmed(self) -> bool:
        return isinstance(self.ref, Confirmed)

    def advance(self, status: MessageStatus, *, read_at: datetime | None = None) -> Message:
        """Return a copy moved forward to ``status``; ``self`` if that would move backwards."""
        if not self.status.can_advance_to(status):
            return self
        if status == MessageStatus.READ:
            return replace(self, status=status, read_at=read_at or self.read_at)
        return replace(self, status=status)

    def merged_with(self, incoming: Message) -> Message:
        """Fold a later copy of the same message into this one without regressing status."""
        merged = replace(
            self,
            content=incoming.content or self.content,
            metadata={**self.metadata, **incoming.metadata},
            read_at=self.read_at or incoming.read_at,
        )
        return merged.advance(incoming.status, read_at=incoming.read_at)
