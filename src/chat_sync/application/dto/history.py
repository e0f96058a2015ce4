from __future__ import annotations

from dataclasses import dataclass

from chat_sync.domain.entities.message import Message


@dataclass(frozen=True, slots=True)
class HistoryPage:
    """One page of persisted messages, oldest first."""

    messages: tuple[Message, ...]
    has_more: bool = False

    @property
    def oldest_id(self) -> str | None:
        return self.messages[0].id if self.messages else None
