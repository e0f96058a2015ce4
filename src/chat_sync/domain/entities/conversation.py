from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True, slots=True)
class Conversation:
    id: str
    title: str
    participants: tuple[str, ...] = field(default_factory=tuple)
    last_message: str | None = None
    last_message_at: datetime | None = None
    unread_count: int = 0
