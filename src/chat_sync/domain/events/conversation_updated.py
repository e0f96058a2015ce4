from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class ConversationUpdated:
    conversation_id: str
    updates: dict[str, Any]
