from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class TypingChanged:
    conversation_id: str
    user_id: str
    typing: bool
