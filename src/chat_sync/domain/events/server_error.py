from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ServerErrorReported:
    conversation_id: str
    code: str
    message: str
