from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import NewType, TypeAlias

ConversationId = NewType("ConversationId", str)
ServerMessageId = NewType("ServerMessageId", str)
TempMessageId = NewType("TempMessageId", str)


@dataclass(frozen=True, slots=True)
class Pending:
    """Identity of an optimistic message the server has not confirmed yet."""

    temp_id: TempMessageId

    @property
    def value(self) -> str:
        return self.temp_id


@dataclass(frozen=True, slots=True)
class Confirmed:
    server_id: ServerMessageId

    @property
    def value(self) -> str:
        return self.server_id


MessageRef: TypeAlias = Pending | Confirmed


def new_temp_id() -> TempMessageId:
    return TempMessageId(f"tmp-{uuid.uuid4().hex}")
