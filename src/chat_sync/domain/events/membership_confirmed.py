from __future__ import annotations

from dataclasses import dataclass

from chat_sync.domain.value_objects.enums import MembershipState


@dataclass(frozen=True, slots=True)
class MembershipConfirmed:
    conversation_id: str
    state: MembershipState
    online_users: tuple[str, ...] = ()
