"""Join/leave lifecycle of one conversation.

    Idle ──join──▶ Joining ──confirm──▶ Joined ──leave──▶ Leaving ──confirm/teardown──▶ Left
     ▲               │                                                                  │
     └──abort_join───┘                         Left ──join──▶ Joining ◀─────────────────┘

The machine never times out on its own; a join that is never confirmed stays
in Joining until the owner aborts it.
"""
from __future__ import annotations

import logging
from typing import Callable

from chat_sync.application.exceptions import InvalidStateError
from chat_sync.domain.value_objects.enums import MembershipState

logger = logging.getLogger(__name__)

OnTransition = Callable[[MembershipState, MembershipState], None]


class MembershipStateMachine:
    def __init__(self, conversation_id: str, on_transition: OnTransition | None = None) -> None:
        self.conversation_id = conversation_id
        self._state = MembershipState.IDLE
        self._state_before_join = MembershipState.IDLE
        self._leave_requested = False
        self._on_transition = on_transition

    @property
    def state(self) -> MembershipState:
        return self._state

    @property
    def is_joined(self) -> bool:
        return self._state == MembershipState.JOINED

    def _move(self, new: MembershipState) -> None:
        old = self._state
        if old == new:
            return
        self._state = new
        logger.debug("Membership %s: %s -> %s", self.conversation_id, old, new)
        if self._on_transition is not None:
            self._on_transition(old, new)

    def begin_join(self) -> None:
        if not self._state.is_quiescent:
            raise InvalidStateError(f"Cannot join from {self._state}")
        self._state_before_join = self._state
        self._leave_requested = False
        self._move(MembershipState.JOINING)

    def confirm_join(self) -> bool:
        """Apply a server join confirmation. Returns False when it does not apply."""
        if self._state != MembershipState.JOINING:
            logger.debug(
                "Ignoring join confirmation for %s in state %s", self.conversation_id, self._state,
            )
            return False
        self._move(MembershipState.JOINED)
        return True

    def abort_join(self) -> None:
        if self._state != MembershipState.JOINING:
            return
        self._move(self._state_before_join)

    def begin_leave(self) -> bool:
        """Move to Leaving. Returns True only the first time, so the request goes out once."""
        if self._state != MembershipState.JOINED:
            raise InvalidStateError(f"Cannot leave from {self._state}")
        self._move(MembershipState.LEAVING)
        if self._leave_requested:
            return False
        self._leave_requested = True
        return True

    def confirm_leave(self) -> bool:
        if self._state != MembershipState.LEAVING:
            return False
        self._move(MembershipState.LEFT)
        return True

    def teardown(self) -> None:
        """Force the quiescent end state regardless of pending confirmations."""
        if self._state in (MembershipState.JOINED, MembershipState.LEAVING):
            self._move(MembershipState.LEFT)
        elif self._state == MembershipState.JOINING:
            self._move(self._state_before_join)

    def require_joined(self, operation: str) -> None:
        if self._state != MembershipState.JOINED:
            raise InvalidStateError(f"Cannot {operation} while {self._state}")
