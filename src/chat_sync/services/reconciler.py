"""Visible message list for one conversation.

History pages, push-channel events and change-feed events all land here. The
list is ordered by (timestamp, arrival) and holds at most one entry per message
id. A second arrival of an id updates the existing entry in place; it never
appends. Optimistic entries inserted by the delivery pipeline live in the same
list under their temporary id until confirmation swaps them for the server copy
at the same position.
"""
from __future__ import annotations

import bisect
import itertools
import logging
from datetime import datetime
from typing import Iterable

from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import EventSource, MessageStatus

logger = logging.getLogger(__name__)

_SortKey = tuple[datetime, int]


class EventReconciler:
    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        self._keys: list[_SortKey] = []
        self._messages: list[Message] = []
        self._key_by_id: dict[str, _SortKey] = {}
        self._retired: dict[str, str] = {}
        self._arrival = itertools.count()

    # -- reads ---------------------------------------------------------------

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._key_by_id

    def get(self, message_id: str) -> Message | None:
        pos = self._position(message_id)
        return None if pos is None else self._messages[pos]

    def is_retired(self, temp_id: str) -> bool:
        return temp_id in self._retired

    def server_id_for(self, temp_id: str) -> str | None:
        return self._retired.get(temp_id)

    # -- internals -----------------------------------------------------------

    def _position(self, message_id: str) -> int | None:
        key = self._key_by_id.get(message_id)
        if key is None:
            return None
        return bisect.bisect_left(self._keys, key)

    def _insert(self, message: Message) -> None:
        key = (message.timestamp, next(self._arrival))
        pos = bisect.bisect_right(self._keys, key)
        self._keys.insert(pos, key)
        self._messages.insert(pos, message)
        self._key_by_id[message.id] = key

    def _replace_at(self, pos: int, message: Message, *, old_id: str | None = None) -> None:
        key = self._keys[pos]
        if old_id is not None and old_id != message.id:
            del self._key_by_id[old_id]
        self._messages[pos] = message
        self._key_by_id[message.id] = key

    def _remove_at(self, pos: int) -> Message:
        message = self._messages.pop(pos)
        self._keys.pop(pos)
        del self._key_by_id[message.id]
        return message

    # -- inbound merge -------------------------------------------------------

    def apply(self, message: Message, source: EventSource = EventSource.PUSH) -> bool:
        """Insert a confirmed message or merge it into the existing entry. Returns True if the list changed."""
        if message.is_pending:
            raise ValueError("Pending messages go through insert_optimistic")
        pos = self._position(message.id)
        if pos is None:
            self._insert(message)
            logger.debug("Inserted %s from %s", message.id, source)
            return True
        current = self._messages[pos]
        merged = current.merged_with(message)
        if merged == current:
            logger.debug("Duplicate %s from %s ignored", message.id, source)
            return False
        self._replace_at(pos, merged)
        return True

    def merge_history(self, messages: Iterable[Message]) -> bool:
        changed = False
        for message in messages:
            changed = self.apply(message, EventSource.HISTORY) or changed
        return changed

    def apply_status(
        self,
        message_ids: Iterable[str],
        status: MessageStatus,
        *,
        at: datetime | None = None,
    ) -> list[Message]:
        """Advance the status of known messages; unknown ids and regressions are ignored."""
        updated: list[Message] = []
        for message_id in message_ids:
            pos = self._position(message_id)
            if pos is None:
                continue
            current = self._messages[pos]
            advanced = current.advance(status, read_at=at)
            if advanced is not current:
                self._replace_at(pos, advanced)
                updated.append(advanced)
        return updated

    # -- optimistic entries --------------------------------------------------

    def insert_optimistic(self, message: Message) -> None:
        if not message.is_pending:
            raise ValueError("Only pending messages are inserted optimistically")
        if message.id in self._retired or message.id in self._key_by_id:
            raise ValueError(f"Temporary id {message.id} already used")
        self._insert(message)

    def confirm(self, temp_id: str, confirmed: Message) -> bool:
        """Swap a pending entry for its server copy at the same position and retire the temp id.

        Status already applied to the pending entry is kept if it is further along.

        If the server copy already arrived through another transport, the pending
        entry is dropped and the confirmation is merged into the existing one.
        Returns False when the temp id was already retired or is gone.
        """
        if temp_id in self._retired:
            logger.debug("Temporary id %s already retired", temp_id)
            return False
        pos = self._position(temp_id)
        if pos is None:
            return False
        self._retired[temp_id] = confirmed.id
        existing = self._position(confirmed.id)
        if existing is not None:
            self._remove_at(pos)
            existing = self._position(confirmed.id)
            assert existing is not None
            self._replace_at(existing, self._messages[existing].merged_with(confirmed))
            return True
        current = self._messages[pos]
        merged = confirmed.advance(current.status, read_at=current.read_at)
        self._replace_at(pos, merged, old_id=temp_id)
        return True

    def mark_failed(self, temp_id: str) -> Message | None:
        pos = self._position(temp_id)
        if pos is None:
            return None
        current = self._messages[pos]
        failed = current.advance(MessageStatus.FAILED)
        if failed is current:
            return None
        self._replace_at(pos, failed)
        return failed

    def remove(self, message_id: str) -> Message | None:
        pos = self._position(message_id)
        return None if pos is None else self._remove_at(pos)

    def retire(self, temp_id: str) -> None:
        """Retire a temporary id that will never be confirmed (discarded entries)."""
        self._retired.setdefault(temp_id, "")
