"""Outbound message pipeline: optimistic insert, push hint, authoritative REST write."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from chat_sync.application.exceptions import (
    AppError,
    InvalidStateError,
    NotFoundError,
    ThrottledError,
    ValidationError,
)
from chat_sync.application.policies.backoff import BackoffController, operation_key
from chat_sync.application.policies.throttle import ThrottleGate
from chat_sync.application.ports.clock import Clock
from chat_sync.application.ports.gateway import ChatGateway
from chat_sync.application.ports.push import PushChannel
from chat_sync.application.dto.push import SEND_MESSAGE
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import (
    MessageDirection,
    MessageStatus,
    MessageType,
    OperationKind,
)
from chat_sync.domain.value_objects.ids import Pending, TempMessageId, new_temp_id
from chat_sync.services.membership import MembershipStateMachine
from chat_sync.services.reconciler import EventReconciler

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DeliveryHooks:
    """Callbacks into the owning session."""

    is_alive: Callable[[], bool]
    messages_changed: Callable[[], None]
    error: Callable[[AppError], None]
    confirmed: Callable[[Message], None] = lambda _m: None


@dataclass(slots=True)
class _Draft:
    content: str
    type: MessageType
    metadata: dict[str, Any] = field(default_factory=dict)


class DeliveryPipeline:
    def __init__(
        self,
        conversation_id: str,
        *,
        reconciler: EventReconciler,
        membership: MembershipStateMachine,
        gateway: ChatGateway,
        push: PushChannel,
        backoff: BackoffController,
        send_gate: ThrottleGate,
        clock: Clock,
        hooks: DeliveryHooks,
        id_factory: Callable[[], TempMessageId] = new_temp_id,
    ) -> None:
        self.conversation_id = conversation_id
        self._reconciler = reconciler
        self._membership = membership
        self._gateway = gateway
        self._push = push
        self._backoff = backoff
        self._send_gate = send_gate
        self._clock = clock
        self._hooks = hooks
        self._new_id = id_factory
        self._drafts: dict[str, _Draft] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._hints: set[asyncio.Task[None]] = set()

    def send(
        self,
        content: str,
        type: MessageType = MessageType.TEXT,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        """Insert a Sending message synchronously and start delivering it in the background."""
        self._membership.require_joined("send")
        if not content or not content.strip():
            raise ValidationError("Message content is empty")
        return self._stage(_Draft(content, type, dict(metadata or {})))

    def retry(self, message_id: str) -> Message:
        """Drop a failed entry and resend its original content as a fresh optimistic message."""
        self._membership.require_joined("retry")
        current = self._reconciler.get(message_id)
        if current is None:
            raise NotFoundError(f"Message {message_id} not found")
        if current.status != MessageStatus.FAILED:
            raise InvalidStateError(f"Message {message_id} is {current.status}, not failed")
        draft = self._drafts.pop(message_id, None) or _Draft(
            current.content, current.type, dict(current.metadata),
        )
        self._reconciler.remove(message_id)
        self._reconciler.retire(message_id)
        return self._stage(draft)

    def discard(self, message_id: str) -> None:
        current = self._reconciler.get(message_id)
        if current is None:
            raise NotFoundError(f"Message {message_id} not found")
        if not current.is_pending:
            raise InvalidStateError(f"Message {message_id} is already confirmed")
        task = self._tasks.pop(message_id, None)
        if task is not None and not task.done():
            task.cancel()
        self._drafts.pop(message_id, None)
        self._reconciler.remove(message_id)
        self._reconciler.retire(message_id)
        self._hooks.messages_changed()

    async def drain(self) -> None:
        """Wait for every in-flight delivery to settle."""
        while self._tasks or self._hints:
            pending = [*self._tasks.values(), *self._hints]
            await asyncio.gather(*pending, return_exceptions=True)

    # -- internals -----------------------------------------------------------

    def _stage(self, draft: _Draft) -> Message:
        temp_id = self._new_id()
        message = Message(
            ref=Pending(temp_id),
            conversation_id=self.conversation_id,
            content=draft.content,
            type=draft.type,
            direction=MessageDirection.OUTBOUND,
            status=MessageStatus.SENDING,
            timestamp=self._clock.now(),
            metadata=dict(draft.metadata),
        )
        self._reconciler.insert_optimistic(message)
        self._drafts[temp_id] = draft
        self._hooks.messages_changed()

        task = asyncio.ensure_future(self._deliver(temp_id, draft))
        self._tasks[temp_id] = task
        task.add_done_callback(lambda _t, key=temp_id: self._forget(key, _t))
        return message

    def _forget(self, temp_id: str, task: asyncio.Task[None]) -> None:
        if self._tasks.get(temp_id) is task:
            del self._tasks[temp_id]

    async def _deliver(self, temp_id: str, draft: _Draft) -> None:
        hint = asyncio.ensure_future(self._push_hint(temp_id, draft))
        self._hints.add(hint)
        hint.add_done_callback(self._hints.discard)
        key = operation_key(OperationKind.SEND, self.conversation_id, temp_id)
        try:
            confirmed = await self._backoff.run(
                key,
                lambda: self._gateway.send_message(
                    self.conversation_id,
                    client_msg_id=temp_id,
                    content=draft.content,
                    type=draft.type,
                    metadata=draft.metadata,
                ),
            )
        except AppError as exc:
            if not self._hooks.is_alive():
                return
            logger.warning("Delivery of %s failed: %s", temp_id, exc)
            if self._reconciler.mark_failed(temp_id) is not None:
                self._hooks.messages_changed()
            self._hooks.error(exc)
            return
        except Exception as exc:
            logger.exception("Unexpected delivery failure for %s", temp_id)
            if not self._hooks.is_alive():
                return
            if self._reconciler.mark_failed(temp_id) is not None:
                self._hooks.messages_changed()
            self._hooks.error(AppError(str(exc)))
            return

        if not self._hooks.is_alive():
            logger.debug("Session gone, dropping confirmation for %s", temp_id)
            return
        confirmed = confirmed.advance(MessageStatus.SENT)
        if self._reconciler.confirm(temp_id, confirmed):
            self._drafts.pop(temp_id, None)
            logger.info("Message %s confirmed as %s", temp_id, confirmed.id)
            self._hooks.messages_changed()
            self._hooks.confirmed(self._reconciler.get(confirmed.id) or confirmed)

    async def _push_hint(self, temp_id: str, draft: _Draft) -> None:
        payload = {
            "conversationId": self.conversation_id,
            "clientMessageId": temp_id,
            "content": draft.content,
            "type": draft.type.value,
            "metadata": draft.metadata,
        }
        try:
            await self._send_gate.execute(lambda: self._push.emit(SEND_MESSAGE, payload))
        except ThrottledError as exc:
            logger.debug("Push hint for %s dropped: %s", temp_id, exc.detail)
        except Exception:
            logger.warning("Push hint for %s failed", temp_id, exc_info=True)
