"""Per-conversation façade over membership, delivery, reconciliation and history.

All handlers run on the event loop that owns the session, so message-list
mutations for one conversation never interleave. Background work (post-join
sync, read persistence, timers) is tracked and guarded by a liveness check so
that nothing mutates a session after it has been torn down.
"""
from __future__ import annotations

import asyncio
import contextlib
import hashlib
import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Coroutine, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PayloadError

from chat_sync.application.dto.push import (
    CONVERSATION_EVENT,
    CONVERSATION_JOINED,
    CONVERSATION_LEFT,
    JOIN_CONVERSATION,
    LEAVE_CONVERSATION,
    MARK_AS_READ,
    MESSAGE_DELIVERED,
    MESSAGE_READ,
    MESSAGE_SENT,
    NEW_MESSAGE,
    SERVER_ERROR,
    TYPING_START,
    TYPING_STOP,
    ConversationEventPayload,
    FeedChangePayload,
    MembershipPayload,
    MessageDeliveredPayload,
    MessageReadPayload,
    MessageSentPayload,
    NewMessagePayload,
    ServerErrorPayload,
    TypingPayload,
)
from chat_sync.application.dto.wire import patch_conversation
from chat_sync.application.exceptions import (
    AppError,
    InvalidStateError,
    NetworkError,
    RequestTimeoutError,
    ServerError,
    ThrottledError,
)
from chat_sync.application.listeners import ListenerSet, Listener, RemoveListener
from chat_sync.application.policies.backoff import operation_key
from chat_sync.application.policies.throttle import SessionThrottles
from chat_sync.application.ports.change_feed import ChangeFeed, FeedQuery, Unsubscribe
from chat_sync.application.ports.clock import Clock, SystemClock
from chat_sync.application.ports.gateway import ChatGateway
from chat_sync.application.ports.push import PushChannel, PushHandler
from chat_sync.application.registry import EngineRegistry
from chat_sync.config import EngineConfig
from chat_sync.domain.entities.conversation import Conversation
from chat_sync.domain.entities.message import Message
from chat_sync.domain.events.message_received import MessageReceived
from chat_sync.domain.events.message_status_changed import MessageStatusChanged
from chat_sync.domain.value_objects.enums import (
    MembershipState,
    MessageDirection,
    MessageStatus,
    MessageType,
    OperationKind,
)
from chat_sync.domain.value_objects.ids import TempMessageId, new_temp_id
from chat_sync.services.delivery import DeliveryHooks, DeliveryPipeline
from chat_sync.services.history import HistoryLoader
from chat_sync.services.membership import MembershipStateMachine
from chat_sync.services.reconciler import EventReconciler

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _fingerprint(*parts: str) -> str:
    return hashlib.blake2b("|".join(parts).encode(), digest_size=8).hexdigest()


class ConversationSyncSession:
    def __init__(
        self,
        conversation_id: str,
        *,
        push: PushChannel,
        gateway: ChatGateway,
        registry: EngineRegistry,
        change_feed: ChangeFeed | None = None,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
        id_factory: Callable[[], TempMessageId] = new_temp_id,
    ) -> None:
        self.conversation_id = conversation_id
        self.config = config or EngineConfig()
        self._push = push
        self._gateway = gateway
        self._registry = registry
        self._feed = change_feed
        self._clock = clock or SystemClock()
        self._id_factory = id_factory

        self.messages_changed: ListenerSet[tuple[Message, ...]] = ListenerSet("messages_changed")
        self.membership_changed: ListenerSet[MembershipState] = ListenerSet("membership_changed")
        self.errors: ListenerSet[AppError] = ListenerSet("errors")
        self.conversation_changed: ListenerSet[Conversation] = ListenerSet("conversation_changed")
        self.typing_changed: ListenerSet[frozenset[str]] = ListenerSet("typing_changed")

        self._membership = MembershipStateMachine(conversation_id, on_transition=self._on_transition)
        self._reconciler = EventReconciler(conversation_id)
        self._throttles = SessionThrottles(self.config.throttle_limits, self._clock)
        self._history = HistoryLoader(
            conversation_id,
            gateway=gateway,
            registry=registry,
            sync_gate=self._throttles.sync,
            page_size=self.config.page_size,
            messages_ttl=self.config.messages_ttl,
            conversation_ttl=self.config.conversation_ttl,
        )
        self._generation = 0
        self._alive = False
        self._closed = False
        self._delivery = self._new_delivery()

        self._conversation: Conversation | None = None
        self._online_users: tuple[str, ...] = ()
        self._typing_users: set[str] = set()
        self._typing = False
        self._has_more = False

        self._handlers: dict[str, PushHandler] = {
            CONVERSATION_JOINED: self._on_joined,
            CONVERSATION_LEFT: self._on_left,
            NEW_MESSAGE: self._on_new_message,
            MESSAGE_SENT: self._on_message_sent,
            MESSAGE_DELIVERED: self._on_message_delivered,
            MESSAGE_READ: self._on_message_read,
            TYPING_START: self._on_typing_start,
            TYPING_STOP: self._on_typing_stop,
            CONVERSATION_EVENT: self._on_conversation_event,
            SERVER_ERROR: self._on_server_error,
        }
        self._attached = False
        self._unsubscribe_feed: Unsubscribe | None = None
        self._joined_event = asyncio.Event()
        self._left_event = asyncio.Event()
        self._join_timer: asyncio.Task[None] | None = None
        self._typing_timer: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    # -- observation ---------------------------------------------------------

    @property
    def state(self) -> MembershipState:
        return self._membership.state

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._reconciler.messages

    @property
    def conversation(self) -> Conversation | None:
        return self._conversation

    @property
    def online_users(self) -> tuple[str, ...]:
        return self._online_users

    @property
    def typing_users(self) -> frozenset[str]:
        return frozenset(self._typing_users)

    @property
    def has_more(self) -> bool:
        return self._has_more

    @property
    def is_alive(self) -> bool:
        return self._alive and not self._closed

    def on_messages_changed(self, listener: Listener[tuple[Message, ...]]) -> RemoveListener:
        return self.messages_changed.add(listener)

    def on_membership_changed(self, listener: Listener[MembershipState]) -> RemoveListener:
        return self.membership_changed.add(listener)

    def on_error(self, listener: Listener[AppError]) -> RemoveListener:
        return self.errors.add(listener)

    def on_conversation_changed(self, listener: Listener[Conversation]) -> RemoveListener:
        return self.conversation_changed.add(listener)

    def on_typing_changed(self, listener: Listener[frozenset[str]]) -> RemoveListener:
        return self.typing_changed.add(listener)

    # -- membership ----------------------------------------------------------

    async def join(self) -> None:
        """Request membership; Joined is reached when the server confirms.

        Redundant calls while joining or joined do nothing.
        """
        if self._closed:
            raise InvalidStateError(f"Session {self.conversation_id} is closed")
        if self.state in (MembershipState.JOINING, MembershipState.JOINED):
            return
        self._membership.begin_join()
        self._generation += 1
        self._alive = True
        self._delivery = self._new_delivery()
        self._joined_event.clear()
        self._left_event.clear()
        self._attach()
        payload = {"conversationId": self.conversation_id}
        try:
            await self._throttles.join.execute(lambda: self._push.emit(JOIN_CONVERSATION, payload))
        except AppError as exc:
            await self._abort_join(exc)
            raise
        except Exception as exc:
            error = NetworkError(f"Join request failed: {exc}")
            await self._abort_join(error)
            raise error from exc
        logger.info("Join requested for %s", self.conversation_id)
        if self.config.join_timeout > 0 and self.state == MembershipState.JOINING:
            self._join_timer = asyncio.ensure_future(self._expire_join(self._generation))

    async def wait_joined(self, timeout: float | None = None) -> bool:
        try:
            await asyncio.wait_for(self._joined_event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return self.state == MembershipState.JOINED

    async def leave(self) -> None:
        """Leave the conversation; never blocks longer than the leave timeout.

        Redundant calls are no-ops. A join still waiting for confirmation is
        abandoned instead.
        """
        if self.state == MembershipState.JOINING:
            await self._teardown()
            return
        if self.state != MembershipState.JOINED:
            return
        if self._membership.begin_leave():
            payload = {"conversationId": self.conversation_id}
            try:
                await self._throttles.leave.execute(lambda: self._push.emit(LEAVE_CONVERSATION, payload))
            except AppError as exc:
                self._report(exc)
            except Exception as exc:
                self._report(NetworkError(f"Leave request failed: {exc}"))
            else:
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(self._left_event.wait(), self.config.leave_timeout)
                if self.state == MembershipState.LEAVING:
                    logger.info("No leave confirmation for %s, tearing down", self.conversation_id)
        await self._teardown()

    async def close(self) -> None:
        """Leave if needed and release everything; the session cannot be reused."""
        if self._closed:
            return
        await self.leave()
        await self._teardown()
        self._closed = True
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        for listeners in (
            self.messages_changed,
            self.membership_changed,
            self.errors,
            self.conversation_changed,
            self.typing_changed,
        ):
            listeners.clear()
        logger.info("Session %s closed", self.conversation_id)

    # -- outbound ------------------------------------------------------------

    def send(
        self,
        content: str,
        type: MessageType = MessageType.TEXT,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        message = self._delivery.send(content, type, metadata)
        if self._typing:
            self._spawn(self.stop_typing(), "stop typing")
        return message

    def retry(self, message_id: str) -> Message:
        return self._delivery.retry(message_id)

    def discard(self, message_id: str) -> None:
        self._delivery.discard(message_id)

    def mark_read(self, message_ids: list[str] | None = None) -> list[Message]:
        """Mark messages read locally now and persist in the background.

        Without ids, every unread inbound message is marked. Ids of pending or
        outbound messages are skipped.
        """
        self._membership.require_joined("mark read")
        if message_ids is None:
            candidates = self._reconciler.messages
        else:
            candidates = [m for m in map(self._reconciler.get, message_ids) if m is not None]
        message_ids = [
            m.id
            for m in candidates
            if m.is_confirmed
            and m.direction == MessageDirection.INBOUND
            and m.status != MessageStatus.READ
        ]
        if not message_ids:
            return []
        updated = self._reconciler.apply_status(message_ids, MessageStatus.READ, at=self._clock.now())
        if updated:
            self._publish_messages()
        self._spawn(self._persist_read(list(message_ids)), "mark read")
        return updated

    async def start_typing(self) -> None:
        self._membership.require_joined("type")
        if not self._typing:
            payload = {"conversationId": self.conversation_id}
            try:
                await self._throttles.typing.execute(lambda: self._push.emit(TYPING_START, payload))
            except ThrottledError as exc:
                logger.debug("typing-start dropped: %s", exc.detail)
            else:
                self._typing = True
        self._cancel_typing_timer()
        if self._typing and self.config.typing_stop > 0:
            self._typing_timer = asyncio.ensure_future(self._typing_timeout(self._generation))

    async def stop_typing(self) -> None:
        self._cancel_typing_timer()
        if not self._typing:
            return
        self._typing = False
        if self.state != MembershipState.JOINED:
            return
        try:
            await self._push.emit(TYPING_STOP, {"conversationId": self.conversation_id})
        except Exception:
            logger.warning("typing-stop for %s failed", self.conversation_id, exc_info=True)

    # -- history -------------------------------------------------------------

    async def refresh(self) -> tuple[Message, ...]:
        """Re-read the newest page, bypassing the cache."""
        self._membership.require_joined("refresh")
        page = await self._history.first_page(use_cache=False)
        self._apply_page(page.messages, page.has_more)
        return self.messages

    async def load_older(self) -> tuple[Message, ...]:
        self._membership.require_joined("load older messages")
        oldest = next((m.id for m in self._reconciler.messages if m.is_confirmed), None)
        if oldest is None or not self._has_more:
            return ()
        page = await self._history.older_page(oldest)
        self._apply_page(page.messages, page.has_more)
        return page.messages

    async def drain(self) -> None:
        """Wait for background work started so far. Intended for tests and shutdown."""
        await self._delivery.drain()
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        for listeners in (
            self.messages_changed,
            self.membership_changed,
            self.errors,
            self.conversation_changed,
            self.typing_changed,
        ):
            await listeners.drain()

    # -- internals -----------------------------------------------------------

    def _new_delivery(self) -> DeliveryPipeline:
        generation = self._generation
        return DeliveryPipeline(
            self.conversation_id,
            reconciler=self._reconciler,
            membership=self._membership,
            gateway=self._gateway,
            push=self._push,
            backoff=self._registry.backoff,
            send_gate=self._throttles.send,
            clock=self._clock,
            hooks=DeliveryHooks(
                is_alive=lambda: self.is_alive and self._generation == generation,
                messages_changed=self._publish_messages,
                error=self._report,
                confirmed=self._on_send_confirmed,
            ),
            id_factory=self._id_factory,
        )

    def _on_transition(self, old: MembershipState, new: MembershipState) -> None:
        logger.info("Conversation %s: %s -> %s", self.conversation_id, old, new)
        self.membership_changed.notify(new)

    def _report(self, error: AppError) -> None:
        logger.warning("Conversation %s error (%s): %s", self.conversation_id, error.kind, error.detail)
        self.errors.notify(error)

    def _publish_messages(self) -> None:
        self.messages_changed.notify(self._reconciler.messages)

    def _publish_conversation(self, conversation: Conversation) -> None:
        if conversation == self._conversation:
            return
        self._conversation = conversation
        self.conversation_changed.notify(conversation)

    def _spawn(self, coro: Coroutine[Any, Any, None], what: str) -> None:
        task = asyncio.ensure_future(self._guarded(coro, what))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _guarded(self, coro: Awaitable[None], what: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except AppError as exc:
            if self.is_alive:
                self._report(exc)
        except Exception as exc:
            logger.exception("%s failed for %s", what, self.conversation_id)
            if self.is_alive:
                self._report(AppError(f"{what} failed: {exc}"))

    def _attach(self) -> None:
        if self._attached:
            return
        for event, handler in self._handlers.items():
            self._push.on(event, handler)
        self._attached = True

    def _detach(self) -> None:
        if not self._attached:
            return
        for event, handler in self._handlers.items():
            self._push.off(event, handler)
        self._attached = False

    async def _abort_join(self, error: AppError) -> None:
        self._membership.abort_join()
        await self._teardown()
        self._report(error)

    async def _expire_join(self, generation: int) -> None:
        await asyncio.sleep(self.config.join_timeout)
        if self._generation != generation or self.state != MembershipState.JOINING:
            return
        self._join_timer = None
        logger.warning(
            "Join of %s not confirmed within %.1fs", self.conversation_id, self.config.join_timeout,
        )
        self._membership.abort_join()
        await self._teardown()
        self._report(RequestTimeoutError(f"Join of {self.conversation_id} was not confirmed"))

    async def _teardown(self) -> None:
        self._alive = False
        self._membership.teardown()
        self._joined_event.set()
        if self._join_timer is not None and self._join_timer is not asyncio.current_task():
            self._join_timer.cancel()
        self._join_timer = None
        self._cancel_typing_timer()
        self._typing = False
        self._detach()
        if self._typing_users:
            self._typing_users.clear()
            self.typing_changed.notify(frozenset())
        unsubscribe, self._unsubscribe_feed = self._unsubscribe_feed, None
        if unsubscribe is not None:
            try:
                await unsubscribe()
            except Exception:
                logger.warning("Change feed unsubscribe failed for %s", self.conversation_id, exc_info=True)

    def _cancel_typing_timer(self) -> None:
        timer, self._typing_timer = self._typing_timer, None
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

    async def _typing_timeout(self, generation: int) -> None:
        await asyncio.sleep(self.config.typing_stop)
        if self._generation == generation and self.is_alive:
            self._typing_timer = None
            await self.stop_typing()

    async def _after_join(self, generation: int) -> None:
        if self._feed is not None and self.config.change_feed_enabled:
            unsubscribe = await self._feed.subscribe(FeedQuery(self.conversation_id), self._on_feed_change)
            if self._generation != generation or not self.is_alive:
                await unsubscribe()
                return
            self._unsubscribe_feed = unsubscribe

        page = await self._history.first_page()
        if self._generation != generation or not self.is_alive:
            return
        self._apply_page(page.messages, page.has_more)

        conversation = await self._history.conversation()
        if self._generation != generation or not self.is_alive:
            return
        self._publish_conversation(conversation)

    def _apply_page(self, messages: tuple[Message, ...], has_more: bool) -> None:
        self._has_more = has_more
        if self._reconciler.merge_history(messages):
            self._publish_messages()

    async def _persist_read(self, message_ids: list[str]) -> None:
        generation = self._generation
        payload = {"conversationId": self.conversation_id, "messageIds": message_ids}
        try:
            await self._push.emit(MARK_AS_READ, payload)
        except Exception:
            logger.warning("mark-as-read hint for %s failed", self.conversation_id, exc_info=True)

        key = operation_key(OperationKind.READ, self.conversation_id, _fingerprint(*sorted(message_ids)))
        await self._throttles.read.execute_when_ready(
            lambda: self._registry.backoff.run(
                key, lambda: self._gateway.mark_read(self.conversation_id, message_ids),
            ),
        )
        if self._generation != generation or not self.is_alive:
            return
        self._update_unread()

    def _update_unread(self) -> None:
        if self._conversation is None:
            return
        unread = sum(
            1
            for m in self._reconciler.messages
            if m.direction == MessageDirection.INBOUND and m.status != MessageStatus.READ
        )
        self._publish_conversation(replace(self._conversation, unread_count=unread))

    def _on_send_confirmed(self, message: Message) -> None:
        self._history.invalidate()
        if self._conversation is not None:
            self._publish_conversation(
                replace(
                    self._conversation,
                    last_message=message.content,
                    last_message_at=message.timestamp,
                ),
            )

    # -- inbound -------------------------------------------------------------

    def _parse(self, model: type[M], payload: Any, event: str) -> M | None:
        try:
            parsed = model.model_validate(payload)
        except PayloadError as exc:
            logger.warning("Dropping malformed %s payload: %s", event, exc)
            return None
        conversation_id = getattr(parsed, "conversation_id", None)
        if conversation_id and conversation_id != self.conversation_id:
            return None
        return parsed

    def _receive(self, event: MessageReceived) -> None:
        message = event.message
        is_new = message.id not in self._reconciler
        if not self._reconciler.apply(message, event.source):
            return
        self._publish_messages()
        if is_new and self._conversation is not None:
            latest = self._conversation.last_message_at
            conversation = self._conversation
            if latest is None or message.timestamp >= latest:
                conversation = replace(
                    conversation, last_message=message.content, last_message_at=message.timestamp,
                )
            if message.direction == MessageDirection.INBOUND and message.status != MessageStatus.READ:
                conversation = replace(conversation, unread_count=conversation.unread_count + 1)
            self._publish_conversation(conversation)

    def _apply_status(self, event: MessageStatusChanged) -> None:
        if self._reconciler.apply_status(event.message_ids, event.status, at=event.at):
            self._publish_messages()

    def _on_joined(self, payload: dict[str, Any]) -> None:
        parsed = self._parse(MembershipPayload, payload, CONVERSATION_JOINED)
        if parsed is None:
            return
        event = parsed.to_event(MembershipState.JOINED)
        if not self._membership.confirm_join():
            return
        self._online_users = event.online_users
        if self._join_timer is not None:
            self._join_timer.cancel()
            self._join_timer = None
        self._joined_event.set()
        self._spawn(self._after_join(self._generation), "initial sync")

    def _on_left(self, payload: dict[str, Any]) -> None:
        parsed = self._parse(MembershipPayload, payload, CONVERSATION_LEFT)
        if parsed is None:
            return
        if self._membership.confirm_leave():
            self._left_event.set()

    def _on_new_message(self, payload: dict[str, Any]) -> None:
        parsed = self._parse(NewMessagePayload, payload, NEW_MESSAGE)
        if parsed is not None:
            self._receive(parsed.to_event())

    def _on_message_sent(self, payload: dict[str, Any]) -> None:
        parsed = self._parse(MessageSentPayload, payload, MESSAGE_SENT)
        if parsed is not None:
            self._apply_status(parsed.to_event())

    def _on_message_delivered(self, payload: dict[str, Any]) -> None:
        parsed = self._parse(MessageDeliveredPayload, payload, MESSAGE_DELIVERED)
        if parsed is not None:
            self._apply_status(parsed.to_event())

    def _on_message_read(self, payload: dict[str, Any]) -> None:
        parsed = self._parse(MessageReadPayload, payload, MESSAGE_READ)
        if parsed is not None:
            self._apply_status(parsed.to_event())

    def _on_typing_start(self, payload: dict[str, Any]) -> None:
        self._set_typing(payload, True)

    def _on_typing_stop(self, payload: dict[str, Any]) -> None:
        self._set_typing(payload, False)

    def _set_typing(self, payload: dict[str, Any], typing: bool) -> None:
        parsed = self._parse(TypingPayload, payload, TYPING_START if typing else TYPING_STOP)
        if parsed is None:
            return
        event = parsed.to_event(typing)
        before = set(self._typing_users)
        if event.typing:
            self._typing_users.add(event.user_id)
        else:
            self._typing_users.discard(event.user_id)
        if self._typing_users != before:
            self.typing_changed.notify(frozenset(self._typing_users))

    def _on_conversation_event(self, payload: dict[str, Any]) -> None:
        parsed = self._parse(ConversationEventPayload, payload, CONVERSATION_EVENT)
        if parsed is None or self._conversation is None:
            return
        event = parsed.to_event()
        try:
            conversation = patch_conversation(self._conversation, event.updates)
        except PayloadError as exc:
            logger.warning("Ignoring conversation update for %s: %s", self.conversation_id, exc)
            return
        self._publish_conversation(conversation)

    def _on_server_error(self, payload: dict[str, Any]) -> None:
        parsed = self._parse(ServerErrorPayload, payload, SERVER_ERROR)
        if parsed is None:
            return
        event = parsed.to_event()
        self._report(ServerError(event.message, code=event.code))

    async def _on_feed_change(self, payload: dict[str, Any]) -> None:
        parsed = self._parse(FeedChangePayload, payload, "feed change")
        if parsed is None or not self.is_alive:
            return
        if parsed.change == "removed":
            logger.debug("Ignoring feed removal of %s", parsed.message.id)
            return
        self._receive(parsed.to_event(self.conversation_id))
