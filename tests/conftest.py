"""Shared test fixtures."""
from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from chat_sync.application.dto.history import HistoryPage
from chat_sync.application.policies.backoff import BackoffController
from chat_sync.application.policies.throttle import ThrottleLimits
from chat_sync.application.ports.change_feed import FeedHandler, FeedQuery
from chat_sync.application.ports.push import PushHandler
from chat_sync.application.registry import EngineRegistry
from chat_sync.config import EngineConfig
from chat_sync.domain.entities.conversation import Conversation
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import (
    MessageDirection,
    MessageStatus,
    MessageType,
    OperationKind,
)
from chat_sync.domain.value_objects.ids import Confirmed, ServerMessageId, TempMessageId
from chat_sync.infrastructure.cache.ttl_cache import TTLCache
from chat_sync.services.sync_session import ConversationSyncSession

EPOCH = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = EPOCH) -> None:
        self._start = start
        self._elapsed = 0.0

    def now(self) -> datetime:
        return self._start + timedelta(seconds=self._elapsed)

    def monotonic(self) -> float:
        return self._elapsed

    def advance(self, seconds: float) -> None:
        self._elapsed += seconds


class FakePushChannel:
    def __init__(self) -> None:
        self.emitted: list[tuple[str, dict[str, Any]]] = []
        self.handlers: dict[str, list[PushHandler]] = {}
        self.fail_with: Exception | None = None

    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.emitted.append((event, payload))

    def on(self, event: str, handler: PushHandler) -> None:
        self.handlers.setdefault(event, []).append(handler)

    def off(self, event: str, handler: PushHandler) -> None:
        handlers = self.handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def events(self, name: str) -> list[dict[str, Any]]:
        return [payload for event, payload in self.emitted if event == name]

    def handler_count(self) -> int:
        return sum(len(h) for h in self.handlers.values())

    async def deliver(self, event: str, payload: dict[str, Any]) -> None:
        for handler in list(self.handlers.get(event, [])):
            result = handler(payload)
            if asyncio.iscoroutine(result):
                await result


@dataclass
class SendCall:
    conversation_id: str
    client_msg_id: str
    content: str
    type: MessageType
    metadata: dict[str, Any]


@dataclass
class FakeGateway:
    pages: dict[str | None, HistoryPage] = field(default_factory=dict)
    conversation: Conversation | None = None
    send_outcomes: list[Exception | str] = field(default_factory=list)
    send_failure: Exception | None = None
    send_release: asyncio.Event | None = None
    sent: list[SendCall] = field(default_factory=list)
    fetches: list[str | None] = field(default_factory=list)
    conversation_fetches: int = 0
    read_calls: list[list[str]] = field(default_factory=list)
    read_failure: Exception | None = None
    _ids: Any = field(default_factory=lambda: itertools.count(1))

    async def fetch_messages(
        self,
        conversation_id: str,
        *,
        limit: int = 50,
        before: str | None = None,
    ) -> HistoryPage:
        self.fetches.append(before)
        return self.pages.get(before, HistoryPage(messages=()))

    async def fetch_conversation(self, conversation_id: str) -> Conversation:
        self.conversation_fetches += 1
        return self.conversation or Conversation(id=conversation_id, title="Support")

    async def send_message(
        self,
        conversation_id: str,
        *,
        client_msg_id: str,
        content: str,
        type: MessageType,
        metadata: dict[str, Any],
    ) -> Message:
        self.sent.append(SendCall(conversation_id, client_msg_id, content, type, metadata))
        if self.send_release is not None:
            await self.send_release.wait()
        if self.send_outcomes:
            outcome = self.send_outcomes.pop(0)
        elif self.send_failure is not None:
            outcome = self.send_failure
        else:
            outcome = f"m{next(self._ids)}"
        if isinstance(outcome, Exception):
            raise outcome
        return make_message(
            outcome,
            conversation_id=conversation_id,
            content=content,
            type=type,
            direction=MessageDirection.OUTBOUND,
            status=MessageStatus.SENT,
        )

    async def mark_read(self, conversation_id: str, message_ids: list[str]) -> None:
        self.read_calls.append(list(message_ids))
        if self.read_failure is not None:
            raise self.read_failure


class FakeChangeFeed:
    def __init__(self) -> None:
        self.subscriptions: list[tuple[FeedQuery, FeedHandler]] = []
        self.unsubscribed = 0

    async def subscribe(self, query: FeedQuery, handler: FeedHandler):
        entry = (query, handler)
        self.subscriptions.append(entry)

        async def _unsubscribe() -> None:
            if entry in self.subscriptions:
                self.subscriptions.remove(entry)
                self.unsubscribed += 1

        return _unsubscribe

    async def publish(self, payload: dict[str, Any]) -> None:
        for _query, handler in list(self.subscriptions):
            await handler(payload)


class FakeRestClient:
    def __init__(self) -> None:
        self.responses: dict[tuple[str, str], Any] = {}
        self.calls: list[tuple[str, str, dict[str, Any] | None]] = []

    async def _respond(self, method: str, path: str, body: dict[str, Any] | None) -> Any:
        self.calls.append((method, path, body))
        response = self.responses.get((method, path))
        if isinstance(response, Exception):
            raise response
        return response

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return await self._respond("GET", path, params)

    async def post(self, path: str, json: dict[str, Any] | None = None) -> Any:
        return await self._respond("POST", path, json)

    async def put(self, path: str, json: dict[str, Any] | None = None) -> Any:
        return await self._respond("PUT", path, json)


def make_message(
    message_id: str = "m1",
    *,
    conversation_id: str = "c1",
    content: str = "hello",
    type: MessageType = MessageType.TEXT,
    direction: MessageDirection = MessageDirection.INBOUND,
    status: MessageStatus = MessageStatus.SENT,
    seconds: float = 0.0,
) -> Message:
    return Message(
        ref=Confirmed(ServerMessageId(message_id)),
        conversation_id=conversation_id,
        content=content,
        type=type,
        direction=direction,
        status=status,
        timestamp=EPOCH + timedelta(seconds=seconds),
    )


def message_payload(
    message_id: str = "m1",
    *,
    content: str = "hello",
    status: str = "sent",
    seconds: float = 0.0,
    sender: str = "client",
) -> dict[str, Any]:
    return {
        "id": message_id,
        "content": content,
        "type": "text",
        "status": status,
        "sender": sender,
        "timestamp": (EPOCH + timedelta(seconds=seconds)).isoformat(),
    }


def open_limits() -> dict[OperationKind, ThrottleLimits]:
    return {kind: ThrottleLimits(min_interval=0.0, max_calls=1000, window=60.0) for kind in OperationKind}


def temp_ids(prefix: str = "t"):
    counter = itertools.count(1)
    return lambda: TempMessageId(f"{prefix}{next(counter)}")


async def join(session: ConversationSyncSession, push: FakePushChannel) -> None:
    await session.join()
    await push.deliver("conversation-joined", {"conversationId": session.conversation_id})
    await session.drain()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def push() -> FakePushChannel:
    return FakePushChannel()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def feed() -> FakeChangeFeed:
    return FakeChangeFeed()


@pytest.fixture
def registry(clock: FakeClock) -> EngineRegistry:
    return EngineRegistry(
        cache=TTLCache(clock),
        backoff=BackoffController(base_delay=0.0, max_delay=0.0, max_retries=3, jitter_ratio=0.0),
    )


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(
        throttle_limits=open_limits(),
        join_timeout=0,
        leave_timeout=0.01,
        typing_stop=0.01,
    )


@pytest.fixture
def session(push, gateway, registry, feed, engine_config, clock) -> ConversationSyncSession:
    return ConversationSyncSession(
        "c1",
        push=push,
        gateway=gateway,
        registry=registry,
        change_feed=feed,
        config=engine_config,
        clock=clock,
        id_factory=temp_ids(),
    )
