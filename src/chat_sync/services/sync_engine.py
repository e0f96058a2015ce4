from __future__ import annotations

import asyncio
import logging
from typing import Callable

from chat_sync.application.exceptions import NotFoundError
from chat_sync.application.ports.change_feed import ChangeFeed
from chat_sync.application.ports.clock import Clock, SystemClock
from chat_sync.application.ports.gateway import ChatGateway
from chat_sync.application.ports.push import PushChannel
from chat_sync.application.registry import EngineRegistry
from chat_sync.config import EngineConfig
from chat_sync.services.sync_session import ConversationSyncSession

logger = logging.getLogger(__name__)

SessionCreated = Callable[[ConversationSyncSession], None]


class SyncEngine:
    """Owns one sync session per open conversation for a signed-in user."""

    def __init__(
        self,
        *,
        push: PushChannel,
        gateway: ChatGateway,
        registry: EngineRegistry,
        change_feed: ChangeFeed | None = None,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._push = push
        self._gateway = gateway
        self._registry = registry
        self._feed = change_feed
        self._config = config or EngineConfig()
        self._clock = clock or SystemClock()
        self._sessions: dict[str, ConversationSyncSession] = {}
        self._on_created: list[SessionCreated] = []

    @property
    def registry(self) -> EngineRegistry:
        return self._registry

    @property
    def sessions(self) -> dict[str, ConversationSyncSession]:
        return dict(self._sessions)

    def on_session_created(self, callback: SessionCreated) -> None:
        self._on_created.append(callback)

    def session(self, conversation_id: str) -> ConversationSyncSession:
        """Return the session for a conversation, creating it (not yet joined) if needed."""
        session = self._sessions.get(conversation_id)
        if session is None:
            session = ConversationSyncSession(
                conversation_id,
                push=self._push,
                gateway=self._gateway,
                registry=self._registry,
                change_feed=self._feed,
                config=self._config,
                clock=self._clock,
            )
            self._sessions[conversation_id] = session
            for callback in self._on_created:
                callback(session)
        return session

    def get(self, conversation_id: str) -> ConversationSyncSession:
        session = self._sessions.get(conversation_id)
        if session is None:
            raise NotFoundError(f"No open session for conversation {conversation_id}")
        return session

    async def join(self, conversation_id: str) -> ConversationSyncSession:
        session = self.session(conversation_id)
        await session.join()
        return session

    async def leave(self, conversation_id: str) -> None:
        session = self._sessions.pop(conversation_id, None)
        if session is None:
            return
        await session.close()

    async def shutdown(self) -> None:
        sessions, self._sessions = list(self._sessions.values()), {}
        results = await asyncio.gather(*(s.close() for s in sessions), return_exceptions=True)
        for session, result in zip(sessions, results):
            if isinstance(result, Exception):
                logger.error("Closing session %s failed: %s", session.conversation_id, result)
        logger.info("Sync engine stopped (%d sessions closed)", len(sessions))

    async def logout(self) -> None:
        await self.shutdown()
        self._registry.clear()
