"""Idempotent reads for a session: history pages and conversation metadata."""
from __future__ import annotations

import logging

from chat_sync.application.dto.history import HistoryPage
from chat_sync.application.policies.backoff import operation_key
from chat_sync.application.policies.throttle import ThrottleGate
from chat_sync.application.ports.cache import cache_key
from chat_sync.application.ports.gateway import ChatGateway
from chat_sync.application.registry import EngineRegistry
from chat_sync.domain.entities.conversation import Conversation
from chat_sync.domain.value_objects.enums import OperationKind

logger = logging.getLogger(__name__)


class HistoryLoader:
    """Reads go through the sync gate, then backoff, then the shared cache.

    Only the first page and the conversation record are cached; older pages are
    requested on demand and are not worth keeping.
    """

    def __init__(
        self,
        conversation_id: str,
        *,
        gateway: ChatGateway,
        registry: EngineRegistry,
        sync_gate: ThrottleGate,
        page_size: int = 50,
        messages_ttl: float = 60.0,
        conversation_ttl: float = 300.0,
    ) -> None:
        self.conversation_id = conversation_id
        self._gateway = gateway
        self._registry = registry
        self._gate = sync_gate
        self.page_size = page_size
        self._messages_ttl = messages_ttl
        self._conversation_ttl = conversation_ttl

    @property
    def first_page_key(self) -> str:
        return cache_key("messages", conversation_id=self.conversation_id, limit=self.page_size)

    @property
    def conversation_key(self) -> str:
        return cache_key("conversation", conversation_id=self.conversation_id)

    async def first_page(self, *, use_cache: bool = True) -> HistoryPage:
        if not use_cache:
            self._registry.cache.delete(self.first_page_key)
        return await self._registry.cache.get_or_load(
            self.first_page_key, lambda: self._fetch(None), self._messages_ttl,
        )

    async def older_page(self, before: str) -> HistoryPage:
        return await self._fetch(before)

    async def conversation(self) -> Conversation:
        key = operation_key(OperationKind.SYNC, self.conversation_id, "conversation")

        async def _load() -> Conversation:
            return await self._gate.execute_when_ready(
                lambda: self._registry.backoff.run(
                    key, lambda: self._gateway.fetch_conversation(self.conversation_id),
                ),
            )

        return await self._registry.cache.get_or_load(
            self.conversation_key, _load, self._conversation_ttl,
        )

    def invalidate(self) -> None:
        self._registry.cache.delete(self.first_page_key)

    async def _fetch(self, before: str | None) -> HistoryPage:
        key = operation_key(OperationKind.SYNC, self.conversation_id, "history", before)
        page = await self._gate.execute_when_ready(
            lambda: self._registry.backoff.run(
                key,
                lambda: self._gateway.fetch_messages(
                    self.conversation_id, limit=self.page_size, before=before,
                ),
            ),
        )
        logger.debug(
            "Fetched %d messages for %s (before=%s, has_more=%s)",
            len(page.messages), self.conversation_id, before, page.has_more,
        )
        return page
