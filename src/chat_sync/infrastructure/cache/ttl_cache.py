"""In-process read-through cache with per-entry TTL and lazy eviction."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from chat_sync.application.ports.cache import MISS
from chat_sync.application.ports.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class CacheEntry:
    key: str
    value: Any
    expires_at: float


class TTLCache:
    """Only for idempotent reads. Values must be immutable so a hit equals the uncached read."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._entries: dict[str, CacheEntry] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return MISS
        if self._clock.monotonic() > entry.expires_at:
            del self._entries[key]
            self.misses += 1
            return MISS
        self.hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl: float) -> None:
        self._entries[key] = CacheEntry(key, value, self._clock.monotonic() + ttl)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    async def get_or_load(self, key: str, loader: Callable[[], Awaitable[T]], ttl: float) -> T:
        value = self.get(key)
        if value is not MISS:
            logger.debug("Cache hit %s", key)
            return value
        value = await loader()
        self.set(key, value, ttl)
        return value
