from __future__ import annotations

import pytest

from chat_sync.application.ports.cache import MISS, cache_key
from chat_sync.infrastructure.cache.ttl_cache import TTLCache
from tests.conftest import FakeClock


def test_get_after_ttl_is_a_miss_without_explicit_eviction():
    clock = FakeClock()
    cache = TTLCache(clock)
    cache.set("messages:conversation_id=c1:limit=50", ("m1",), ttl=60)
    clock.advance(59)
    assert cache.get("messages:conversation_id=c1:limit=50") == ("m1",)
    clock.advance(2)
    assert cache.get("messages:conversation_id=c1:limit=50") is MISS
    assert len(cache) == 0


def test_unknown_key_is_miss():
    cache = TTLCache(FakeClock())
    assert cache.get("nope") is MISS
    assert not cache.get("nope")
    assert cache.misses == 2


def test_ttls_are_per_entry():
    clock = FakeClock()
    cache = TTLCache(clock)
    cache.set("messages", 1, ttl=60)
    cache.set("conversation", 2, ttl=300)
    clock.advance(120)
    assert cache.get("messages") is MISS
    assert cache.get("conversation") == 2


def test_cache_key_is_stable_and_skips_none():
    assert cache_key("messages", limit=50, conversation_id="c1") == "messages:conversation_id=c1:limit=50"
    assert cache_key("messages", conversation_id="c1", before=None) == "messages:conversation_id=c1"


@pytest.mark.asyncio
async def test_get_or_load_reads_through_once():
    clock = FakeClock()
    cache = TTLCache(clock)
    loads = []

    async def loader():
        loads.append(1)
        return {"title": "Support"}

    first = await cache.get_or_load("conversation:c1", loader, ttl=300)
    second = await cache.get_or_load("conversation:c1", loader, ttl=300)
    assert first == second
    assert len(loads) == 1
    clock.advance(301)
    await cache.get_or_load("conversation:c1", loader, ttl=300)
    assert len(loads) == 2


@pytest.mark.asyncio
async def test_failed_load_is_not_cached():
    cache = TTLCache(FakeClock())

    async def loader():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await cache.get_or_load("k", loader, ttl=60)
    assert cache.get("k") is MISS
