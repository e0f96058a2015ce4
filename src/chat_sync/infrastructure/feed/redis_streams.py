"""Change feed backed by one Redis Stream per conversation."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import redis.asyncio as aioredis

from chat_sync.application.ports.change_feed import FeedHandler, FeedQuery, Unsubscribe

logger = logging.getLogger(__name__)


class RedisStreamChangeFeed:
    """XREAD-based tail of ``conversations:{id}:messages`` style streams.

    Each entry carries a JSON ``payload`` field shaped like
    ``{"change": "added", "message": {...}}``. Subscriptions start from the
    newest entry, so only changes after subscribing are delivered.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        *,
        stream_template: str = "conversations:{conversation_id}:messages",
        block_ms: int = 5000,
        batch_size: int = 50,
        error_delay: float = 5.0,
    ) -> None:
        self._redis = redis
        self._template = stream_template
        self._block_ms = block_ms
        self._batch_size = batch_size
        self._error_delay = error_delay
        self._tasks: set[asyncio.Task[None]] = set()

    def stream_for(self, query: FeedQuery) -> str:
        return self._template.format(conversation_id=query.conversation_id, collection=query.collection)

    async def subscribe(self, query: FeedQuery, handler: FeedHandler) -> Unsubscribe:
        stream = self.stream_for(query)
        task = asyncio.create_task(self._tail(stream, handler), name=f"change-feed:{stream}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("Change feed subscribed: stream=%s", stream)

        async def _unsubscribe() -> None:
            if task.done():
                return
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.info("Change feed unsubscribed: stream=%s", stream)

        return _unsubscribe

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _tail(self, stream: str, handler: FeedHandler) -> None:
        last_id = "$"
        while True:
            try:
                entries = await self._redis.xread(
                    {stream: last_id}, count=self._batch_size, block=self._block_ms,
                )
                if not entries:
                    continue
                for _stream_name, messages in entries:
                    for msg_id, fields in messages:
                        last_id = msg_id
                        try:
                            await handler(_decode(fields))
                        except Exception:
                            logger.exception("Error processing change feed entry %s", msg_id)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Change feed error on %s, retrying in %.0fs", stream, self._error_delay)
                await asyncio.sleep(self._error_delay)


def _decode(fields: dict[Any, Any]) -> dict[str, Any]:
    decoded = {
        (k.decode() if isinstance(k, bytes) else k): (v.decode() if isinstance(v, bytes) else v)
        for k, v in fields.items()
    }
    raw = decoded.get("payload")
    if raw is None:
        return decoded
    return json.loads(raw)
