from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

FeedHandler = Callable[[dict[str, Any]], Awaitable[None]]
Unsubscribe = Callable[[], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class FeedQuery:
    conversation_id: str
    collection: str = "messages"


class ChangeFeed(Protocol):
    """Document-store change listener observing a conversation's messages."""

    async def subscribe(self, query: FeedQuery, handler: FeedHandler) -> Unsubscribe: ...
