"""Observer registrations whose failures never reach the caller."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

E = TypeVar("E")

Listener = Callable[[E], Awaitable[None] | None]
RemoveListener = Callable[[], None]


class ListenerSet(Generic[E]):
    """Listeners may be added and removed at any time, including from inside a callback.

    Each listener is invoked in isolation: an exception is logged and the rest of
    the listeners still run. Coroutine listeners are scheduled as tasks and
    tracked so :meth:`drain` can await them.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: list[Listener[E]] = []
        self._tasks: set[asyncio.Task[Any]] = set()

    def add(self, listener: Listener[E]) -> RemoveListener:
        self._listeners.append(listener)

        def _remove() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _remove

    def __len__(self) -> int:
        return len(self._listeners)

    def clear(self) -> None:
        self._listeners.clear()

    def notify(self, event: E) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event)
            except Exception:
                logger.exception("%s listener %r failed", self.name, listener)
                continue
            if asyncio.iscoroutine(result):
                task = asyncio.ensure_future(self._guard(listener, result))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

    async def _guard(self, listener: Listener[E], awaitable: Awaitable[None]) -> None:
        try:
            await awaitable
        except Exception:
            logger.exception("%s listener %r failed", self.name, listener)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
