from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol, TypeVar

T = TypeVar("T")


class _Miss:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS: Any = _Miss()


def cache_key(kind: str, **params: object) -> str:
    """Stable key: ``messages:conversation_id=c1:limit=50``."""
    parts = [f"{name}={params[name]}" for name in sorted(params) if params[name] is not None]
    return ":".join([kind, *parts])


class Cache(Protocol):
    def get(self, key: str) -> Any: ...

    def set(self, key: str, value: Any, ttl: float) -> None: ...

    def delete(self, key: str) -> None: ...

    def clear(self) -> None: ...

    async def get_or_load(self, key: str, loader: Callable[[], Awaitable[T]], ttl: float) -> T: ...
