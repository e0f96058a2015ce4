from __future__ import annotations

from typing import Any, Protocol


class RestClient(Protocol):
    """JSON REST transport.

    Implementations raise ``TransportError`` subclasses carrying an ``ErrorKind``;
    raw library exceptions never cross this boundary.
    """

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any: ...

    async def post(self, path: str, json: dict[str, Any] | None = None) -> Any: ...

    async def put(self, path: str, json: dict[str, Any] | None = None) -> Any: ...
