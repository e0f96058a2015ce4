"""REST transport over httpx with error classification at the boundary."""
from __future__ import annotations

import logging
from typing import Any

import httpx

from chat_sync.application.dto.wire import ApiEnvelope
from chat_sync.application.exceptions import (
    ForbiddenError,
    NetworkError,
    NotFoundError,
    RateLimitedError,
    RequestTimeoutError,
    TransportError,
    UnauthorizedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_STATUS_ERRORS: dict[int, type[TransportError]] = {
    400: ValidationError,
    401: UnauthorizedError,
    403: ForbiddenError,
    404: NotFoundError,
    408: RequestTimeoutError,
    409: ValidationError,
    422: ValidationError,
}


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def classify_response(response: httpx.Response) -> TransportError:
    """Map a non-2xx response to its transport error kind."""
    detail = f"{response.request.method} {response.request.url.path} -> {response.status_code}"
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and (body.get("error") or body.get("message")):
        detail = f"{detail}: {body.get('error') or body.get('message')}"

    if response.status_code == 429:
        return RateLimitedError(detail, retry_after=_retry_after(response))
    error_cls = _STATUS_ERRORS.get(response.status_code)
    if error_cls is not None:
        return error_cls(detail)
    if response.status_code >= 500:
        return NetworkError(detail)
    return ValidationError(detail)


class HttpxRestClient:
    """JSON client for the chat backend.

    Unwraps the ``{success, data, error, message}`` envelope and raises
    ``TransportError`` subclasses; httpx exceptions never escape.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str = "",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            headers = {"Accept": "application/json"}
            if self._token:
                headers["Authorization"] = f"Bearer {self._token}"
            self._http_client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=headers,
                timeout=httpx.Timeout(self._timeout),
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
        self._http_client = None

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        clean = {k: v for k, v in (params or {}).items() if v is not None}
        return await self._request("GET", path, params=clean)

    async def post(self, path: str, json: dict[str, Any] | None = None) -> Any:
        return await self._request("POST", path, json=json or {})

    async def put(self, path: str, json: dict[str, Any] | None = None) -> Any:
        return await self._request("PUT", path, json=json or {})

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        client = self._get_http_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError(f"{method} {path} timed out") from exc
        except httpx.RequestError as exc:
            raise NetworkError(f"{method} {path} failed: {exc}") from exc

        if response.is_error:
            error = classify_response(response)
            logger.debug("%s %s failed: %s", method, path, error.detail)
            raise error

        if not response.content:
            return None
        try:
            body = response.json()
        except ValueError as exc:
            raise NetworkError(f"{method} {path} returned invalid JSON") from exc
        if isinstance(body, dict) and "success" in body:
            envelope = ApiEnvelope.model_validate(body)
            if not envelope.success:
                raise ValidationError(envelope.error or envelope.message or f"{method} {path} rejected")
            return envelope.data
        return body
