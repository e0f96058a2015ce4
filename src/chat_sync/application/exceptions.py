from __future__ import annotations

from chat_sync.domain.value_objects.enums import ErrorKind


class AppError(Exception):
    """Base application error."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


class TransportError(AppError):
    """Raised by transport adapters after classifying the underlying failure."""


class NetworkError(TransportError):
    kind = ErrorKind.NETWORK


class RateLimitedError(TransportError):
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, detail: str = "", *, retry_after: float | None = None) -> None:
        super().__init__(detail)
        self.retry_after = retry_after


class RequestTimeoutError(TransportError):
    kind = ErrorKind.TIMEOUT


class UnauthorizedError(TransportError):
    kind = ErrorKind.UNAUTHORIZED


class ForbiddenError(TransportError):
    kind = ErrorKind.FORBIDDEN


class ValidationError(TransportError):
    kind = ErrorKind.VALIDATION


class NotFoundError(TransportError):
    kind = ErrorKind.NOT_FOUND


class ThrottledError(AppError):
    kind = ErrorKind.THROTTLED

    def __init__(self, detail: str = "", *, retry_after: float = 0.0) -> None:
        super().__init__(detail)
        self.retry_after = retry_after


class InvalidStateError(AppError):
    kind = ErrorKind.INVALID_STATE


class ServerError(AppError):
    """Error event pushed by the server for a conversation."""

    def __init__(self, detail: str = "", *, code: str = "server_error") -> None:
        super().__init__(detail)
        self.code = code


class RetryExhaustedError(AppError):
    """A retryable operation kept failing until its retry budget ran out."""

    def __init__(self, detail: str = "", *, last_error: BaseException | None = None) -> None:
        super().__init__(detail)
        self.last_error = last_error

    @property
    def kind(self) -> ErrorKind:  # type: ignore[override]
        return error_kind(self.last_error) if self.last_error else ErrorKind.UNKNOWN

    @property
    def retryable(self) -> bool:
        return False


def error_kind(error: BaseException) -> ErrorKind:
    """Kind tag of a classified error; anything untagged is UNKNOWN (terminal)."""
    kind = getattr(error, "kind", None)
    return kind if isinstance(kind, ErrorKind) else ErrorKind.UNKNOWN
