from __future__ import annotations

from enum import StrEnum


class MessageType(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    DOCUMENT = "document"
    LOCATION = "location"
    AUDIO = "audio"
    VIDEO = "video"
    STICKER = "sticker"


class MessageDirection(StrEnum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class MessageStatus(StrEnum):
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        """Position along sending -> sent -> delivered -> read; failed is off-track."""
        return _STATUS_RANK[self]

    def can_advance_to(self, new: MessageStatus) -> bool:
        if new == self:
            return False
        if new == MessageStatus.FAILED:
            return self == MessageStatus.SENDING
        if self == MessageStatus.FAILED:
            return False
        return new.rank > self.rank


_STATUS_RANK: dict[MessageStatus, int] = {
    MessageStatus.SENDING: 0,
    MessageStatus.SENT: 1,
    MessageStatus.DELIVERED: 2,
    MessageStatus.READ: 3,
    MessageStatus.FAILED: -1,
}


class MembershipState(StrEnum):
    IDLE = "idle"
    JOINING = "joining"
    JOINED = "joined"
    LEAVING = "leaving"
    LEFT = "left"

    @property
    def is_quiescent(self) -> bool:
        return self in (MembershipState.IDLE, MembershipState.LEFT)


class ErrorKind(StrEnum):
    NETWORK = "network"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    THROTTLED = "throttled"
    INVALID_STATE = "invalid_state"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.NETWORK, ErrorKind.RATE_LIMITED, ErrorKind.TIMEOUT)


class OperationKind(StrEnum):
    """Operation classes; each owns its own throttle gate."""

    JOIN = "join"
    LEAVE = "leave"
    SEND = "send"
    SYNC = "sync"
    READ = "read"
    TYPING = "typing"


class EventSource(StrEnum):
    HISTORY = "history"
    PUSH = "push"
    FEED = "feed"
    REST = "rest"
