"""Bridge WebSocket envelopes.

Clients drive one conversation session per socket; the bridge pushes every
observer notification of that session back as an outbound envelope.
"""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

InboundType = Literal[
    "ping",
    "join",
    "leave",
    "message.send",
    "message.retry",
    "message.discard",
    "mark_read",
    "typing.start",
    "typing.stop",
]

OutboundType = Literal[
    "session.snapshot",
    "messages.changed",
    "membership.changed",
    "conversation.changed",
    "typing.changed",
    "message.accepted",
    "error",
    "pong",
]


class WsInbound(BaseModel):
    """Client command for the session bound to the socket."""

    type: InboundType
    data: dict[str, Any] = Field(default_factory=dict)


class WsOutbound(BaseModel):
    """Session notification or command reply."""

    type: OutboundType
    data: dict[str, Any] = Field(default_factory=dict)
