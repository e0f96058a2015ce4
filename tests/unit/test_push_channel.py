from __future__ import annotations

from typing import Any

import pytest
from socketio.exceptions import BadNamespaceError

from chat_sync.application.exceptions import NetworkError
from chat_sync.infrastructure.push.socketio_channel import SocketIOPushChannel


class FakeSioClient:
    def __init__(self) -> None:
        self.connected = False
        self.callbacks: dict[str, Any] = {}
        self.emitted: list[tuple[str, Any]] = []
        self.emit_error: Exception | None = None

    def on(self, event, handler=None):
        self.callbacks[event] = handler

    async def connect(self, url, **kwargs):
        self.connected = True

    async def disconnect(self):
        self.connected = False

    async def emit(self, event, data=None):
        if self.emit_error is not None:
            raise self.emit_error
        self.emitted.append((event, data))


@pytest.fixture
def sio() -> FakeSioClient:
    return FakeSioClient()


@pytest.fixture
def channel(sio) -> SocketIOPushChannel:
    return SocketIOPushChannel("http://chat.test", client=sio)


@pytest.mark.asyncio
async def test_emit_requires_connection(channel, sio):
    with pytest.raises(NetworkError):
        await channel.emit("join-conversation", {"conversationId": "c1"})
    await channel.connect()
    await channel.emit("join-conversation", {"conversationId": "c1"})
    assert sio.emitted == [("join-conversation", {"conversationId": "c1"})]


@pytest.mark.asyncio
async def test_emit_failure_is_a_network_error(channel, sio):
    await channel.connect()
    sio.emit_error = BadNamespaceError("/ is not a connected namespace")
    with pytest.raises(NetworkError):
        await channel.emit("typing-start", {})


@pytest.mark.asyncio
async def test_one_dispatcher_fans_out_to_all_handlers(channel, sio):
    seen: list[tuple[str, dict]] = []

    def broken(payload):
        raise RuntimeError("boom")

    async def second(payload):
        seen.append(("second", payload))

    channel.on("new-message", broken)
    channel.on("new-message", second)
    channel.on("new-message", lambda p: seen.append(("third", p)))

    await sio.callbacks["new-message"]({"conversationId": "c1"})
    assert seen == [("second", {"conversationId": "c1"}), ("third", {"conversationId": "c1"})]

    channel.off("new-message", second)
    await sio.callbacks["new-message"]("not an object")
    await sio.callbacks["new-message"]({"conversationId": "c2"})
    assert seen[-1] == ("third", {"conversationId": "c2"})
    assert len(seen) == 3
