from __future__ import annotations

import pytest

from chat_sync.application.exceptions import NetworkError
from chat_sync.domain.value_objects.enums import MessageDirection, MessageStatus, MessageType
from chat_sync.infrastructure.rest.gateway import RestChatGateway
from tests.conftest import FakeRestClient, message_payload


@pytest.fixture
def rest() -> FakeRestClient:
    return FakeRestClient()


@pytest.fixture
def gateway(rest) -> RestChatGateway:
    return RestChatGateway(rest)


@pytest.mark.asyncio
async def test_fetch_messages_sorts_page(rest, gateway):
    rest.responses[("GET", "/api/conversations/c1/messages")] = {
        "messages": [message_payload("m2", seconds=5), message_payload("m1", seconds=1)],
        "hasMore": True,
    }
    page = await gateway.fetch_messages("c1", limit=20, before="m9")
    assert [m.id for m in page.messages] == ["m1", "m2"]
    assert page.has_more is True
    assert rest.calls == [("GET", "/api/conversations/c1/messages", {"limit": 20, "before": "m9"})]


@pytest.mark.asyncio
async def test_bare_list_infers_has_more_from_limit(rest, gateway):
    rest.responses[("GET", "/api/conversations/c1/messages")] = [message_payload("m1"), message_payload("m2")]
    page = await gateway.fetch_messages("c1", limit=2)
    assert page.has_more is True


@pytest.mark.asyncio
async def test_malformed_page_is_a_network_error(rest, gateway):
    rest.responses[("GET", "/api/conversations/c1/messages")] = {"messages": [{"content": "no id"}]}
    with pytest.raises(NetworkError):
        await gateway.fetch_messages("c1")


@pytest.mark.asyncio
async def test_fetch_conversation_unwraps_key(rest, gateway):
    rest.responses[("GET", "/api/conversations/c1")] = {"conversation": {"id": "c1", "title": "Support"}}
    conversation = await gateway.fetch_conversation("c1")
    assert conversation.title == "Support"


@pytest.mark.asyncio
async def test_send_message_posts_client_id_and_forces_outbound(rest, gateway):
    rest.responses[("POST", "/api/conversations/c1/messages")] = {
        "message": message_payload("m7", content="hi", status="queued"),
    }
    message = await gateway.send_message(
        "c1", client_msg_id="t1", content="hi", type=MessageType.TEXT, metadata={"k": 1},
    )
    assert message.id == "m7"
    assert message.direction == MessageDirection.OUTBOUND
    assert message.status == MessageStatus.SENT
    assert rest.calls[0][2] == {"content": "hi", "type": "text", "metadata": {"k": 1}, "clientMessageId": "t1"}


@pytest.mark.asyncio
async def test_mark_read_puts_each_message(rest, gateway):
    await gateway.mark_read("c1", ["m1", "m2"])
    assert [(method, path) for method, path, _body in rest.calls] == [
        ("PUT", "/api/conversations/c1/messages/m1/read"),
        ("PUT", "/api/conversations/c1/messages/m2/read"),
    ]
    assert "readAt" in rest.calls[0][2]
