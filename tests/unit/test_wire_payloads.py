from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError as PayloadError

from chat_sync.application.dto.push import (
    FeedChangePayload,
    MessageReadPayload,
    MessageSentPayload,
    ServerErrorPayload,
    TypingPayload,
)
from chat_sync.application.dto.wire import ConversationPayload, MessagePayload, patch_conversation
from chat_sync.domain.entities.conversation import Conversation
from chat_sync.domain.value_objects.enums import (
    EventSource,
    MessageDirection,
    MessageStatus,
    MessageType,
)


def test_message_payload_accepts_backend_aliases():
    payload = MessagePayload.model_validate(
        {
            "id": "m1",
            "text": "hello",
            "createdAt": "2024-05-01T12:00:00",
            "sender": "agent",
            "status": "queued",
            "type": "voice",
        },
    )
    message = payload.to_domain("c1")
    assert message.id == "m1"
    assert message.content == "hello"
    assert message.conversation_id == "c1"
    assert message.direction == MessageDirection.OUTBOUND
    assert message.status == MessageStatus.SENT
    assert message.type == MessageType.AUDIO
    assert message.timestamp == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert message.is_confirmed


def test_unknown_type_and_status_fall_back():
    message = MessagePayload.model_validate(
        {"id": "m1", "timestamp": "2024-05-01T12:00:00Z", "type": "hologram", "status": "weird"},
    ).to_domain("c1")
    assert message.type == MessageType.TEXT
    assert message.status == MessageStatus.SENT
    assert message.direction == MessageDirection.INBOUND


def test_message_without_timestamp_is_rejected():
    with pytest.raises(PayloadError):
        MessagePayload.model_validate({"id": "m1", "content": "x"})


def test_message_read_accepts_single_id():
    event = MessageReadPayload.model_validate({"conversationId": "c1", "messageId": "m3"}).to_event()
    assert event.message_ids == ("m3",)
    assert event.status == MessageStatus.READ


def test_message_sent_normalizes_status():
    event = MessageSentPayload.model_validate(
        {"conversationId": "c1", "message": {"id": "m1", "status": "delivered"}},
    ).to_event()
    assert event.status == MessageStatus.DELIVERED


def test_typing_falls_back_to_email():
    event = TypingPayload.model_validate({"conversationId": "c1", "userEmail": "a@b.c"}).to_event(True)
    assert event.user_id == "a@b.c"
    assert event.typing is True


def test_server_error_defaults():
    event = ServerErrorPayload.model_validate({"error": "rate_limited"}).to_event()
    assert event.code == "rate_limited"
    assert event.message == "rate_limited"


def test_feed_change_is_tagged_with_feed_source():
    event = FeedChangePayload.model_validate(
        {"change": "modified", "message": {"id": "m1", "timestamp": "2024-05-01T12:00:00Z"}},
    ).to_event("c9")
    assert event.source == EventSource.FEED
    assert event.message.conversation_id == "c9"


def test_conversation_participants_and_last_message_flatten():
    conversation = ConversationPayload.model_validate(
        {
            "id": "c1",
            "title": "Support",
            "participants": [{"id": "u1"}, {"email": "x@y.z"}, "u3"],
            "lastMessage": {"content": "bye"},
            "unreadCount": 3,
        },
    ).to_domain()
    assert conversation.participants == ("u1", "x@y.z", "u3")
    assert conversation.last_message == "bye"
    assert conversation.unread_count == 3


def test_patch_conversation_merges_partial_updates():
    base = Conversation(id="c1", title="Support", participants=("u1",), unread_count=2)
    patched = patch_conversation(base, {"title": "VIP", "unread_count": 0, "id": "other"})
    assert patched == Conversation(id="c1", title="VIP", participants=("u1",), unread_count=0)


def test_patch_conversation_rejects_bad_values():
    base = Conversation(id="c1", title="Support")
    with pytest.raises(PayloadError):
        patch_conversation(base, {"unreadCount": "many"})
