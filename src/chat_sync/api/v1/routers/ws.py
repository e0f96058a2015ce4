from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from chat_sync.api.v1.schemas.conversation import ConversationResponse, SessionResponse
from chat_sync.api.v1.schemas.message import MessageResponse
from chat_sync.application.exceptions import AppError, ValidationError
from chat_sync.config import settings
from chat_sync.domain.entities.conversation import Conversation
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import MembershipState, MessageType
from chat_sync.infrastructure.ws.manager import ConnectionManager
from chat_sync.infrastructure.ws.protocol import WsInbound, WsOutbound
from chat_sync.services.sync_engine import SyncEngine
from chat_sync.services.sync_session import ConversationSyncSession

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])


def _messages_data(messages: tuple[Message, ...]) -> dict[str, Any]:
    return {"messages": [MessageResponse.from_domain(m).model_dump(mode="json") for m in messages]}


def bind_session(manager: ConnectionManager, session: ConversationSyncSession) -> None:
    """Forward a session's observer events to the WebSocket clients watching it."""
    cid = session.conversation_id

    async def _messages(messages: tuple[Message, ...]) -> None:
        await manager.broadcast_to_conversation(cid, "messages.changed", _messages_data(messages))

    async def _membership(state: MembershipState) -> None:
        await manager.broadcast_to_conversation(cid, "membership.changed", {"state": state.value})

    async def _conversation(conversation: Conversation) -> None:
        data = ConversationResponse.from_domain(conversation).model_dump(mode="json")
        await manager.broadcast_to_conversation(cid, "conversation.changed", data)

    async def _typing(users: frozenset[str]) -> None:
        await manager.broadcast_to_conversation(cid, "typing.changed", {"users": sorted(users)})

    async def _error(error: AppError) -> None:
        await manager.broadcast_to_conversation(
            cid, "error", {"code": error.kind.value, "detail": error.detail},
        )

    session.on_messages_changed(_messages)
    session.on_membership_changed(_membership)
    session.on_conversation_changed(_conversation)
    session.on_typing_changed(_typing)
    session.on_error(_error)


@router.websocket("/ws/sync/{conversation_id}")
async def ws_sync(websocket: WebSocket, conversation_id: str) -> None:
    engine: SyncEngine = websocket.app.state.engine
    manager: ConnectionManager = websocket.app.state.ws_manager
    session = engine.session(conversation_id)

    await manager.connect(websocket, conversation_id)
    heartbeat_task = asyncio.create_task(
        _heartbeat(websocket), name=f"ws-heartbeat-{conversation_id}",
    )
    try:
        snapshot = SessionResponse.from_session(session).model_dump(mode="json")
        await manager.send(websocket, "session.snapshot", {**snapshot, **_messages_data(session.messages)})
        await _read_loop(websocket, manager, engine, conversation_id)
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("WS error for %s", conversation_id)
    finally:
        heartbeat_task.cancel()
        manager.disconnect(websocket, conversation_id)


async def _heartbeat(ws: WebSocket) -> None:
    interval = settings.WS_HEARTBEAT_SECONDS
    try:
        while True:
            await asyncio.sleep(interval)
            await ws.send_text(WsOutbound(type="pong", data={}).model_dump_json())
    except asyncio.CancelledError:
        pass
    except Exception:
        pass


async def _read_loop(
    ws: WebSocket,
    manager: ConnectionManager,
    engine: SyncEngine,
    conversation_id: str,
) -> None:
    while True:
        raw = await ws.receive_text()
        try:
            msg = WsInbound.model_validate_json(raw)
        except Exception:
            await manager.send(ws, "error", {"code": "invalid_payload"})
            continue

        if msg.type == "ping":
            await manager.send(ws, "pong", {})
            continue
        try:
            await _dispatch(ws, manager, engine, conversation_id, msg)
        except AppError as exc:
            await manager.send(ws, "error", {"code": exc.kind.value, "detail": exc.detail})


async def _dispatch(
    ws: WebSocket,
    manager: ConnectionManager,
    engine: SyncEngine,
    conversation_id: str,
    msg: WsInbound,
) -> None:
    if msg.type == "join":
        await engine.join(conversation_id)
    elif msg.type == "leave":
        await engine.leave(conversation_id)
    elif msg.type == "message.send":
        try:
            content = str(msg.data["content"])
            msg_type = MessageType(msg.data.get("type", "text"))
        except (KeyError, ValueError) as exc:
            raise ValidationError(f"Invalid message.send data: {exc}") from exc
        message = engine.get(conversation_id).send(content, msg_type, msg.data.get("metadata"))
        await manager.send(ws, "message.accepted", MessageResponse.from_domain(message).model_dump(mode="json"))
    elif msg.type == "message.retry":
        engine.get(conversation_id).retry(str(msg.data.get("message_id", "")))
    elif msg.type == "message.discard":
        engine.get(conversation_id).discard(str(msg.data.get("message_id", "")))
    elif msg.type == "mark_read":
        engine.get(conversation_id).mark_read(msg.data.get("message_ids"))
    elif msg.type == "typing.start":
        await engine.get(conversation_id).start_typing()
    elif msg.type == "typing.stop":
        await engine.get(conversation_id).stop_typing()
