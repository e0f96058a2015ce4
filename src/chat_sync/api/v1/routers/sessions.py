from __future__ import annotations

from fastapi import APIRouter, Query, Response

from chat_sync.api.deps import EngineDep
from chat_sync.api.v1.schemas.conversation import SessionResponse
from chat_sync.api.v1.schemas.message import MarkReadRequest, MessageResponse, SendMessageRequest

router = APIRouter(prefix="/api/v1/sync/conversations", tags=["sessions"])


@router.post("/{conversation_id}/join", response_model=SessionResponse, status_code=202)
async def join(
    conversation_id: str,
    engine: EngineDep,
    wait: float = Query(0.0, ge=0.0, le=30.0),
) -> SessionResponse:
    session = await engine.join(conversation_id)
    if wait > 0:
        await session.wait_joined(wait)
    return SessionResponse.from_session(session)


@router.post("/{conversation_id}/leave", status_code=204)
async def leave(conversation_id: str, engine: EngineDep) -> Response:
    await engine.leave(conversation_id)
    return Response(status_code=204)


@router.get("/{conversation_id}", response_model=SessionResponse)
async def get_session(conversation_id: str, engine: EngineDep) -> SessionResponse:
    return SessionResponse.from_session(engine.get(conversation_id))


@router.get("/{conversation_id}/messages", response_model=list[MessageResponse])
async def list_messages(
    conversation_id: str,
    engine: EngineDep,
    refresh: bool = Query(False),
    older: bool = Query(False),
) -> list[MessageResponse]:
    session = engine.get(conversation_id)
    if refresh:
        await session.refresh()
    if older:
        await session.load_older()
    return [MessageResponse.from_domain(m) for m in session.messages]


@router.post("/{conversation_id}/messages", response_model=MessageResponse, status_code=202)
async def send_message(
    conversation_id: str,
    body: SendMessageRequest,
    engine: EngineDep,
) -> MessageResponse:
    message = engine.get(conversation_id).send(body.content, body.type, body.metadata)
    return MessageResponse.from_domain(message)


@router.post(
    "/{conversation_id}/messages/{message_id}/retry",
    response_model=MessageResponse,
    status_code=202,
)
async def retry_message(conversation_id: str, message_id: str, engine: EngineDep) -> MessageResponse:
    return MessageResponse.from_domain(engine.get(conversation_id).retry(message_id))


@router.delete("/{conversation_id}/messages/{message_id}", status_code=204)
async def discard_message(conversation_id: str, message_id: str, engine: EngineDep) -> Response:
    engine.get(conversation_id).discard(message_id)
    return Response(status_code=204)


@router.post("/{conversation_id}/read", response_model=list[MessageResponse])
async def mark_read(
    conversation_id: str,
    body: MarkReadRequest,
    engine: EngineDep,
) -> list[MessageResponse]:
    updated = engine.get(conversation_id).mark_read(body.message_ids)
    return [MessageResponse.from_domain(m) for m in updated]
