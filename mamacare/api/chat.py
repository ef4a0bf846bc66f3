import asyncio
import json
import logging
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import StreamingResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mamacare.api.deps import current_user_id
from mamacare.core.db import get_db, session_scope
from mamacare.core.errors import ConversationNotFoundError, PersistenceError
from mamacare.schemas.chat import ConversationOut, MessageCreate, MessageOut
from mamacare.services import chat_store
from mamacare.services.realtime import MessageInserted, hub

logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 15.0

router = APIRouter(prefix="/conversations", tags=["chat"])


def _owned(db: Session, conversation_id: str, user_id: str):
    conv = chat_store.get_conversation(db, conversation_id)
    if not conv or conv.user_id != user_id:
        raise ConversationNotFoundError("Conversation not found")
    return conv


def _emit_sse(event: str, data: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


@router.get("", response_model=list[ConversationOut])
def list_conversations(user_id: str = Depends(current_user_id), db: Session = Depends(get_db)):
    return chat_store.list_conversations(db, user_id)


@router.post("", response_model=ConversationOut, status_code=status.HTTP_201_CREATED)
def create_conversation(user_id: str = Depends(current_user_id), db: Session = Depends(get_db)):
    return chat_store.create_conversation(db, user_id)


@router.get("/{conversation_id}/messages", response_model=list[MessageOut])
def list_messages(
    conversation_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    _owned(db, conversation_id, user_id)
    return chat_store.list_messages(db, conversation_id)


@router.post("/{conversation_id}/messages", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
def post_message(
    conversation_id: str,
    req: MessageCreate,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    _owned(db, conversation_id, user_id)
    return chat_store.add_message(db, conversation_id, "user", req.content, sender_id=user_id)


@router.delete("/{conversation_id}")
def delete_conversation(
    conversation_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    if not chat_store.delete_conversation(db, conversation_id, user_id=user_id):
        raise ConversationNotFoundError("Conversation not found")
    return {"ok": True, "message": "Conversation deleted"}


@router.get("/{conversation_id}/events")
async def conversation_events(
    conversation_id: str,
    request: Request,
    limit: int | None = Query(default=None, ge=1),
    user_id: str = Depends(current_user_id),
):
    """
    Server-sent events: one ``insert`` event per committed message in the
    conversation. Events carry ids only; clients re-fetch the message list.
    """

    def check_owner() -> None:
        try:
            with session_scope() as db:
                _owned(db, conversation_id, user_id)
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to load conversation") from e

    await asyncio.to_thread(check_owner)

    queue: asyncio.Queue[MessageInserted] = asyncio.Queue()

    async def enqueue(evt: MessageInserted) -> None:
        queue.put_nowait(evt)

    # Subscribed before the response starts so nothing committed in between is missed
    sub = hub.subscribe(conversation_id, enqueue)
    logger.info("events stream opened conversation=%s user=%s", conversation_id, user_id)

    async def event_stream():
        sent = 0
        try:
            while limit is None or sent < limit:
                try:
                    evt = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    if await request.is_disconnected():
                        break
                    yield ": keepalive\n\n"
                    continue
                yield _emit_sse("insert", asdict(evt))
                sent += 1
        finally:
            sub.cancel()
            logger.info("events stream closed conversation=%s", conversation_id)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
