import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mamacare.core.errors import InvalidRequestError, PersistenceError
from mamacare.models.conversation import Conversation
from mamacare.models.message import Message, SENDER_TYPES
from mamacare.services import realtime  # noqa: F401  (registers commit hooks)

logger = logging.getLogger(__name__)


def _commit(db: Session, what: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("failed to %s: %s", what, e)
        raise PersistenceError(f"Failed to {what}") from e


def create_conversation(db: Session, user_id: str) -> Conversation:
    if not user_id:
        raise InvalidRequestError("user_id is required")
    conv = Conversation(user_id=user_id)
    db.add(conv)
    _commit(db, "create conversation")
    db.refresh(conv)
    return conv


def get_conversation(db: Session, conversation_id: str) -> Conversation | None:
    return db.get(Conversation, conversation_id)


def list_conversations(db: Session, user_id: str) -> list[Conversation]:
    return (
        db.query(Conversation)
        .filter_by(user_id=user_id)
        .order_by(Conversation.updated_at.desc(), Conversation.created_at.desc())
        .all()
    )


def add_message(
    db: Session,
    conversation_id: str,
    sender_type: str,
    content: str,
    sender_id: str | None = None,
) -> Message:
    content = (content or "").strip()
    if not content:
        raise InvalidRequestError("message content is required")
    if sender_type not in SENDER_TYPES:
        raise InvalidRequestError(f"unknown sender_type {sender_type!r}")

    now = datetime.now(timezone.utc)
    msg = Message(
        conversation_id=conversation_id,
        sender_id=sender_id,
        sender_type=sender_type,
        content=content,
        created_at=now,
    )
    db.add(msg)
    # A missing conversation is left to the FK constraint, so the insert fails rather than orphaning
    db.query(Conversation).filter_by(id=conversation_id).update(
        {Conversation.updated_at: now}, synchronize_session=False
    )
    _commit(db, f"save {sender_type} message")
    db.refresh(msg)
    return msg


def list_messages(db: Session, conversation_id: str) -> list[Message]:
    return (
        db.query(Message)
        .filter_by(conversation_id=conversation_id)
        .order_by(Message.created_at.asc(), Message.id.asc())
        .all()
    )


def delete_conversation(db: Session, conversation_id: str, user_id: str | None = None) -> bool:
    conv = get_conversation(db, conversation_id)
    if not conv or (user_id is not None and conv.user_id != user_id):
        return False

    # chat_messages and operator_notifications go with it (ON DELETE CASCADE)
    db.delete(conv)
    _commit(db, "delete conversation")
    return True
