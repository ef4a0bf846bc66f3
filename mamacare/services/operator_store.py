import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mamacare.core.errors import PersistenceError
from mamacare.models.operator_session import OperatorNotification, OperatorSession

logger = logging.getLogger(__name__)


def bind_session(db: Session, operator_channel_id: str, conversation_id: str) -> OperatorSession:
    """Upsert by operator: a new /start replaces whatever the nurse was bound to."""
    now = datetime.now(timezone.utc)
    try:
        session = db.get(OperatorSession, operator_channel_id)
        if session is None:
            session = OperatorSession(operator_channel_id=operator_channel_id, created_at=now)
            db.add(session)
        session.active_conversation_id = conversation_id
        session.updated_at = now
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"Failed to create nurse session: {e}") from e
    db.refresh(session)
    return session


def get_session(db: Session, operator_channel_id: str) -> OperatorSession | None:
    try:
        return db.get(OperatorSession, operator_channel_id)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("failed to load nurse session operator=%s: %s", operator_channel_id, e)
        raise PersistenceError("Failed to load nurse session") from e


def end_session(db: Session, operator_channel_id: str) -> bool:
    try:
        deleted = (
            db.query(OperatorSession)
            .filter_by(operator_channel_id=operator_channel_id)
            .delete(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"Failed to end session: {e}") from e
    return bool(deleted)


def record_notification(db: Session, channel_chat_id: str, channel_message_id: int, conversation_id: str) -> None:
    db.add(
        OperatorNotification(
            channel_chat_id=channel_chat_id,
            channel_message_id=channel_message_id,
            conversation_id=conversation_id,
        )
    )
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"Failed to record notification: {e}") from e


def find_notified_conversation(db: Session, channel_chat_id: str, channel_message_id: int) -> str | None:
    try:
        row = (
            db.query(OperatorNotification)
            .filter_by(channel_chat_id=channel_chat_id, channel_message_id=channel_message_id)
            .first()
        )
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("failed to look up notification %s/%s: %s", channel_chat_id, channel_message_id, e)
        raise PersistenceError("Failed to look up notified conversation") from e
    return row.conversation_id if row else None
