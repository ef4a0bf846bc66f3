from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from mamacare.core.db import Base


class OperatorSession(Base):
    """A nurse's private chat bound to the conversation they are answering."""

    __tablename__ = "operator_sessions"

    operator_channel_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    # No FK: the binding outlives a deleted conversation until the nurse sends /end
    active_conversation_id: Mapped[str] = mapped_column(String(36), index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )


class OperatorNotification(Base):
    """Correlates a notification posted to the nurse group with its conversation."""

    __tablename__ = "operator_notifications"
    __table_args__ = (
        UniqueConstraint("channel_chat_id", "channel_message_id", name="uq_channel_message"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    channel_chat_id: Mapped[str] = mapped_column(String(64))
    channel_message_id: Mapped[int] = mapped_column(BigInteger)
    conversation_id: Mapped[str] = mapped_column(
        ForeignKey("chat_conversations.id", ondelete="CASCADE"), index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
