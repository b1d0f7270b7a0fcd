"""Chat session and message models."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from biowell_service.models.base import Base, TimestampMixin, UserScopedMixin, generate_uuid


class ChatSessionRecord(Base, UserScopedMixin, TimestampMixin):
    """A conversation thread with its last-message summary."""

    __tablename__ = "chat_sessions"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=generate_uuid,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="New Chat")
    last_message: Mapped[str | None] = mapped_column(
        Text, comment="Truncated text of the latest reply"
    )
    message_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        """String representation."""
        return f"<ChatSessionRecord(id={self.id}, user_id={self.user_id}, title={self.title})>"


class ChatMessageRecord(Base, UserScopedMixin):
    """One confirmed turn in a conversation.

    Only confirmed messages are persisted; drafts live in memory until the
    completion service replies.
    """

    __tablename__ = "chat_messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    session_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("chat_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = mapped_column(String(16), nullable=False, comment="user or assistant")
    text: Mapped[str] = mapped_column(Text, nullable=False)
    detail: Mapped[str | None] = mapped_column(Text, comment="Extended answer text")
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    position: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="Order of the message within its session"
    )

    def __repr__(self) -> str:
        """String representation."""
        return f"<ChatMessageRecord(id={self.id}, session_id={self.session_id}, role={self.role})>"
