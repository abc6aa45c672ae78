from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChatUser(Base):
    """A display name paired with the tripcode derived from its credential."""

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("username", "tripcode", name="uq_users_username_tripcode"),
        Index("idx_users_username_tripcode", "username", "tripcode"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    username: Mapped[str] = mapped_column(String(50), nullable=False)
    tripcode: Mapped[str] = mapped_column(String(16), nullable=False, default="")
    full_display_name: Mapped[str] = mapped_column(String(67), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    last_seen: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    message_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    messages: Mapped[list["ChatMessage"]] = relationship(back_populates="user")


class ChatMessage(Base):
    """A persisted chat line; ``recipient`` is set for private messages."""

    __tablename__ = "messages"
    __table_args__ = (Index("idx_messages_timestamp", "timestamp"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    username: Mapped[str] = mapped_column(String(67), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    recipient: Mapped[str | None] = mapped_column(String(67), index=True)
    user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), index=True
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )

    user: Mapped[ChatUser | None] = relationship(back_populates="messages")
    receipts: Mapped[list["ReadReceipt"]] = relationship(
        back_populates="message", cascade="all, delete-orphan"
    )


class ReadReceipt(Base):
    """Durable copy of a (message, reader) acknowledgement."""

    __tablename__ = "read_receipts"
    __table_args__ = (
        UniqueConstraint("message_id", "reader_username", name="uq_read_receipt"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    message_id: Mapped[int] = mapped_column(
        ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    reader_username: Mapped[str] = mapped_column(String(67), nullable=False, index=True)
    read_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    message: Mapped[ChatMessage] = relationship(back_populates="receipts")
