from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SAEnum,
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
from app.models.enums import UserRole


PAIR_SEPARATOR = "_"


def _escape_member(user_id: str) -> str:
    return user_id.replace("%", "%25").replace(PAIR_SEPARATOR, "%5F")


def _unescape_member(value: str) -> str:
    return value.replace("%5F", PAIR_SEPARATOR).replace("%25", "%")


def pair_key(user_id: str, other_id: str) -> str:
    """Return an order-independent key for a two-person conversation.

    Members are escaped so the separator only ever appears once; ``a`` with
    ``b_c`` and ``a_b`` with ``c`` therefore get different keys.
    """

    first, second = sorted((user_id, other_id))
    return f"{_escape_member(first)}{PAIR_SEPARATOR}{_escape_member(second)}"


def split_pair_key(key: str) -> tuple[str, str] | None:
    """Invert :func:`pair_key`; ``None`` when *key* is not a canonical pair key."""

    parts = key.split(PAIR_SEPARATOR)
    if len(parts) != 2 or not all(parts):
        return None
    first, second = (_unescape_member(part) for part in parts)
    if pair_key(first, second) != key:
        return None
    return first, second


class User(Base):
    """Platform user provisioned through the identity provider."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(128))
    last_name: Mapped[str | None] = mapped_column(String(128))
    profile_picture: Mapped[str | None] = mapped_column(String(1024))
    role: Mapped[UserRole] = mapped_column(
        SAEnum(
            UserRole,
            name="user_role",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        default=UserRole.STUDENT,
        nullable=False,
    )
    provider: Mapped[str] = mapped_column(String(32), default="google", nullable=False)
    online: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_seen: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    @property
    def initials(self) -> str:
        first = (self.first_name or "U")[:1]
        last = (self.last_name or "U")[:1]
        return f"{first}{last}".upper()


class Conversation(Base):
    """Two-person chat thread with a denormalized last-message summary."""

    __tablename__ = "chats"
    __table_args__ = (UniqueConstraint("pair_key", name="uq_chats_pair_key"),)

    id: Mapped[str] = mapped_column(String(769), primary_key=True)
    initiator_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    responder_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    pair_key: Mapped[str] = mapped_column(String(769), nullable=False)

    last_message_id: Mapped[int | None] = mapped_column(Integer)
    last_message_text: Mapped[str | None] = mapped_column(Text)
    last_message_sender_id: Mapped[str | None] = mapped_column(String(128))
    last_message_type: Mapped[str | None] = mapped_column(String(32))
    last_message_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_message_read: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    messages: Mapped[list["ChatMessage"]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="ChatMessage.sent_at",
    )

    @property
    def participant_ids(self) -> list[str]:
        return [self.initiator_id, self.responder_id]

    def has_user(self, user_id: str) -> bool:
        return user_id in (self.initiator_id, self.responder_id)

    def other_participant(self, user_id: str) -> str:
        return self.responder_id if user_id == self.initiator_id else self.initiator_id


class ChatMessage(Base):
    """Individual message exchanged in a conversation."""

    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_sent", "conversation_id", "sent_at"),
        Index("ix_messages_receiver_read", "conversation_id", "receiver_id", "read"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    conversation_id: Mapped[str] = mapped_column(
        ForeignKey("chats.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[str] = mapped_column(String(128), nullable=False)
    receiver_id: Mapped[str] = mapped_column(String(128), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[str] = mapped_column(String(32), default="text", nullable=False)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    correlation_id: Mapped[str | None] = mapped_column(String(64))

    conversation: Mapped[Conversation] = relationship(back_populates="messages")


class Notification(Base):
    """Persistent notification addressed to a single recipient."""

    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_recipient_created", "recipient_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    recipient_id: Mapped[str] = mapped_column(String(128), nullable=False)
    sender_id: Mapped[str | None] = mapped_column(String(128))
    sender_name: Mapped[str | None] = mapped_column(String(255))
    sender_role: Mapped[str | None] = mapped_column(String(32))
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str | None] = mapped_column(String(255))
    message: Mapped[str | None] = mapped_column(Text)
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
