"""Schemas for conversation listings and message history."""

from __future__ import annotations

from datetime import datetime

from app.schemas.common import CamelModel


class ChatParticipant(CamelModel):
    """The other side of a conversation as shown in the chat list."""

    id: str
    first_name: str
    last_name: str
    avatar: str
    profile_picture: str | None = None
    online: bool = False


class LastMessage(CamelModel):
    text: str | None = None
    sender_id: str | None = None
    timestamp: datetime | None = None
    type: str | None = None


class ChatSummary(CamelModel):
    id: str
    other_user: ChatParticipant
    last_message: LastMessage | None = None
    last_message_read: bool = True
    unread_count: int = 0
    timestamp: datetime | None = None


class MessageRead(CamelModel):
    id: int
    chat_id: str
    sender_id: str
    receiver_id: str
    message: str
    type: str
    timestamp: datetime
    read: bool
    correlation_id: str | None = None


class ReadReceipt(CamelModel):
    chat_id: str
    message_ids: list[int]
    last_message_read: bool
