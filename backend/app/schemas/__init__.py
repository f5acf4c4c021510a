"""Pydantic schemas for API payloads."""

from .chats import ChatParticipant, ChatSummary, LastMessage, MessageRead, ReadReceipt
from .events import (
    AuthenticateEvent,
    JoinChatEvent,
    MarkAsReadEvent,
    SendMessageEvent,
    TypingEvent,
)
from .notifications import MarkAllReadResult, NotificationCreate, NotificationFeed, NotificationRead
from .users import GoogleUserUpsert, UserRead

__all__ = [
    "AuthenticateEvent",
    "ChatParticipant",
    "ChatSummary",
    "GoogleUserUpsert",
    "JoinChatEvent",
    "LastMessage",
    "MarkAllReadResult",
    "MarkAsReadEvent",
    "MessageRead",
    "NotificationCreate",
    "NotificationFeed",
    "NotificationRead",
    "ReadReceipt",
    "SendMessageEvent",
    "TypingEvent",
    "UserRead",
]
