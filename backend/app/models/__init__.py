"""Database models package."""

from .base import Base
from .chat import ChatMessage, Conversation, Notification, User, pair_key, split_pair_key
from .enums import MessageKind, NotificationType, UserRole

__all__ = [
    "Base",
    "User",
    "Conversation",
    "ChatMessage",
    "Notification",
    "pair_key",
    "split_pair_key",
    "MessageKind",
    "NotificationType",
    "UserRole",
]
