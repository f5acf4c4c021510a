"""Inbound websocket event payloads for the chat relay."""

from __future__ import annotations

from pydantic import Field

from app.schemas.common import CamelModel


class AuthenticateEvent(CamelModel):
    token: str = ""
    user_id: str = ""


class JoinChatEvent(CamelModel):
    chat_id: str = Field(min_length=1)
    user_id: str | None = None


class SendMessageEvent(CamelModel):
    chat_id: str | None = None
    sender_id: str | None = None
    receiver_id: str | None = None
    message: str | None = None
    message_type: str | None = Field(default=None, max_length=32)
    correlation_id: str | None = Field(default=None, max_length=64)


class MarkAsReadEvent(CamelModel):
    chat_id: str = Field(min_length=1)
    message_ids: list[int] = Field(default_factory=list)


class TypingEvent(CamelModel):
    chat_id: str = Field(min_length=1)
    user_id: str | None = None
    is_typing: bool = False
