"""Schemas for notification producers and the notification feed."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field, constr

from app.schemas.common import CamelModel


class NotificationCreate(CamelModel):
    recipient_id: constr(strip_whitespace=True, min_length=1, max_length=128)
    type: constr(strip_whitespace=True, min_length=1, max_length=64)
    title: str | None = Field(default=None, max_length=255)
    message: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class NotificationRead(CamelModel):
    id: int
    type: str
    recipient_id: str
    sender_id: str | None = None
    sender_name: str | None = None
    sender_role: str | None = None
    title: str | None = None
    message: str | None = None
    read: bool
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class NotificationFeed(CamelModel):
    notifications: list[NotificationRead]
    unread_count: int
    unread_message_count: int
    badge: str | None = None
    message_badge: str | None = None


class MarkAllReadResult(CamelModel):
    updated: int
