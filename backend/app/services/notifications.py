"""Notification persistence helpers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.models import Notification
from app.monitoring.metrics import notifications_created_total
from connectrix.realtime.errors import AuthorizationError, NotFoundError


def build_notification(
    *,
    recipient_id: str,
    type: str,
    sender_id: str | None = None,
    sender_name: str | None = None,
    sender_role: str | None = None,
    title: str | None = None,
    message: str | None = None,
    data: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> Notification:
    """Return an unsaved, unread notification."""

    notifications_created_total.labels(type).inc()
    return Notification(
        recipient_id=recipient_id,
        type=type,
        sender_id=sender_id,
        sender_name=sender_name,
        sender_role=sender_role,
        title=title,
        message=message,
        payload=dict(data or {}),
        read=False,
        created_at=now or datetime.now(timezone.utc),
    )


def create_notification(db: Session, **fields: Any) -> Notification:
    notification = build_notification(**fields)
    db.add(notification)
    db.commit()
    db.refresh(notification)
    return notification


def list_notifications(db: Session, recipient_id: str, limit: int) -> list[Notification]:
    stmt = (
        select(Notification)
        .where(Notification.recipient_id == recipient_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars())


def mark_notification_read(db: Session, notification_id: int, user_id: str) -> Notification:
    notification = db.get(Notification, notification_id)
    if notification is None:
        raise NotFoundError("Notification not found")
    if notification.recipient_id != user_id:
        raise AuthorizationError("Notification belongs to another user")
    if not notification.read:
        notification.read = True
        db.commit()
        db.refresh(notification)
    return notification


def mark_all_read(db: Session, user_id: str) -> int:
    result = db.execute(
        update(Notification)
        .where(Notification.recipient_id == user_id, Notification.read.is_(False))
        .values(read=True)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return int(result.rowcount or 0)
