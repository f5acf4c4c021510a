"""Notification feed and producer endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, http_error
from app.config import get_settings
from app.database import get_db
from app.models import User
from app.schemas import MarkAllReadResult, NotificationCreate, NotificationFeed, NotificationRead
from app.services import live_query_hub
from app.services.live_queries import build_feed_snapshot, serialize_notification
from app.services.notifications import create_notification, mark_all_read, mark_notification_read
from connectrix.realtime.errors import RelayError

router = APIRouter(prefix="/notifications", tags=["notifications"])

settings = get_settings()


def _display_name(user: User) -> str:
    name = " ".join(part for part in (user.first_name, user.last_name) if part)
    return name or user.email


@router.get("", response_model=NotificationFeed)
async def get_notification_feed(
    limit: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> NotificationFeed:
    """Return the newest notifications and both badge counts."""

    window = min(limit or settings.notification_window_size, settings.notification_window_size)
    snapshot = build_feed_snapshot(db, current_user.id, window)
    return NotificationFeed.model_validate(snapshot)


@router.post("", response_model=NotificationRead, status_code=status.HTTP_201_CREATED)
async def post_notification(
    payload: NotificationCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> NotificationRead:
    """Create a notification from the caller to another user."""

    notification = create_notification(
        db,
        recipient_id=payload.recipient_id,
        type=payload.type,
        sender_id=current_user.id,
        sender_name=_display_name(current_user),
        sender_role=current_user.role.value,
        title=payload.title,
        message=payload.message,
        data=payload.data,
    )
    result = NotificationRead.model_validate(serialize_notification(notification))
    await live_query_hub.invalidate([notification.recipient_id])
    return result


@router.post("/read-all", response_model=MarkAllReadResult)
async def read_all_notifications(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MarkAllReadResult:
    updated = mark_all_read(db, current_user.id)
    await live_query_hub.invalidate([current_user.id])
    return MarkAllReadResult(updated=updated)


@router.post("/{notification_id}/read", response_model=NotificationRead)
async def read_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> NotificationRead:
    try:
        notification = mark_notification_read(db, notification_id, current_user.id)
    except RelayError as exc:
        raise http_error(exc) from exc
    result = NotificationRead.model_validate(serialize_notification(notification))
    await live_query_hub.invalidate([current_user.id])
    return result
