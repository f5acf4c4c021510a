"""Presence columns on the user row."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Session

from app.models import User
from connectrix.realtime.errors import NotFoundError


def set_presence(db: Session, user_id: str, *, online: bool, seen_at: datetime) -> User:
    """Write ``online``/``last_seen`` for an existing user; never creates the row."""

    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    user.online = online
    user.last_seen = seen_at
    db.commit()
    return user
