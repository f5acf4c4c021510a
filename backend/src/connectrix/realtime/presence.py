"""Presence and read-state writes triggered by session and relay events."""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from datetime import datetime, timezone
from typing import Callable, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.monitoring.metrics import presence_updates_total
from app.services.conversations import ReadResult, mark_conversation_read, mark_messages_read
from app.services.presence import set_presence

from .errors import NotFoundError, PersistenceError


logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractContextManager[Session]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PresenceTracker:
    """Writes ``online``/``last_seen`` on session start and end.

    With ``reference_counted`` enabled a user stays online until the last of
    their sessions ends; otherwise every disconnect marks the user offline.
    Missing users and store failures are logged and never raised.
    """

    def __init__(
        self,
        session_scope: SessionScope,
        *,
        reference_counted: bool = True,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.session_scope = session_scope
        self.reference_counted = reference_counted
        self._clock = clock

    async def session_started(self, user_id: str) -> bool:
        return self._write(user_id, online=True)

    async def session_ended(self, user_id: str, remaining_sessions: int = 0) -> bool:
        if self.reference_counted and remaining_sessions > 0:
            presence_updates_total.labels("offline", "skipped").inc()
            return False
        return self._write(user_id, online=False)

    def _write(self, user_id: str, *, online: bool) -> bool:
        state = "online" if online else "offline"
        try:
            with self.session_scope() as db:
                set_presence(db, user_id, online=online, seen_at=self._clock())
        except NotFoundError:
            logger.warning("Presence update skipped: user %s does not exist", user_id)
            presence_updates_total.labels(state, "missing").inc()
            return False
        except SQLAlchemyError:
            logger.exception("Failed to persist presence for user %s", user_id)
            presence_updates_total.labels(state, "error").inc()
            return False
        presence_updates_total.labels(state, "ok").inc()
        return True

    async def mark_messages_read(
        self, conversation_id: str, reader_id: str, message_ids: Sequence[int]
    ) -> ReadResult:
        with self.session_scope() as db:
            try:
                return mark_messages_read(db, conversation_id, reader_id, message_ids)
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceError("Failed to update read state") from exc

    async def mark_conversation_read(self, conversation_id: str, reader_id: str) -> ReadResult:
        with self.session_scope() as db:
            try:
                return mark_conversation_read(db, conversation_id, reader_id)
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceError("Failed to update read state") from exc
