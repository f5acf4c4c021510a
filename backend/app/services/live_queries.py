"""Live notification feed: re-runs the viewer's queries whenever the store changes for them."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import AbstractContextManager
from typing import Any, Callable, Dict, Iterable, Set

from fastapi.websockets import WebSocket, WebSocketState
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.database import get_db_session
from app.models import Conversation, Notification, User
from app.services.conversations import as_utc, load_user_conversations
from app.services.notifications import list_notifications
from connectrix.notifications import ConversationView, NotificationAggregator, NotificationView

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractContextManager[Session]]


def notification_view(notification: Notification) -> NotificationView:
    return NotificationView(
        id=notification.id,
        type=notification.type,
        read=notification.read,
        created_at=as_utc(notification.created_at),
        sender_id=notification.sender_id,
        sender_name=notification.sender_name,
        sender_role=notification.sender_role,
        title=notification.title,
        message=notification.message,
        data=dict(notification.payload or {}),
    )


def conversation_view(conversation: Conversation) -> ConversationView:
    return ConversationView(
        id=conversation.id,
        participant_ids=conversation.participant_ids,
        last_message_sender_id=conversation.last_message_sender_id,
        last_message_read=conversation.last_message_read,
    )


def serialize_notification(notification: Notification) -> dict[str, Any]:
    created_at = as_utc(notification.created_at)
    return {
        "id": notification.id,
        "type": notification.type,
        "recipientId": notification.recipient_id,
        "senderId": notification.sender_id,
        "senderName": notification.sender_name,
        "senderRole": notification.sender_role,
        "title": notification.title,
        "message": notification.message,
        "read": notification.read,
        "data": dict(notification.payload or {}),
        "createdAt": created_at.isoformat() if created_at else None,
    }


def build_feed_snapshot(db: Session, user_id: str, window: int) -> dict[str, Any]:
    """Recompute the viewer's notification window and both badge counts from the store."""

    notifications = list_notifications(db, user_id, window)
    conversations = load_user_conversations(db, user_id)
    user = db.get(User, user_id)
    aggregator = NotificationAggregator(
        user_id,
        viewer_role=user.role.value if user is not None else None,
        window=window,
    )
    aggregator.apply_notifications(notification_view(item) for item in notifications)
    aggregator.apply_conversations(conversation_view(item) for item in conversations)
    return {
        "type": "notification_snapshot",
        "notifications": [serialize_notification(item) for item in notifications],
        **aggregator.snapshot(),
    }


class LiveQueryHub:
    """Tracks feed subscribers per user and pushes fresh snapshots on invalidation."""

    def __init__(self, session_scope: SessionScope = get_db_session, *, window: int = 50) -> None:
        self._connections: Dict[str, Set[WebSocket]] = defaultdict(set)
        self._lock = asyncio.Lock()
        self.session_scope = session_scope
        self.window = window

    async def connect(self, user_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections[user_id].add(websocket)

    async def disconnect(self, user_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            sockets = self._connections.get(user_id)
            if not sockets:
                return
            sockets.discard(websocket)
            if not sockets:
                self._connections.pop(user_id, None)

    def snapshot(self, user_id: str) -> dict[str, Any]:
        with self.session_scope() as db:
            return build_feed_snapshot(db, user_id, self.window)

    async def invalidate(self, user_ids: Iterable[str]) -> None:
        unique = {user_id for user_id in user_ids if user_id}
        if not unique:
            return
        async with self._lock:
            targets = {user_id: list(self._connections.get(user_id, set())) for user_id in unique}
        for user_id, sockets in targets.items():
            if not sockets:
                continue
            try:
                payload = self.snapshot(user_id)
            except SQLAlchemyError:
                logger.exception("Failed to rebuild notification feed for %s", user_id)
                continue
            for socket in sockets:
                if socket.application_state != WebSocketState.CONNECTED:
                    continue
                try:
                    await socket.send_json(payload)
                except RuntimeError:
                    continue


live_query_hub = LiveQueryHub()
"""Singleton hub for notification feed WebSocket pushes."""
