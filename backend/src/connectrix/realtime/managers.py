"""Process-wide realtime services and their lifecycle hooks."""

from __future__ import annotations

import logging
import uuid
from contextlib import AbstractContextManager
from typing import Callable

from sqlalchemy.orm import Session

from app.config import get_settings
from app.core.security import verify_token_subject
from app.database import get_db_session
from app.services.live_queries import LiveQueryHub, live_query_hub

from .presence import PresenceTracker
from .registry import ConnectionRegistry
from .relay import MessageRelay
from .rooms import RoomRouter
from .transport import BrokerConfig, RedisTransport, TransportUnavailableError


logger = logging.getLogger(__name__)

settings = get_settings()

_node_id = settings.realtime_node_id or uuid.uuid4().hex

transport = RedisTransport(
    BrokerConfig(
        redis_url=settings.realtime_redis_url,
        redis_prefix=settings.realtime_namespace,
        node_id=_node_id,
    )
)

connection_registry = ConnectionRegistry(verify_token_subject)
room_router = RoomRouter(connection_registry, transport, node_id=_node_id)
presence_tracker = PresenceTracker(
    get_db_session,
    reference_counted=settings.presence_reference_counted,
)
live_query_hub.window = settings.notification_window_size
message_relay = MessageRelay(
    connection_registry,
    room_router,
    presence_tracker,
    session_scope=get_db_session,
    max_message_length=settings.chat_message_max_length,
    on_change=live_query_hub.invalidate,
)


async def startup_realtime() -> None:
    if not transport.configured:
        return
    try:
        await transport.start()
    except TransportUnavailableError:
        logger.warning(
            "Realtime backend unavailable during startup; continuing without cross-node sync",
            exc_info=logger.isEnabledFor(logging.DEBUG),
        )
        return
    await room_router.start()


async def shutdown_realtime() -> None:
    await room_router.stop()
    await transport.stop()


def configure_realtime(session_scope: Callable[[], AbstractContextManager[Session]]) -> None:
    """Point the relay, the presence tracker and the feed at another session factory."""

    presence_tracker.session_scope = session_scope
    message_relay.session_scope = session_scope
    live_query_hub.session_scope = session_scope


def get_connection_registry() -> ConnectionRegistry:
    return connection_registry


def get_room_router() -> RoomRouter:
    return room_router


def get_presence_tracker() -> PresenceTracker:
    return presence_tracker


def get_message_relay() -> MessageRelay:
    return message_relay


def get_live_query_hub() -> LiveQueryHub:
    return live_query_hub


__all__ = [
    "configure_realtime",
    "startup_realtime",
    "shutdown_realtime",
    "get_connection_registry",
    "get_room_router",
    "get_presence_tracker",
    "get_message_relay",
    "get_live_query_hub",
]
