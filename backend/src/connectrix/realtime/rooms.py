"""Named fan-out groups of live connections."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Dict, Set

from fastapi.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from app.monitoring.metrics import (
    realtime_events_total,
    realtime_publish_errors_total,
    realtime_subscriptions,
)

from .errors import AuthenticationError
from .registry import ConnectionRegistry
from .transport import ROOMS_TOPIC, RedisTransport, Subscription, TransportUnavailableError


logger = logging.getLogger(__name__)


def user_room(user_id: str) -> str:
    return f"user_{user_id}"


def chat_room(conversation_id: str) -> str:
    return f"chat_{conversation_id}"


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Safely send JSON data through websocket, handling disconnections gracefully.

    Returns True if message was sent successfully, False otherwise.
    """
    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("Failed to send websocket message: %s", e)
        return False


class RoomRouter:
    """Room membership per connection plus best-effort broadcast.

    When a transport is configured, every broadcast is also published so that
    peer relay processes deliver it to their own members of the room.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        transport: RedisTransport | None = None,
        *,
        node_id: str | None = None,
    ) -> None:
        self._registry = registry
        self._transport = transport
        self._node_id = node_id
        self._members: Dict[str, Set[str]] = defaultdict(set)
        self._rooms_by_connection: Dict[str, Set[str]] = defaultdict(set)
        self._lock = asyncio.Lock()
        self._subscription: Subscription | None = None
        self._publish_warning_logged = False

    async def start(self) -> None:
        if self._transport is None or not self._transport.configured:
            return

        async def handle(message: dict[str, Any]) -> None:
            if message.get("origin") == self._node_id:
                return
            room = message.get("room")
            event = message.get("event")
            payload = message.get("payload")
            if not isinstance(room, str) or not isinstance(event, str) or not isinstance(payload, dict):
                return
            await self._deliver(room, event, payload, exclude=None)
            realtime_events_total.labels("rooms", "in", event).inc()

        try:
            self._subscription = await self._transport.subscribe(ROOMS_TOPIC, handle)
        except TransportUnavailableError:
            logger.warning(
                "Realtime backend unavailable; room broadcasts will be limited to this instance",
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            self._subscription = None
            return
        realtime_subscriptions.labels("rooms", self._transport.backend).inc()

    async def stop(self) -> None:
        if self._subscription is not None:
            await self._subscription.close()
            realtime_subscriptions.labels("rooms", self._transport.backend).dec()
            self._subscription = None

    async def join(self, connection_id: str, room: str) -> None:
        if not self._registry.is_authenticated(connection_id):
            raise AuthenticationError("Connection is not authenticated")
        async with self._lock:
            self._members[room].add(connection_id)
            self._rooms_by_connection[connection_id].add(room)

    async def leave(self, connection_id: str, room: str) -> None:
        async with self._lock:
            self._discard(connection_id, room)

    async def leave_all(self, connection_id: str) -> list[str]:
        async with self._lock:
            rooms = sorted(self._rooms_by_connection.pop(connection_id, set()))
            for room in rooms:
                self._discard(connection_id, room)
        return rooms

    def _discard(self, connection_id: str, room: str) -> None:
        members = self._members.get(room)
        if members is not None:
            members.discard(connection_id)
            if not members:
                self._members.pop(room, None)
        rooms = self._rooms_by_connection.get(connection_id)
        if rooms is not None:
            rooms.discard(room)
            if not rooms:
                self._rooms_by_connection.pop(connection_id, None)

    def members(self, room: str) -> set[str]:
        return set(self._members.get(room, set()))

    def room_count(self) -> int:
        return len(self._members)

    def rooms_of(self, connection_id: str) -> set[str]:
        return set(self._rooms_by_connection.get(connection_id, set()))

    async def broadcast(
        self,
        room: str,
        event: str,
        payload: dict[str, Any],
        *,
        exclude: str | None = None,
    ) -> int:
        """Send ``{**payload, "type": event}`` to current members; returns local deliveries."""

        delivered = await self._deliver(room, event, payload, exclude=exclude)
        realtime_events_total.labels("rooms", "out", event).inc()
        if self._transport is not None and self._transport.configured:
            await self._publish(room, event, payload)
        return delivered

    async def send(self, connection_id: str, event: str, payload: dict[str, Any]) -> bool:
        websocket = self._registry.socket_for(connection_id)
        if websocket is None:
            return False
        return await safe_send_json(websocket, {**payload, "type": event})

    async def _deliver(
        self, room: str, event: str, payload: dict[str, Any], *, exclude: str | None
    ) -> int:
        message = {**payload, "type": event}
        delivered = 0
        for connection_id in self.members(room):
            if connection_id == exclude:
                continue
            websocket = self._registry.socket_for(connection_id)
            if websocket is None:
                continue
            if await safe_send_json(websocket, message):
                delivered += 1
        return delivered

    async def _publish(self, room: str, event: str, payload: dict[str, Any]) -> None:
        backend = self._transport.backend
        try:
            await self._transport.publish(
                ROOMS_TOPIC,
                {"origin": self._node_id, "room": room, "event": event, "payload": payload},
            )
        except TransportUnavailableError:
            if not self._publish_warning_logged:
                logger.warning(
                    "Realtime backend unavailable while broadcasting %s; operating in local-only mode",
                    event,
                    exc_info=logger.isEnabledFor(logging.DEBUG),
                )
                self._publish_warning_logged = True
            realtime_publish_errors_total.labels("rooms", backend, "unavailable").inc()
        except Exception:
            realtime_publish_errors_total.labels("rooms", backend, "error").inc()
            logger.exception("Unexpected error while broadcasting %s", event)
        else:
            self._publish_warning_logged = False
