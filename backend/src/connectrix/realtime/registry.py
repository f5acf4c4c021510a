"""Connection registry binding websocket connections to authenticated users."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict

from fastapi.websockets import WebSocket

from app.monitoring.metrics import realtime_connections, realtime_sessions

from .errors import AuthenticationError


logger = logging.getLogger(__name__)

TokenVerifier = Callable[[str], str]
"""Resolves a bearer token to its subject, raising ``AuthenticationError`` when invalid."""


@dataclass(slots=True)
class Session:
    """Authenticated binding between one user and one connection."""

    connection_id: str
    user_id: str
    registered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ConnectionRegistry:
    """Tracks live connections and the sessions registered on them.

    All mutations run on the event loop and are serialized by ``_lock``; reads
    are plain dictionary lookups. ``lookup`` follows last-registration-wins
    while ``sessions_of`` keeps every live session of a user so callers can
    tell when the last device went away.
    """

    def __init__(self, verifier: TokenVerifier) -> None:
        self._verifier = verifier
        self._sockets: Dict[str, WebSocket] = {}
        self._sessions: Dict[str, Session] = {}
        self._user_connections: Dict[str, list[str]] = defaultdict(list)
        self._latest: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    @property
    def verifier(self) -> TokenVerifier:
        return self._verifier

    async def connect(self, websocket: WebSocket) -> str:
        connection_id = uuid.uuid4().hex
        async with self._lock:
            self._sockets[connection_id] = websocket
        realtime_connections.labels("chat").inc()
        return connection_id

    async def register(self, connection_id: str, user_id: str, token: str) -> Session:
        if not user_id:
            raise AuthenticationError("Missing user id")
        subject = self._verifier(token)
        if subject != user_id:
            raise AuthenticationError("Token subject does not match user")

        async with self._lock:
            if connection_id not in self._sockets:
                raise AuthenticationError("Unknown connection")
            existing = self._sessions.get(connection_id)
            if existing is not None:
                if existing.user_id != user_id:
                    raise AuthenticationError("Connection is already bound to another user")
                self._latest[user_id] = connection_id
                return existing

            session = Session(connection_id=connection_id, user_id=user_id)
            self._sessions[connection_id] = session
            self._user_connections[user_id].append(connection_id)
            self._latest[user_id] = connection_id
        realtime_sessions.inc()
        logger.debug("Registered session", extra={"user_id": user_id, "connection_id": connection_id})
        return session

    async def unregister(self, connection_id: str) -> tuple[Session | None, int]:
        """Forget a connection. Returns its session (if any) and the user's remaining session count."""

        async with self._lock:
            socket = self._sockets.pop(connection_id, None)
            session = self._sessions.pop(connection_id, None)
            remaining = 0
            if session is not None:
                connections = self._user_connections.get(session.user_id, [])
                if connection_id in connections:
                    connections.remove(connection_id)
                remaining = len(connections)
                if remaining:
                    if self._latest.get(session.user_id) == connection_id:
                        self._latest[session.user_id] = connections[-1]
                else:
                    self._user_connections.pop(session.user_id, None)
                    self._latest.pop(session.user_id, None)

        if socket is not None:
            realtime_connections.labels("chat").dec()
        if session is not None:
            realtime_sessions.dec()
        return session, remaining

    def lookup(self, user_id: str) -> str | None:
        return self._latest.get(user_id)

    def session_for(self, connection_id: str) -> Session | None:
        return self._sessions.get(connection_id)

    def socket_for(self, connection_id: str) -> WebSocket | None:
        return self._sockets.get(connection_id)

    def sessions_of(self, user_id: str) -> list[Session]:
        return [
            self._sessions[connection_id]
            for connection_id in self._user_connections.get(user_id, [])
            if connection_id in self._sessions
        ]

    def is_authenticated(self, connection_id: str) -> bool:
        return connection_id in self._sessions
