"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

import os
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JWT_SECRET_KEY", "connectrix-test-secret-key-0123456789abcdef")

ROOT_DIR = Path(__file__).resolve().parents[1]
for path in (ROOT_DIR, ROOT_DIR / "src"):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

import pytest
from fastapi.testclient import TestClient
from fastapi.websockets import WebSocketState
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.security import create_access_token, verify_token_subject
from app.database import get_db, get_db_session
from app.main import app
from app.models import Base, User, UserRole
from app.monitoring.registry import registry as metrics_registry
from connectrix.realtime.managers import configure_realtime
from connectrix.realtime.presence import PresenceTracker
from connectrix.realtime.registry import ConnectionRegistry
from connectrix.realtime.relay import MessageRelay
from connectrix.realtime.rooms import RoomRouter


class DummyWebSocket:
    """Records JSON frames sent by the relay."""

    def __init__(self) -> None:
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)

    def events(self, event_type: str) -> list[dict[str, Any]]:
        return [payload for payload in self.sent if payload.get("type") == event_type]


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_metrics() -> Iterator[None]:
    metrics_registry.reset()
    yield
    metrics_registry.reset()


@pytest.fixture()
def test_engine() -> Iterator[Engine]:
    """Provide an in-memory SQLite engine for isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(test_engine) -> sessionmaker[Session]:
    """Return a session factory bound to the test engine."""

    return sessionmaker(bind=test_engine, future=True)


@pytest.fixture()
def db_session(session_factory) -> Iterator[Session]:
    """Yield a SQLAlchemy session for unit tests."""

    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def session_scope(session_factory) -> Callable[[], Any]:
    """Short-lived session context manager bound to the test engine."""

    @contextmanager
    def scope() -> Iterator[Session]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    return scope


@pytest.fixture()
def make_user(session_factory) -> Callable[..., str]:
    def factory(
        user_id: str,
        *,
        first_name: str | None = "Test",
        last_name: str | None = "User",
        role: UserRole = UserRole.STUDENT,
    ) -> str:
        with session_factory() as session:
            session.add(
                User(
                    id=user_id,
                    email=f"{user_id}@example.com",
                    first_name=first_name,
                    last_name=last_name,
                    role=role,
                )
            )
            session.commit()
        return user_id

    return factory


@pytest.fixture()
def token_for() -> Callable[[str], str]:
    return lambda user_id: create_access_token({"sub": user_id})


@pytest.fixture()
def auth_headers(token_for) -> Callable[[str], dict[str, str]]:
    return lambda user_id: {"Authorization": f"Bearer {token_for(user_id)}"}


@pytest.fixture()
def relay_stack(session_scope):
    """A fresh registry, router, tracker and relay wired against the test database."""

    registry = ConnectionRegistry(verify_token_subject)
    router = RoomRouter(registry)
    presence = PresenceTracker(session_scope)
    changes: list[list[str]] = []

    async def on_change(user_ids) -> None:
        changes.append(sorted(user_ids))

    relay = MessageRelay(
        registry,
        router,
        presence,
        session_scope=session_scope,
        max_message_length=200,
        on_change=on_change,
    )
    relay.changes = changes  # type: ignore[attr-defined]
    return relay


@pytest.fixture()
def open_connection(relay_stack):
    """Open a dummy connection without authenticating it."""

    async def open_() -> tuple[str, DummyWebSocket]:
        websocket = DummyWebSocket()
        connection_id = await relay_stack.registry.connect(websocket)
        return connection_id, websocket

    return open_


@pytest.fixture()
def connect_user(relay_stack, open_connection, token_for):
    """Open a dummy connection and authenticate it as *user_id*."""

    async def connect(user_id: str) -> tuple[str, DummyWebSocket]:
        connection_id, websocket = await open_connection()
        assert await relay_stack.authenticate(connection_id, user_id, token_for(user_id))
        return connection_id, websocket

    return connect


@pytest.fixture()
def client(session_factory, session_scope) -> Iterator[TestClient]:
    """Yield a FastAPI TestClient with the database dependency overridden."""

    def override_get_db() -> Iterator[Session]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    configure_realtime(session_scope)
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
        configure_realtime(get_db_session)
