from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from app.models import User
from app.monitoring.metrics import presence_updates_total
from connectrix.realtime.presence import PresenceTracker


FIXED_NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


def _user(session_factory, user_id: str) -> User | None:
    with session_factory() as session:
        return session.get(User, user_id)


@pytest.mark.anyio("asyncio")
async def test_session_start_and_end_write_presence(session_scope, session_factory, make_user):
    make_user("alice")
    tracker = PresenceTracker(session_scope, clock=lambda: FIXED_NOW)

    assert await tracker.session_started("alice")
    user = _user(session_factory, "alice")
    assert user.online is True
    assert user.last_seen.replace(tzinfo=timezone.utc) == FIXED_NOW

    assert await tracker.session_ended("alice", remaining_sessions=0)
    assert _user(session_factory, "alice").online is False


@pytest.mark.anyio("asyncio")
async def test_reference_counted_presence_keeps_user_online(session_scope, session_factory, make_user):
    make_user("alice")
    tracker = PresenceTracker(session_scope, reference_counted=True)
    await tracker.session_started("alice")

    assert not await tracker.session_ended("alice", remaining_sessions=1)

    assert _user(session_factory, "alice").online is True
    assert presence_updates_total.value("offline", "skipped") == 1


@pytest.mark.anyio("asyncio")
async def test_last_disconnect_wins_when_not_reference_counted(session_scope, session_factory, make_user):
    make_user("alice")
    tracker = PresenceTracker(session_scope, reference_counted=False)
    await tracker.session_started("alice")

    assert await tracker.session_ended("alice", remaining_sessions=1)

    assert _user(session_factory, "alice").online is False


@pytest.mark.anyio("asyncio")
async def test_second_device_disconnect_through_relay(relay_stack, connect_user, make_user, session_factory):
    make_user("alice")
    phone, _ = await connect_user("alice")
    laptop, _ = await connect_user("alice")

    await relay_stack.disconnect(phone)
    assert _user(session_factory, "alice").online is True

    await relay_stack.disconnect(laptop)
    assert _user(session_factory, "alice").online is False


@pytest.mark.anyio("asyncio")
async def test_missing_user_is_logged_not_created(session_scope, session_factory, caplog):
    tracker = PresenceTracker(session_scope)

    with caplog.at_level(logging.WARNING, logger="connectrix.realtime.presence"):
        assert not await tracker.session_started("ghost")

    assert "ghost" in caplog.text
    assert presence_updates_total.value("online", "missing") == 1
    with session_factory() as session:
        assert session.execute(select(func.count()).select_from(User)).scalar_one() == 0


@pytest.mark.anyio("asyncio")
async def test_store_failure_is_logged_and_dropped(caplog):
    class BrokenSession:
        def get(self, *args, **kwargs):
            raise SQLAlchemyError("database is gone")

    @contextmanager
    def broken_scope():
        yield BrokenSession()

    tracker = PresenceTracker(broken_scope)

    with caplog.at_level(logging.ERROR, logger="connectrix.realtime.presence"):
        assert not await tracker.session_ended("alice")

    assert "Failed to persist presence" in caplog.text
    assert presence_updates_total.value("offline", "error") == 1
