"""WebSocket endpoints for the chat relay and the live notification feed."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Dict, TypeVar

from fastapi import APIRouter, WebSocket, status
from fastapi.websockets import WebSocketDisconnect, WebSocketState
from pydantic import ValidationError as PayloadValidationError
from sqlalchemy.exc import SQLAlchemyError

from app.config import get_settings
from app.core.security import verify_token_subject
from app.schemas import (
    AuthenticateEvent,
    JoinChatEvent,
    MarkAsReadEvent,
    SendMessageEvent,
    TypingEvent,
)
from app.services import live_query_hub
from connectrix.realtime.errors import AuthenticationError, RelayError
from connectrix.realtime.managers import get_connection_registry, get_message_relay
from connectrix.realtime.rooms import safe_send_json

router = APIRouter(prefix="/ws", tags=["ws"])

settings = get_settings()

logger = logging.getLogger(__name__)

registry = get_connection_registry()
relay = get_message_relay()

T = TypeVar("T")


async def iter_keepalive_messages(
    websocket: WebSocket,
    receiver: Callable[[], Awaitable[T]],
    *,
    timeout_seconds: float | int | None,
    ping_interval_seconds: float | int | None,
    ping_payload: Dict[str, Any] | None = None,
) -> AsyncIterator[T]:
    """Yield messages from *receiver* while sending keepalive pings when idle."""

    ping_payload = ping_payload or {"type": "ping"}
    timeout = float(timeout_seconds) if timeout_seconds else 0.0
    interval = float(ping_interval_seconds) if ping_interval_seconds else 0.0
    last_activity = time.monotonic()
    last_ping_sent: float | None = None

    while True:
        try:
            if timeout > 0:
                message = await asyncio.wait_for(receiver(), timeout=timeout)
            else:
                message = await receiver()
        except asyncio.TimeoutError:
            if websocket.application_state != WebSocketState.CONNECTED:
                break

            now = time.monotonic()
            idle = now - last_activity >= interval
            ping_due = last_ping_sent is None or now - last_ping_sent >= interval
            if interval <= 0 or (idle and ping_due):
                if not await safe_send_json(websocket, ping_payload):
                    break
                last_ping_sent = now
            continue
        except asyncio.CancelledError:  # pragma: no cover - cooperative cancellation
            raise
        except (RuntimeError, WebSocketDisconnect):
            break
        else:
            last_activity = time.monotonic()
            last_ping_sent = None
            yield message


async def _send_error(websocket: WebSocket, detail: str) -> None:
    await safe_send_json(websocket, {"type": "error", "detail": detail})


def _token_from(websocket: WebSocket) -> str | None:
    token = websocket.query_params.get("token")
    if not token:
        auth_header = websocket.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.removeprefix("Bearer ").strip()
    return token or None


async def _dispatch_chat_event(connection_id: str, payload: dict[str, Any]) -> None:
    payload_type = payload.get("type")

    if payload_type == "authenticate":
        event = AuthenticateEvent.model_validate(payload)
        await relay.authenticate(connection_id, event.user_id, event.token)
    elif payload_type == "joinChat":
        event = JoinChatEvent.model_validate(payload)
        await relay.join_chat(connection_id, event.chat_id, event.user_id)
    elif payload_type == "sendMessage":
        event = SendMessageEvent.model_validate(payload)
        await relay.send_message(
            connection_id,
            chat_id=event.chat_id,
            receiver_id=event.receiver_id,
            body=event.message,
            kind=event.message_type,
            sender_id=event.sender_id,
            correlation_id=event.correlation_id,
        )
    elif payload_type == "markAsRead":
        event = MarkAsReadEvent.model_validate(payload)
        await relay.mark_as_read(connection_id, event.chat_id, event.message_ids)
    elif payload_type == "typing":
        event = TypingEvent.model_validate(payload)
        await relay.typing(connection_id, event.chat_id, event.is_typing, event.user_id)
    else:
        raise RelayError("Unsupported payload type")


@router.websocket("/chat")
async def websocket_chat(websocket: WebSocket) -> None:
    """Relay chat events for one client connection.

    The connection is anonymous until an ``authenticate`` event binds it to a
    user; every other event requires that binding.
    """

    await websocket.accept()
    connection_id = await registry.connect(websocket)
    try:
        async for raw_message in iter_keepalive_messages(
            websocket,
            websocket.receive_text,
            timeout_seconds=settings.websocket_keepalive_timeout_seconds,
            ping_interval_seconds=settings.websocket_keepalive_ping_interval_seconds,
        ):
            try:
                payload = json.loads(raw_message)
            except json.JSONDecodeError:
                await _send_error(websocket, "Invalid message format")
                continue

            if not isinstance(payload, dict):
                await _send_error(websocket, "Message payload must be a JSON object")
                continue

            payload_type = payload.get("type")
            if payload_type == "ping":
                await safe_send_json(websocket, {"type": "pong"})
                continue
            if payload_type == "pong":
                continue

            try:
                await _dispatch_chat_event(connection_id, payload)
            except PayloadValidationError:
                await _send_error(websocket, f"Invalid {payload_type} payload")
            except RelayError as exc:
                await _send_error(websocket, exc.detail)
            except Exception:
                logger.exception("Unhandled error while processing %s", payload_type)
                await _send_error(websocket, "Internal error")
    finally:
        await relay.disconnect(connection_id)


@router.websocket("/notifications")
async def websocket_notifications(websocket: WebSocket) -> None:
    """Stream notification feed snapshots for the authenticated user."""

    token = _token_from(websocket)
    try:
        user_id = verify_token_subject(token or "")
    except AuthenticationError as exc:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.detail)
        return

    await websocket.accept()
    await live_query_hub.connect(user_id, websocket)
    try:
        await safe_send_json(websocket, live_query_hub.snapshot(user_id))
        async for raw_message in iter_keepalive_messages(
            websocket,
            websocket.receive_text,
            timeout_seconds=settings.websocket_keepalive_timeout_seconds,
            ping_interval_seconds=settings.websocket_keepalive_ping_interval_seconds,
        ):
            try:
                payload = json.loads(raw_message)
            except json.JSONDecodeError:
                await _send_error(websocket, "Invalid payload")
                continue

            if isinstance(payload, dict) and payload.get("type") == "ping":
                await safe_send_json(websocket, {"type": "pong"})
                continue
            if isinstance(payload, dict) and payload.get("type") == "refresh":
                try:
                    await safe_send_json(websocket, live_query_hub.snapshot(user_id))
                except SQLAlchemyError:
                    logger.exception("Failed to refresh notification feed for %s", user_id)
                    await _send_error(websocket, "Feed temporarily unavailable")
    finally:
        await live_query_hub.disconnect(user_id, websocket)
