"""Message relay: accepts chat events, persists them, then fans them out."""

from __future__ import annotations

import logging
import uuid
from contextlib import AbstractContextManager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import ChatMessage, MessageKind, split_pair_key
from app.monitoring.metrics import realtime_events_total, relay_messages_total
from app.services.conversations import as_utc, get_conversation, record_message

from .errors import (
    AuthenticationError,
    AuthorizationError,
    PersistenceError,
    RelayError,
    ValidationError,
)
from .presence import PresenceTracker
from .registry import ConnectionRegistry, Session as RelaySession
from .rooms import RoomRouter, chat_room, user_room


logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractContextManager[Session]]
ChangeListener = Callable[[Iterable[str]], Awaitable[None]]


class SendState(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    PERSISTED = "persisted"
    FANNED_OUT = "fanned_out"
    ACKNOWLEDGED = "acknowledged"
    FAILED = "failed"


@dataclass(slots=True)
class SendOutcome:
    correlation_id: str
    state: SendState = SendState.RECEIVED
    conversation_id: str | None = None
    message_id: int | None = None
    error: str | None = None


def serialize_message(message: ChatMessage) -> dict[str, Any]:
    sent_at = as_utc(message.sent_at)
    return {
        "id": message.id,
        "chatId": message.conversation_id,
        "senderId": message.sender_id,
        "receiverId": message.receiver_id,
        "message": message.body,
        "messageType": message.kind,
        "timestamp": sent_at.isoformat() if sent_at else None,
        "read": message.read,
        "correlationId": message.correlation_id,
    }


class MessageRelay:
    """Handles the chat events of one relay process.

    Every event is bound to the identity of the connection's session; payload
    identity fields that disagree with it are rejected. Store writes always
    complete before any event leaves the process, and every committed change
    is reported to ``on_change`` so the notification feed can re-query.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        router: RoomRouter,
        presence: PresenceTracker,
        *,
        session_scope: SessionScope,
        max_message_length: int = 2000,
        on_change: ChangeListener | None = None,
    ) -> None:
        self.registry = registry
        self.router = router
        self.presence = presence
        self.session_scope = session_scope
        self.max_message_length = max_message_length
        self.on_change = on_change

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    async def authenticate(self, connection_id: str, user_id: str, token: str) -> bool:
        try:
            session = await self.registry.register(connection_id, user_id, token)
            await self.router.join(connection_id, user_room(session.user_id))
        except AuthenticationError as exc:
            logger.info("Rejected websocket authentication: %s", exc.detail)
            await self.router.send(
                connection_id, "authenticated", {"success": False, "error": "Invalid token"}
            )
            return False
        except Exception:
            logger.exception("Websocket authentication failed")
            await self.router.send(
                connection_id, "authenticated", {"success": False, "error": "Authentication failed"}
            )
            return False

        await self.presence.session_started(session.user_id)
        await self.router.send(connection_id, "authenticated", {"success": True, "userId": session.user_id})
        realtime_events_total.labels("chat", "in", "authenticate").inc()
        return True

    async def disconnect(self, connection_id: str) -> None:
        session, remaining = await self.registry.unregister(connection_id)
        await self.router.leave_all(connection_id)
        if session is not None:
            await self.presence.session_ended(session.user_id, remaining)

    def _session(self, connection_id: str, claimed_user_id: str | None = None) -> RelaySession:
        session = self.registry.session_for(connection_id)
        if session is None:
            raise AuthenticationError("Not authenticated")
        if claimed_user_id is not None and claimed_user_id != session.user_id:
            raise AuthorizationError("User does not match the authenticated session")
        return session

    async def _notify_change(self, user_ids: Iterable[str]) -> None:
        if self.on_change is None:
            return
        try:
            await self.on_change(list(user_ids))
        except Exception:
            logger.exception("Failed to refresh live notification feeds")

    # ------------------------------------------------------------------
    # Chat events
    # ------------------------------------------------------------------
    async def join_chat(self, connection_id: str, chat_id: str, user_id: str | None = None) -> None:
        session = self._session(connection_id, user_id)
        if not chat_id:
            raise ValidationError("chatId is required")
        try:
            with self.session_scope() as db:
                conversation = get_conversation(db, chat_id)
                if conversation is not None:
                    allowed = conversation.has_user(session.user_id)
                else:
                    # Not created yet: only the pair the id is derived from may wait in the room.
                    allowed = session.user_id in (split_pair_key(chat_id) or ())
                if not allowed:
                    raise AuthorizationError("Not a participant of this conversation")
        except SQLAlchemyError as exc:
            raise PersistenceError("Failed to load conversation") from exc
        await self.router.join(connection_id, chat_room(chat_id))
        realtime_events_total.labels("chat", "in", "joinChat").inc()

    async def send_message(
        self,
        connection_id: str,
        *,
        chat_id: str | None,
        receiver_id: str | None,
        body: str | None,
        kind: str | None = None,
        sender_id: str | None = None,
        correlation_id: str | None = None,
    ) -> SendOutcome:
        outcome = SendOutcome(correlation_id=correlation_id or uuid.uuid4().hex)
        try:
            session = self._session(connection_id, sender_id)
            text = body if isinstance(body, str) else ""
            if not text.strip():
                raise ValidationError("Message body is required")
            if len(text) > self.max_message_length:
                raise ValidationError("Message is too long")
            if not receiver_id or receiver_id == session.user_id:
                raise ValidationError("A different receiver is required")
            outcome.state = SendState.VALIDATED

            try:
                with self.session_scope() as db:
                    recorded = record_message(
                        db,
                        conversation_id=chat_id,
                        sender_id=session.user_id,
                        receiver_id=receiver_id,
                        body=text,
                        kind=kind or MessageKind.TEXT.value,
                        correlation_id=outcome.correlation_id,
                    )
                    message_payload = serialize_message(recorded.message)
                    unread = recorded.receiver_unread_count
                    conversation_id = recorded.conversation_id
            except SQLAlchemyError as exc:
                raise PersistenceError() from exc
        except RelayError as exc:
            return await self._fail(connection_id, chat_id, outcome, exc.detail, exc)
        except Exception as exc:
            logger.exception("Unexpected error while sending message")
            return await self._fail(connection_id, chat_id, outcome, "Failed to send message", exc)

        outcome.state = SendState.PERSISTED
        outcome.conversation_id = conversation_id
        outcome.message_id = message_payload["id"]

        try:
            await self.router.join(connection_id, chat_room(conversation_id))
            await self.router.broadcast(chat_room(conversation_id), "newMessage", message_payload)
            await self.router.broadcast(
                user_room(receiver_id),
                "messageReceived",
                {"chatId": conversation_id, "unreadCount": unread, "messageId": message_payload["id"]},
            )
            outcome.state = SendState.FANNED_OUT
        except Exception:
            logger.exception("Message %s persisted but fan-out failed", message_payload["id"])

        await self.router.send(
            connection_id,
            "messageSent",
            {
                "chatId": conversation_id,
                "messageId": message_payload["id"],
                "correlationId": outcome.correlation_id,
                "timestamp": message_payload["timestamp"],
            },
        )
        outcome.state = SendState.ACKNOWLEDGED
        relay_messages_total.labels("acknowledged").inc()
        realtime_events_total.labels("chat", "in", "sendMessage").inc()
        await self._notify_change([message_payload["senderId"], receiver_id])
        return outcome

    async def _fail(
        self,
        connection_id: str,
        chat_id: str | None,
        outcome: SendOutcome,
        detail: str,
        exc: BaseException,
    ) -> SendOutcome:
        outcome.state = SendState.FAILED
        outcome.error = detail
        reason = "rejected" if isinstance(exc, (ValidationError, AuthorizationError, AuthenticationError)) else "failed"
        relay_messages_total.labels(reason).inc()
        if reason == "failed":
            logger.warning("Message persistence failed: %s", exc)
        await self.router.send(
            connection_id,
            "messageError",
            {"error": detail, "chatId": chat_id, "correlationId": outcome.correlation_id},
        )
        return outcome

    async def mark_as_read(self, connection_id: str, chat_id: str, message_ids: Sequence[int]) -> list[int]:
        session = self._session(connection_id)
        if not chat_id:
            raise ValidationError("chatId is required")
        try:
            result = await self.presence.mark_messages_read(chat_id, session.user_id, message_ids)
        except PersistenceError:
            logger.exception("Dropping read-state update for %s", chat_id)
            return []
        if result.updated_ids:
            await self.router.broadcast(
                chat_room(chat_id),
                "messagesRead",
                {"chatId": chat_id, "messageIds": result.updated_ids, "readerId": session.user_id},
                exclude=connection_id,
            )
        realtime_events_total.labels("chat", "in", "markAsRead").inc()
        await self._notify_change(result.participant_ids)
        return result.updated_ids

    async def typing(
        self, connection_id: str, chat_id: str, is_typing: bool, user_id: str | None = None
    ) -> None:
        session = self._session(connection_id, user_id)
        room = chat_room(chat_id)
        if room not in self.router.rooms_of(connection_id):
            raise AuthorizationError("Join the conversation before sending typing updates")
        await self.router.broadcast(
            room,
            "userTyping",
            {"chatId": chat_id, "userId": session.user_id, "isTyping": bool(is_typing)},
            exclude=connection_id,
        )
