"""Conversation and message persistence used by the relay and the HTTP API."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models import ChatMessage, Conversation, NotificationType, User, pair_key
from app.services.notifications import build_notification
from connectrix.realtime.errors import AuthorizationError, NotFoundError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on the way back; treat naive values as UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(slots=True)
class RecordedMessage:
    """Result of persisting one message together with its side effects."""

    conversation_id: str
    message: ChatMessage
    receiver_unread_count: int
    created_conversation: bool


@dataclass(slots=True)
class ReadResult:
    conversation_id: str
    participant_ids: list[str]
    updated_ids: list[int]
    conversation_read: bool


@dataclass(slots=True)
class SummaryDrift:
    """The conversation summary points at a message that is not the latest one."""

    conversation_id: str
    summary_message_id: int | None
    latest_message_id: int


def get_conversation(db: Session, conversation_id: str) -> Conversation | None:
    return db.get(Conversation, conversation_id)


def find_by_participants(db: Session, user_id: str, other_id: str) -> Conversation | None:
    stmt = select(Conversation).where(Conversation.pair_key == pair_key(user_id, other_id))
    return db.execute(stmt).scalar_one_or_none()


def ensure_conversation(
    db: Session,
    conversation_id: str | None,
    sender_id: str,
    receiver_id: str,
    *,
    now: datetime,
) -> tuple[Conversation, bool]:
    """Get the conversation for the pair, creating it with ``[sender, receiver]`` if absent.

    A client supplied *conversation_id* is only used for lookup. New rows are
    always keyed by the pair, so nobody can claim another pair's id.
    """

    conversation = None
    if conversation_id:
        conversation = db.get(Conversation, conversation_id)
    if conversation is None:
        conversation = find_by_participants(db, sender_id, receiver_id)
    if conversation is not None:
        if not (conversation.has_user(sender_id) and conversation.has_user(receiver_id)):
            raise AuthorizationError("Conversation does not belong to these participants")
        return conversation, False

    key = pair_key(sender_id, receiver_id)
    conversation = Conversation(
        id=key,
        initiator_id=sender_id,
        responder_id=receiver_id,
        pair_key=key,
        last_message_read=True,
        created_at=now,
        updated_at=now,
    )
    db.add(conversation)
    db.flush()
    return conversation, True


def apply_summary(conversation: Conversation, message: ChatMessage) -> bool:
    """Point the summary at *message* unless it already references a newer one."""

    current = as_utc(conversation.last_message_at)
    sent_at = as_utc(message.sent_at)
    if current is not None and sent_at is not None and sent_at < current:
        return False
    conversation.last_message_id = message.id
    conversation.last_message_text = message.body
    conversation.last_message_sender_id = message.sender_id
    conversation.last_message_type = message.kind
    conversation.last_message_at = message.sent_at
    conversation.last_message_read = False
    conversation.updated_at = message.sent_at
    return True


def _display_name(user: User | None) -> str | None:
    if user is None:
        return None
    name = " ".join(part for part in (user.first_name, user.last_name) if part)
    return name or user.email


def record_message(
    db: Session,
    *,
    conversation_id: str | None,
    sender_id: str,
    receiver_id: str,
    body: str,
    kind: str = "text",
    correlation_id: str | None = None,
    now: datetime | None = None,
) -> RecordedMessage:
    """Append a message, move the summary and notify the receiver in one transaction.

    A concurrent creator of the same pair loses on the unique pair key; the
    transaction is rolled back and retried once against the winner's row.
    """

    for attempt in range(2):
        sent_at = now or utcnow()
        try:
            conversation, created = ensure_conversation(
                db, conversation_id, sender_id, receiver_id, now=sent_at
            )
            message = ChatMessage(
                conversation_id=conversation.id,
                sender_id=sender_id,
                receiver_id=receiver_id,
                body=body,
                kind=kind,
                sent_at=sent_at,
                read=False,
                correlation_id=correlation_id,
            )
            db.add(message)
            db.flush()
            apply_summary(conversation, message)

            sender = db.get(User, sender_id)
            db.add(
                build_notification(
                    recipient_id=receiver_id,
                    type=NotificationType.MESSAGE.value,
                    sender_id=sender_id,
                    sender_name=_display_name(sender),
                    sender_role=sender.role.value if sender is not None else None,
                    title="New message",
                    message=body[:200],
                    data={"chatId": conversation.id, "messageId": message.id},
                    now=sent_at,
                )
            )
            db.commit()
        except IntegrityError:
            db.rollback()
            if attempt:
                raise
            continue
        except Exception:
            db.rollback()
            raise
        break

    return RecordedMessage(
        conversation_id=conversation.id,
        message=message,
        receiver_unread_count=unread_count(db, conversation.id, receiver_id),
        created_conversation=created,
    )


def unread_count(db: Session, conversation_id: str, user_id: str) -> int:
    stmt = select(func.count(ChatMessage.id)).where(
        ChatMessage.conversation_id == conversation_id,
        ChatMessage.receiver_id == user_id,
        ChatMessage.read.is_(False),
    )
    return int(db.execute(stmt).scalar_one())


def _require_participant(db: Session, conversation_id: str, user_id: str) -> Conversation:
    conversation = db.get(Conversation, conversation_id)
    if conversation is None:
        raise NotFoundError("Conversation not found")
    if not conversation.has_user(user_id):
        raise AuthorizationError("Not a participant of this conversation")
    return conversation


def _reconcile_conversation_flag(db: Session, conversation: Conversation, reader_id: str) -> bool:
    if conversation.last_message_sender_id in (None, reader_id):
        return conversation.last_message_read
    if unread_count(db, conversation.id, reader_id) == 0:
        conversation.last_message_read = True
    return conversation.last_message_read


def mark_messages_read(
    db: Session, conversation_id: str, reader_id: str, message_ids: Sequence[int]
) -> ReadResult:
    """Flip ``read`` on messages addressed to *reader_id*; repeated calls are no-ops."""

    conversation = _require_participant(db, conversation_id, reader_id)
    ids = sorted({int(message_id) for message_id in message_ids})
    updated: list[int] = []
    if ids:
        updated = list(
            db.execute(
                select(ChatMessage.id).where(
                    ChatMessage.conversation_id == conversation_id,
                    ChatMessage.receiver_id == reader_id,
                    ChatMessage.read.is_(False),
                    ChatMessage.id.in_(ids),
                )
            ).scalars()
        )
        if updated:
            db.execute(
                update(ChatMessage)
                .where(ChatMessage.id.in_(updated))
                .values(read=True)
                .execution_options(synchronize_session=False)
            )
    conversation_read = _reconcile_conversation_flag(db, conversation, reader_id)
    db.commit()
    return ReadResult(
        conversation_id=conversation.id,
        participant_ids=conversation.participant_ids,
        updated_ids=updated,
        conversation_read=conversation_read,
    )


def mark_conversation_read(db: Session, conversation_id: str, reader_id: str) -> ReadResult:
    """Open-the-chat read: clears the conversation flag and every unread message for the reader."""

    conversation = _require_participant(db, conversation_id, reader_id)
    updated = list(
        db.execute(
            select(ChatMessage.id).where(
                ChatMessage.conversation_id == conversation_id,
                ChatMessage.receiver_id == reader_id,
                ChatMessage.read.is_(False),
            )
        ).scalars()
    )
    if updated:
        db.execute(
            update(ChatMessage)
            .where(ChatMessage.id.in_(updated))
            .values(read=True)
            .execution_options(synchronize_session=False)
        )
    if conversation.last_message_sender_id not in (None, reader_id):
        conversation.last_message_read = True
    db.commit()
    return ReadResult(
        conversation_id=conversation.id,
        participant_ids=conversation.participant_ids,
        updated_ids=updated,
        conversation_read=conversation.last_message_read,
    )


def load_user_conversations(db: Session, user_id: str) -> list[Conversation]:
    stmt = (
        select(Conversation)
        .where(or_(Conversation.initiator_id == user_id, Conversation.responder_id == user_id))
        .order_by(func.coalesce(Conversation.last_message_at, Conversation.updated_at).desc())
    )
    return list(db.execute(stmt).scalars())


def load_recent_messages(db: Session, conversation_id: str, limit: int) -> list[ChatMessage]:
    """Return the newest *limit* messages in chronological order."""

    stmt = (
        select(ChatMessage)
        .where(ChatMessage.conversation_id == conversation_id)
        .order_by(ChatMessage.sent_at.desc(), ChatMessage.id.desc())
        .limit(limit)
    )
    messages = list(db.execute(stmt).scalars())
    messages.reverse()
    return messages


def latest_message(db: Session, conversation_id: str) -> ChatMessage | None:
    stmt = (
        select(ChatMessage)
        .where(ChatMessage.conversation_id == conversation_id)
        .order_by(ChatMessage.sent_at.desc(), ChatMessage.id.desc())
        .limit(1)
    )
    return db.execute(stmt).scalar_one_or_none()


def find_summary_drift(
    db: Session, conversation_ids: Iterable[str] | None = None
) -> list[SummaryDrift]:
    """Report conversations whose summary does not reference their latest message."""

    stmt = select(Conversation)
    if conversation_ids is not None:
        stmt = stmt.where(Conversation.id.in_(list(conversation_ids)))
    drift: list[SummaryDrift] = []
    for conversation in db.execute(stmt).scalars():
        latest = latest_message(db, conversation.id)
        if latest is None or latest.id == conversation.last_message_id:
            continue
        drift.append(
            SummaryDrift(
                conversation_id=conversation.id,
                summary_message_id=conversation.last_message_id,
                latest_message_id=latest.id,
            )
        )
    return drift


def repair_summary(db: Session, conversation_id: str) -> bool:
    """Rebuild the summary from the latest stored message."""

    conversation = db.get(Conversation, conversation_id)
    if conversation is None:
        raise NotFoundError("Conversation not found")
    latest = latest_message(db, conversation_id)
    if latest is None or latest.id == conversation.last_message_id:
        return False
    conversation.last_message_at = None
    apply_summary(conversation, latest)
    conversation.last_message_read = latest.read
    db.commit()
    return True
