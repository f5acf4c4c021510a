"""Conversation listing, message history and read endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.api.deps import ensure_participant_or_admin, ensure_self_or_admin, get_current_user, http_error
from app.config import get_settings
from app.database import get_db
from app.models import Conversation, User
from app.schemas import ChatParticipant, ChatSummary, LastMessage, MessageRead, ReadReceipt
from app.services import live_query_hub
from app.services.conversations import (
    as_utc,
    get_conversation,
    load_recent_messages,
    load_user_conversations,
    mark_conversation_read,
    unread_count,
)
from connectrix.realtime.errors import RelayError
from connectrix.realtime.managers import get_room_router
from connectrix.realtime.rooms import chat_room

router = APIRouter(tags=["chats"])

settings = get_settings()


def serialize_conversation(conversation: Conversation, viewer_id: str, other: User, db: Session) -> ChatSummary:
    last_message = None
    if conversation.last_message_id is not None:
        last_message = LastMessage(
            text=conversation.last_message_text,
            sender_id=conversation.last_message_sender_id,
            timestamp=as_utc(conversation.last_message_at),
            type=conversation.last_message_type,
        )
    return ChatSummary(
        id=conversation.id,
        other_user=ChatParticipant(
            id=other.id,
            first_name=other.first_name or "Unknown",
            last_name=other.last_name or "User",
            avatar=other.initials,
            profile_picture=other.profile_picture,
            online=other.online,
        ),
        last_message=last_message,
        last_message_read=conversation.last_message_read,
        unread_count=unread_count(db, conversation.id, viewer_id),
        timestamp=as_utc(conversation.last_message_at or conversation.updated_at),
    )


@router.get("/chats/{user_id}", response_model=list[ChatSummary])
async def list_user_chats(
    user_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[ChatSummary]:
    """Return the user's conversations, newest activity first."""

    ensure_self_or_admin(user_id, current_user)
    summaries: list[ChatSummary] = []
    for conversation in load_user_conversations(db, user_id):
        other = db.get(User, conversation.other_participant(user_id))
        if other is None:
            continue
        summaries.append(serialize_conversation(conversation, user_id, other, db))
    return summaries


@router.get("/messages/{chat_id}", response_model=list[MessageRead])
async def list_chat_messages(
    chat_id: str,
    limit: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[MessageRead]:
    """Return the latest messages of a conversation in chronological order."""

    conversation = get_conversation(db, chat_id)
    if conversation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")
    ensure_participant_or_admin(conversation, current_user)

    resolved_limit = min(limit or settings.chat_history_default_limit, settings.chat_history_max_limit)
    return [
        MessageRead(
            id=message.id,
            chat_id=message.conversation_id,
            sender_id=message.sender_id,
            receiver_id=message.receiver_id,
            message=message.body,
            type=message.kind,
            timestamp=as_utc(message.sent_at),
            read=message.read,
            correlation_id=message.correlation_id,
        )
        for message in load_recent_messages(db, chat_id, resolved_limit)
    ]


@router.post("/chats/{chat_id}/read", response_model=ReadReceipt)
async def mark_chat_read(
    chat_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ReadReceipt:
    """Mark the conversation and every message addressed to the caller as read."""

    try:
        result = mark_conversation_read(db, chat_id, current_user.id)
    except RelayError as exc:
        raise http_error(exc) from exc

    if result.updated_ids:
        await get_room_router().broadcast(
            chat_room(chat_id),
            "messagesRead",
            {"chatId": chat_id, "messageIds": result.updated_ids, "readerId": current_user.id},
        )
    await live_query_hub.invalidate(result.participant_ids)
    return ReadReceipt(
        chat_id=chat_id,
        message_ids=result.updated_ids,
        last_message_read=result.conversation_read,
    )
