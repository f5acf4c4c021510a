from __future__ import annotations

import pytest
from sqlalchemy import func, select

from app.models import ChatMessage, Conversation, Notification
from connectrix.realtime.errors import AuthenticationError, AuthorizationError
from connectrix.realtime.relay import SendState


def _count(session_factory, model) -> int:
    with session_factory() as session:
        return int(session.execute(select(func.count()).select_from(model)).scalar_one())


@pytest.mark.anyio("asyncio")
async def test_first_message_creates_conversation_and_fans_out(
    relay_stack, connect_user, make_user, session_factory
):
    make_user("alice")
    make_user("bob")
    alice, alice_ws = await connect_user("alice")
    bob, bob_ws = await connect_user("bob")

    outcome = await relay_stack.send_message(
        alice, chat_id=None, receiver_id="bob", body="hello bob", correlation_id="c-1"
    )

    assert outcome.state is SendState.ACKNOWLEDGED
    assert outcome.conversation_id == "alice_bob"
    assert _count(session_factory, Conversation) == 1
    assert _count(session_factory, ChatMessage) == 1

    [ack] = alice_ws.events("messageSent")
    assert ack["correlationId"] == "c-1"
    assert ack["chatId"] == "alice_bob"
    assert ack["messageId"] == outcome.message_id

    [echo] = alice_ws.events("newMessage")
    assert echo["senderId"] == "alice"
    assert echo["message"] == "hello bob"
    assert echo["messageType"] == "text"
    assert echo["read"] is False

    [received] = bob_ws.events("messageReceived")
    assert received == {
        "type": "messageReceived",
        "chatId": "alice_bob",
        "unreadCount": 1,
        "messageId": outcome.message_id,
    }
    assert relay_stack.changes == [["alice", "bob"]]


@pytest.mark.anyio("asyncio")
async def test_message_notification_is_written_with_the_message(
    relay_stack, connect_user, make_user, session_factory
):
    make_user("alice", first_name="Alice", last_name="Smith")
    make_user("bob")
    alice, _ = await connect_user("alice")

    await relay_stack.send_message(alice, chat_id=None, receiver_id="bob", body="ping")

    with session_factory() as session:
        [notification] = session.execute(select(Notification)).scalars().all()
    assert notification.recipient_id == "bob"
    assert notification.type == "message"
    assert notification.sender_name == "Alice Smith"
    assert notification.payload["chatId"] == "alice_bob"


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize("body", ["", "   ", None])
async def test_empty_body_is_rejected_without_side_effects(
    relay_stack, connect_user, make_user, session_factory, body
):
    make_user("alice")
    make_user("bob")
    alice, alice_ws = await connect_user("alice")

    outcome = await relay_stack.send_message(alice, chat_id=None, receiver_id="bob", body=body)

    assert outcome.state is SendState.FAILED
    [error] = alice_ws.events("messageError")
    assert error["error"] == "Message body is required"
    assert error["correlationId"] == outcome.correlation_id
    assert _count(session_factory, Conversation) == 0
    assert _count(session_factory, ChatMessage) == 0
    assert relay_stack.changes == []


@pytest.mark.anyio("asyncio")
async def test_message_over_length_limit_is_rejected(relay_stack, connect_user, make_user, session_factory):
    make_user("alice")
    make_user("bob")
    alice, alice_ws = await connect_user("alice")

    await relay_stack.send_message(alice, chat_id=None, receiver_id="bob", body="x" * 201)

    assert alice_ws.events("messageError")[0]["error"] == "Message is too long"
    assert _count(session_factory, ChatMessage) == 0


@pytest.mark.anyio("asyncio")
async def test_forged_sender_is_rejected(relay_stack, connect_user, make_user, session_factory):
    make_user("alice")
    make_user("bob")
    make_user("mallory")
    mallory, mallory_ws = await connect_user("mallory")

    outcome = await relay_stack.send_message(
        mallory, chat_id=None, sender_id="alice", receiver_id="bob", body="it's alice"
    )

    assert outcome.state is SendState.FAILED
    assert mallory_ws.events("messageError")
    assert mallory_ws.events("messageSent") == []
    assert _count(session_factory, ChatMessage) == 0


@pytest.mark.anyio("asyncio")
async def test_unauthenticated_connection_cannot_send(relay_stack, open_connection, make_user, session_factory):
    make_user("bob")
    connection_id, websocket = await open_connection()

    outcome = await relay_stack.send_message(
        connection_id, chat_id=None, receiver_id="bob", body="hi"
    )

    assert outcome.state is SendState.FAILED
    assert websocket.events("messageError")[0]["error"] == "Not authenticated"
    assert _count(session_factory, ChatMessage) == 0


@pytest.mark.anyio("asyncio")
async def test_invalid_token_reports_failed_authentication(relay_stack, open_connection, make_user):
    make_user("alice")
    connection_id, websocket = await open_connection()

    assert not await relay_stack.authenticate(connection_id, "alice", "not-a-jwt")
    assert websocket.sent == [{"type": "authenticated", "success": False, "error": "Invalid token"}]
    assert relay_stack.registry.lookup("alice") is None


@pytest.mark.anyio("asyncio")
async def test_summary_tracks_latest_of_many_sends(
    relay_stack, connect_user, make_user, session_factory
):
    make_user("alice")
    make_user("bob")
    alice, _ = await connect_user("alice")
    bob, _ = await connect_user("bob")

    last = None
    for index in range(5):
        sender, receiver = (alice, "bob") if index % 2 == 0 else (bob, "alice")
        last = await relay_stack.send_message(
            sender, chat_id="alice_bob", receiver_id=receiver, body=f"message {index}"
        )

    with session_factory() as session:
        conversation = session.get(Conversation, "alice_bob")
        assert conversation.last_message_id == last.message_id
        assert conversation.last_message_text == "message 4"
        assert conversation.last_message_sender_id == "alice"
        assert conversation.last_message_read is False
    assert _count(session_factory, Conversation) == 1
    assert _count(session_factory, ChatMessage) == 5


@pytest.mark.anyio("asyncio")
async def test_existing_pair_reuses_canonical_conversation(
    relay_stack, connect_user, make_user, session_factory
):
    make_user("alice")
    make_user("bob")
    alice, _ = await connect_user("alice")
    bob, _ = await connect_user("bob")

    first = await relay_stack.send_message(alice, chat_id=None, receiver_id="bob", body="one")
    second = await relay_stack.send_message(bob, chat_id="client-made-id", receiver_id="alice", body="two")

    assert first.conversation_id == second.conversation_id == "alice_bob"
    assert _count(session_factory, Conversation) == 1


@pytest.mark.anyio("asyncio")
async def test_outsider_cannot_post_into_foreign_conversation(
    relay_stack, connect_user, make_user, session_factory
):
    for user_id in ("alice", "bob", "carol"):
        make_user(user_id)
    alice, _ = await connect_user("alice")
    carol, carol_ws = await connect_user("carol")
    await relay_stack.send_message(alice, chat_id=None, receiver_id="bob", body="private")

    outcome = await relay_stack.send_message(carol, chat_id="alice_bob", receiver_id="bob", body="intrude")

    assert outcome.state is SendState.FAILED
    assert carol_ws.events("messageError")
    assert _count(session_factory, ChatMessage) == 1


@pytest.mark.anyio("asyncio")
async def test_mark_as_read_is_idempotent_and_broadcasts(
    relay_stack, connect_user, make_user, session_factory
):
    make_user("alice")
    make_user("bob")
    alice, alice_ws = await connect_user("alice")
    bob, _ = await connect_user("bob")
    sent = await relay_stack.send_message(alice, chat_id=None, receiver_id="bob", body="read me")
    await relay_stack.join_chat(bob, "alice_bob")

    first = await relay_stack.mark_as_read(bob, "alice_bob", [sent.message_id])
    second = await relay_stack.mark_as_read(bob, "alice_bob", [sent.message_id])

    assert first == [sent.message_id]
    assert second == []
    read_events = alice_ws.events("messagesRead")
    assert read_events == [
        {
            "type": "messagesRead",
            "chatId": "alice_bob",
            "messageIds": [sent.message_id],
            "readerId": "bob",
        }
    ]
    with session_factory() as session:
        assert session.get(ChatMessage, sent.message_id).read is True
        assert session.get(Conversation, "alice_bob").last_message_read is True


@pytest.mark.anyio("asyncio")
async def test_sender_cannot_mark_own_message_read(relay_stack, connect_user, make_user, session_factory):
    make_user("alice")
    make_user("bob")
    alice, _ = await connect_user("alice")
    sent = await relay_stack.send_message(alice, chat_id=None, receiver_id="bob", body="mine")

    assert await relay_stack.mark_as_read(alice, "alice_bob", [sent.message_id]) == []
    with session_factory() as session:
        assert session.get(ChatMessage, sent.message_id).read is False


@pytest.mark.anyio("asyncio")
async def test_join_chat_rejects_non_participant(relay_stack, connect_user, make_user):
    for user_id in ("alice", "bob", "carol"):
        make_user(user_id)
    alice, _ = await connect_user("alice")
    carol, _ = await connect_user("carol")
    await relay_stack.send_message(alice, chat_id=None, receiver_id="bob", body="hey")

    with pytest.raises(AuthorizationError):
        await relay_stack.join_chat(carol, "alice_bob")
    with pytest.raises(AuthorizationError):
        await relay_stack.join_chat(alice, "alice_bob", user_id="bob")


@pytest.mark.anyio("asyncio")
async def test_typing_requires_room_membership_and_excludes_sender(
    relay_stack, connect_user, make_user
):
    make_user("alice")
    make_user("bob")
    alice, alice_ws = await connect_user("alice")
    bob, bob_ws = await connect_user("bob")

    with pytest.raises(AuthorizationError):
        await relay_stack.typing(alice, "alice_bob", True)

    await relay_stack.join_chat(alice, "alice_bob")
    await relay_stack.join_chat(bob, "alice_bob")
    await relay_stack.typing(alice, "alice_bob", True)

    assert alice_ws.events("userTyping") == []
    assert bob_ws.events("userTyping") == [
        {"type": "userTyping", "chatId": "alice_bob", "userId": "alice", "isTyping": True}
    ]


@pytest.mark.anyio("asyncio")
async def test_mark_as_read_requires_session(relay_stack, open_connection):
    connection_id, _ = await open_connection()

    with pytest.raises(AuthenticationError):
        await relay_stack.mark_as_read(connection_id, "alice_bob", [1])


@pytest.mark.anyio("asyncio")
async def test_disconnect_leaves_rooms_and_marks_offline(
    relay_stack, connect_user, make_user, session_factory
):
    from app.models import User

    make_user("alice")
    alice, _ = await connect_user("alice")
    await relay_stack.join_chat(alice, "alice_bob")

    await relay_stack.disconnect(alice)

    assert relay_stack.router.rooms_of(alice) == set()
    assert relay_stack.registry.lookup("alice") is None
    with session_factory() as session:
        user = session.get(User, "alice")
        assert user.online is False
        assert user.last_seen is not None


@pytest.mark.anyio("asyncio")
async def test_client_chat_id_cannot_claim_another_pairs_conversation(
    relay_stack, connect_user, make_user, session_factory
):
    for user_id in ("alice", "bob", "carol", "mallory"):
        make_user(user_id)
    mallory, _ = await connect_user("mallory")
    alice, _ = await connect_user("alice")

    squatted = await relay_stack.send_message(
        mallory, chat_id="alice_carol", receiver_id="bob", body="taken"
    )
    by_pair = await relay_stack.send_message(alice, chat_id=None, receiver_id="carol", body="hi")
    by_id = await relay_stack.send_message(alice, chat_id="alice_carol", receiver_id="carol", body="again")

    assert squatted.conversation_id == "bob_mallory"
    assert by_pair.state is SendState.ACKNOWLEDGED
    assert by_id.state is SendState.ACKNOWLEDGED
    assert by_pair.conversation_id == by_id.conversation_id == "alice_carol"
    with session_factory() as session:
        assert session.get(Conversation, "alice_carol").participant_ids == ["alice", "carol"]


@pytest.mark.anyio("asyncio")
async def test_separator_in_user_ids_keeps_pairs_apart(
    relay_stack, connect_user, make_user, session_factory
):
    for user_id in ("a", "a_b", "b_c", "c"):
        make_user(user_id)
    ab, _ = await connect_user("a_b")
    a, _ = await connect_user("a")

    first = await relay_stack.send_message(ab, chat_id=None, receiver_id="c", body="one")
    second = await relay_stack.send_message(a, chat_id=None, receiver_id="b_c", body="two")
    hijack = await relay_stack.send_message(a, chat_id=first.conversation_id, receiver_id="b_c", body="three")

    assert first.conversation_id != second.conversation_id
    assert hijack.state is SendState.FAILED
    with session_factory() as session:
        owners = {
            message.body: session.get(Conversation, message.conversation_id).participant_ids
            for message in session.execute(select(ChatMessage)).scalars()
        }
    assert owners == {"one": ["a_b", "c"], "two": ["a", "b_c"]}


@pytest.mark.anyio("asyncio")
async def test_third_party_cannot_join_pair_room_before_first_message(
    relay_stack, connect_user, make_user
):
    for user_id in ("alice", "bob", "mallory"):
        make_user(user_id)
    alice, _ = await connect_user("alice")
    mallory, mallory_ws = await connect_user("mallory")

    with pytest.raises(AuthorizationError):
        await relay_stack.join_chat(mallory, "alice_bob")
    with pytest.raises(AuthorizationError):
        await relay_stack.join_chat(mallory, "made-up-room")
    await relay_stack.join_chat(alice, "alice_bob")

    await relay_stack.send_message(alice, chat_id="alice_bob", receiver_id="bob", body="secret")

    assert mallory_ws.events("newMessage") == []


@pytest.mark.anyio("asyncio")
async def test_messages_read_lists_only_flipped_ids(relay_stack, connect_user, make_user):
    make_user("alice")
    make_user("bob")
    alice, alice_ws = await connect_user("alice")
    bob, _ = await connect_user("bob")
    to_bob = await relay_stack.send_message(alice, chat_id=None, receiver_id="bob", body="for bob")
    from_bob = await relay_stack.send_message(bob, chat_id="alice_bob", receiver_id="alice", body="from bob")

    updated = await relay_stack.mark_as_read(bob, "alice_bob", [to_bob.message_id, from_bob.message_id])

    assert updated == [to_bob.message_id]
    [event] = alice_ws.events("messagesRead")
    assert event["messageIds"] == [to_bob.message_id]
