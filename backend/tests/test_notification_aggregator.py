from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from connectrix.notifications import (
    ConversationView,
    NavigationAction,
    NotificationAggregator,
    NotificationPreferences,
    NotificationView,
    count_unread_notifications,
    format_badge,
    route_notification,
    should_show_popup,
)


NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


def _notification(id_, type_="like", *, read=False, minutes=0, **kwargs) -> NotificationView:
    return NotificationView(
        id=id_, type=type_, read=read, created_at=NOW + timedelta(minutes=minutes), **kwargs
    )


def test_unread_count_excludes_message_notifications():
    items = [
        _notification(1, "like"),
        _notification(2, "message"),
        _notification(3, "comment", read=True),
        _notification(4, "event_reminder"),
    ]

    assert count_unread_notifications(items) == 2


def test_unread_message_count_uses_conversation_summaries():
    aggregator = NotificationAggregator("alice")

    count = aggregator.apply_conversations(
        [
            ConversationView("c1", ["alice", "bob"], last_message_sender_id="bob", last_message_read=False),
            ConversationView("c2", ["alice", "carol"], last_message_sender_id="alice", last_message_read=False),
            ConversationView("c3", ["alice", "dan"], last_message_sender_id="dan", last_message_read=True),
            ConversationView("c4", ["bob", "carol"], last_message_sender_id="bob", last_message_read=False),
            ConversationView("c5", ["alice", "erin"]),
        ]
    )

    assert count == 1
    assert aggregator.message_badge == "1"


@pytest.mark.parametrize(
    ("count", "expected"),
    [(0, None), (-3, None), (1, "1"), (99, "99"), (100, "99+"), (2500, "99+")],
)
def test_format_badge(count, expected):
    assert format_badge(count) == expected


def test_window_keeps_newest_notifications():
    aggregator = NotificationAggregator("alice", window=3)

    aggregator.apply_notifications(_notification(index, minutes=index) for index in range(5))

    assert [item.id for item in aggregator.notifications] == [4, 3, 2]
    assert aggregator.snapshot() == {
        "unreadCount": 3,
        "unreadMessageCount": 0,
        "badge": "3",
        "messageBadge": None,
    }


def test_first_snapshot_seeds_popups_and_later_ones_report_new_items():
    aggregator = NotificationAggregator("alice")

    assert aggregator.apply_notifications([_notification(1)]) == []

    fresh = aggregator.apply_notifications(
        [
            _notification(1),
            _notification(2, "comment", minutes=1),
            _notification(3, "message", minutes=2),
        ]
    )

    assert [item.id for item in fresh] == [2]


def test_popup_respects_preferences():
    preferences = NotificationPreferences.from_mapping(
        {"pushNotifications": True, "mentorshipRequests": False, "likesAndComments": False}
    )

    assert not should_show_popup(_notification(1, "like"), preferences)
    assert not should_show_popup(_notification(2, "mentorship_request"), preferences)
    assert should_show_popup(_notification(3, "new_event"), preferences)
    assert not should_show_popup(_notification(4, "message"), NotificationPreferences())
    assert not should_show_popup(
        _notification(5, "new_event"), NotificationPreferences(push_notifications=False)
    )


@pytest.mark.parametrize(
    ("type_", "kwargs", "path"),
    [
        ("mentorship_accepted", {"sender_id": "u9"}, "/profile/u9"),
        ("mentorship_declined", {}, "/browse-mentor"),
        ("profile_visit", {}, "/profile"),
        ("friend_request", {"sender_id": "u2"}, "/profile/u2"),
        ("like", {"data": {"postId": "p1"}}, "/forum#post-p1"),
        ("forum-mention", {}, "/forum"),
        ("post_pinned", {"data": {"postId": 7}}, "/forum#post-7"),
        ("general", {}, "/forum"),
        ("new_event", {}, "/events"),
        ("event_cancelled", {}, "/events"),
        ("message", {}, "/messaging"),
    ],
)
def test_route_notification_paths(type_, kwargs, path):
    target = route_notification(_notification(1, type_, **kwargs), "student")

    assert target.action is NavigationAction.NAVIGATE
    assert target.path == path


def test_message_notification_opens_conversation_with_sender():
    target = route_notification(
        _notification(1, "message", sender_id="bob", sender_name="Bob B", sender_role="alumni"),
        "student",
    )

    assert target.path == "/messaging"
    assert target.state == {"startChatWith": {"id": "bob", "name": "Bob B", "role": "alumni"}}


def test_mentorship_request_opens_modal_only_for_alumni():
    notification = _notification(8, "mentorship_request", data={"requestId": "r1"})

    alumni = route_notification(notification, "alumni")
    student = route_notification(notification, "student")

    assert alumni.action is NavigationAction.OPEN_MODAL
    assert alumni.state == {"notificationId": 8, "requestId": "r1"}
    assert student.action is NavigationAction.DISMISS


def test_unknown_type_only_dismisses():
    assert route_notification(_notification(1, "something_new"), "admin").action is NavigationAction.DISMISS


def test_click_marks_unread_notification_before_navigating():
    aggregator = NotificationAggregator("alice", viewer_role="student")

    unread = aggregator.click(_notification(5, "new_event"))
    already_read = aggregator.click(_notification(6, "new_event", read=True))

    assert unread.mark_read_id == 5
    assert unread.target.path == "/events"
    assert already_read.mark_read_id is None
