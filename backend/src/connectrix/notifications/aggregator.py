"""Derived notification state for a single viewer.

The aggregator consumes two independent result sets, the viewer's newest
notifications and the viewer's conversations, and derives the two badge
counts, the popup candidates and the click navigation target. It holds no
I/O and can be fed either by the live notification feed or by tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence

MESSAGE_TYPE = "message"

_FORUM_TYPES = frozenset(
    {
        "like",
        "comment",
        "reaction",
        "general",
        "forum_post",
        "forum_reply",
        "new_post",
        "post_created",
    }
)
_FORUM_PREFIXES = ("forum-", "forum_", "post_")
_EVENT_TYPES = frozenset({"event", "new_event", "event_reminder"})
_PROFILE_TYPES = frozenset(
    {
        "profile_visit",
        "profile_view",
        "connection",
        "friend_request",
        "connection_request",
        "mentorship_accepted",
    }
)
_LIKE_AND_COMMENT_TYPES = frozenset({"like", "comment"})


class NavigationAction(str, Enum):
    NAVIGATE = "navigate"
    OPEN_MODAL = "open_modal"
    DISMISS = "dismiss"


@dataclass(slots=True, frozen=True)
class NavigationTarget:
    action: NavigationAction
    path: str | None = None
    state: Mapping[str, Any] | None = None
    modal: str | None = None

    @classmethod
    def dismiss(cls) -> "NavigationTarget":
        return cls(action=NavigationAction.DISMISS)

    @classmethod
    def to(cls, path: str, state: Mapping[str, Any] | None = None) -> "NavigationTarget":
        return cls(action=NavigationAction.NAVIGATE, path=path, state=state)


@dataclass(slots=True, frozen=True)
class NotificationView:
    """Read model of one notification row."""

    id: int | str
    type: str
    read: bool = False
    created_at: datetime | None = None
    sender_id: str | None = None
    sender_name: str | None = None
    sender_role: str | None = None
    title: str | None = None
    message: str | None = None
    data: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class ConversationView:
    """Read model of one conversation summary."""

    id: str
    participant_ids: Sequence[str]
    last_message_sender_id: str | None = None
    last_message_read: bool = True


@dataclass(slots=True)
class NotificationPreferences:
    push_notifications: bool = True
    mentorship_requests: bool = True
    likes_and_comments: bool = True

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any] | None) -> "NotificationPreferences":
        values = values or {}
        return cls(
            push_notifications=bool(values.get("pushNotifications", True)),
            mentorship_requests=bool(values.get("mentorshipRequests", True)),
            likes_and_comments=bool(values.get("likesAndComments", True)),
        )


@dataclass(slots=True, frozen=True)
class NotificationClick:
    """Outcome of clicking a notification: what to mark read and where to go."""

    mark_read_id: int | str | None
    target: NavigationTarget


def count_unread_notifications(notifications: Iterable[NotificationView]) -> int:
    # message notifications drive the separate message badge
    return sum(1 for item in notifications if not item.read and item.type != MESSAGE_TYPE)


def count_unread_conversations(conversations: Iterable[ConversationView], viewer_id: str) -> int:
    return sum(
        1
        for conversation in conversations
        if conversation.last_message_sender_id
        and conversation.last_message_sender_id != viewer_id
        and not conversation.last_message_read
    )


def format_badge(count: int) -> str | None:
    if count <= 0:
        return None
    return "99+" if count > 99 else str(count)


def should_show_popup(notification: NotificationView, preferences: NotificationPreferences) -> bool:
    if not preferences.push_notifications:
        return False
    if notification.type == MESSAGE_TYPE:
        return False
    if notification.type == "mentorship_request":
        return preferences.mentorship_requests
    if notification.type in _LIKE_AND_COMMENT_TYPES:
        return preferences.likes_and_comments
    return True


def _is_forum_type(kind: str) -> bool:
    return kind in _FORUM_TYPES or kind.startswith(_FORUM_PREFIXES)


def _is_event_type(kind: str) -> bool:
    return kind in _EVENT_TYPES or kind.startswith("event")


def _profile_target(sender_id: str | None) -> NavigationTarget:
    return NavigationTarget.to(f"/profile/{sender_id}" if sender_id else "/profile")


def route_notification(notification: NotificationView, viewer_role: str | None) -> NavigationTarget:
    """Map a notification to where a click should take the viewer; unknown types only dismiss."""

    kind = notification.type or ""
    if kind == "mentorship_request":
        if viewer_role == "alumni":
            return NavigationTarget(
                action=NavigationAction.OPEN_MODAL,
                modal="mentorship_response",
                state={"notificationId": notification.id, **dict(notification.data)},
            )
        return NavigationTarget.dismiss()
    if kind == MESSAGE_TYPE:
        if notification.sender_id:
            return NavigationTarget.to(
                "/messaging",
                {
                    "startChatWith": {
                        "id": notification.sender_id,
                        "name": notification.sender_name,
                        "role": notification.sender_role,
                    }
                },
            )
        return NavigationTarget.to("/messaging")
    if kind == "mentorship_declined":
        return NavigationTarget.to("/browse-mentor")
    if kind in _PROFILE_TYPES:
        return _profile_target(notification.sender_id)
    if _is_forum_type(kind):
        post_id = notification.data.get("postId")
        return NavigationTarget.to(f"/forum#post-{post_id}" if post_id else "/forum")
    if _is_event_type(kind):
        return NavigationTarget.to("/events")
    return NavigationTarget.dismiss()


class NotificationAggregator:
    """Badge and popup state re-derived from each live-query snapshot."""

    def __init__(
        self,
        viewer_id: str,
        *,
        viewer_role: str | None = None,
        window: int = 50,
        preferences: NotificationPreferences | None = None,
    ) -> None:
        self.viewer_id = viewer_id
        self.viewer_role = viewer_role
        self.window = window
        self.preferences = preferences or NotificationPreferences()
        self.notifications: list[NotificationView] = []
        self.conversations: list[ConversationView] = []
        self._seen_ids: set[int | str] | None = None

    @property
    def unread_count(self) -> int:
        return count_unread_notifications(self.notifications)

    @property
    def unread_message_count(self) -> int:
        return count_unread_conversations(self.conversations, self.viewer_id)

    @property
    def badge(self) -> str | None:
        return format_badge(self.unread_count)

    @property
    def message_badge(self) -> str | None:
        return format_badge(self.unread_message_count)

    def apply_notifications(self, notifications: Iterable[NotificationView]) -> list[NotificationView]:
        """Replace the notification window; returns newly arrived items eligible for a popup.

        The first snapshot only seeds the seen set and never produces popups.
        """

        ordered = sorted(
            notifications,
            key=lambda item: (item.created_at is not None, item.created_at or datetime.min),
            reverse=True,
        )
        self.notifications = ordered[: self.window]
        current_ids = {item.id for item in self.notifications}
        if self._seen_ids is None:
            self._seen_ids = current_ids
            return []
        fresh = [
            item
            for item in self.notifications
            if item.id not in self._seen_ids
            and not item.read
            and should_show_popup(item, self.preferences)
        ]
        self._seen_ids |= current_ids
        return fresh

    def apply_conversations(self, conversations: Iterable[ConversationView]) -> int:
        self.conversations = [
            conversation
            for conversation in conversations
            if self.viewer_id in conversation.participant_ids
        ]
        return self.unread_message_count

    def click(self, notification: NotificationView) -> NotificationClick:
        """Notifications are marked read before any navigation happens."""

        mark_read_id = None if notification.read else notification.id
        return NotificationClick(
            mark_read_id=mark_read_id,
            target=route_notification(notification, self.viewer_role),
        )

    def snapshot(self) -> dict[str, Any]:
        return {
            "unreadCount": self.unread_count,
            "unreadMessageCount": self.unread_message_count,
            "badge": self.badge,
            "messageBadge": self.message_badge,
        }
