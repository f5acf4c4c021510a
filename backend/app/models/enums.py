from __future__ import annotations

from enum import Enum


class UserRole(str, Enum):
    """Platform roles assigned at sign-up."""

    STUDENT = "student"
    ALUMNI = "alumni"
    ADMIN = "admin"


class MessageKind(str, Enum):
    """Content kinds a chat message can carry."""

    TEXT = "text"
    IMAGE = "image"
    FILE = "file"


class NotificationType(str, Enum):
    """Notification types produced by the platform.

    The column itself stores plain strings so producers can introduce new
    types without a migration; unknown values are dismissed by clients.
    """

    MESSAGE = "message"
    MENTORSHIP_REQUEST = "mentorship_request"
    MENTORSHIP_ACCEPTED = "mentorship_accepted"
    MENTORSHIP_DECLINED = "mentorship_declined"
    LIKE = "like"
    COMMENT = "comment"
    REACTION = "reaction"
    FORUM_COMMENT = "forum-comment"
    FORUM_REACTION = "forum-reaction"
    FORUM_POST = "forum_post"
    FORUM_REPLY = "forum_reply"
    POST_LIKE = "post_like"
    POST_COMMENT = "post_comment"
    POST_REACTION = "post_reaction"
    NEW_POST = "new_post"
    POST_CREATED = "post_created"
    GENERAL = "general"
    EVENT = "event"
    NEW_EVENT = "new_event"
    EVENT_REMINDER = "event_reminder"
    PROFILE_VISIT = "profile_visit"
    PROFILE_VIEW = "profile_view"
    CONNECTION = "connection"
    FRIEND_REQUEST = "friend_request"
    CONNECTION_REQUEST = "connection_request"
