"""Client-side notification state derivation."""

from .aggregator import (  # noqa: F401
    ConversationView,
    NavigationAction,
    NavigationTarget,
    NotificationAggregator,
    NotificationClick,
    NotificationPreferences,
    NotificationView,
    count_unread_conversations,
    count_unread_notifications,
    format_badge,
    route_notification,
    should_show_popup,
)

__all__ = [
    "ConversationView",
    "NavigationAction",
    "NavigationTarget",
    "NotificationAggregator",
    "NotificationClick",
    "NotificationPreferences",
    "NotificationView",
    "count_unread_conversations",
    "count_unread_notifications",
    "format_badge",
    "route_notification",
    "should_show_popup",
]
