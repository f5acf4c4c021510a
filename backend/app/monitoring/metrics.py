"""Metric definitions for the realtime relay and notification feed."""

from __future__ import annotations

from .registry import registry


realtime_events_total = registry.counter(
    "realtime_events_total",
    "Count of realtime events processed by the relay.",
    label_names=("topic", "direction", "action"),
)

realtime_connections = registry.gauge(
    "realtime_active_connections",
    "Number of active websocket connections handled locally.",
    label_names=("scope",),
)

realtime_sessions = registry.gauge(
    "realtime_authenticated_sessions",
    "Number of authenticated sessions registered on this node.",
)

realtime_rooms = registry.gauge(
    "realtime_rooms",
    "Number of rooms with at least one local member.",
)

realtime_subscriptions = registry.gauge(
    "realtime_pubsub_subscriptions",
    "Number of active broker subscriptions.",
    label_names=("topic", "backend"),
)

realtime_publish_errors_total = registry.counter(
    "realtime_publish_errors_total",
    "Failures while publishing realtime events to the broker.",
    label_names=("topic", "backend", "reason"),
)

realtime_transport_restarts_total = registry.counter(
    "realtime_transport_restarts_total",
    "Number of broker reconnections performed by the transport.",
    label_names=("backend", "reason"),
)

relay_messages_total = registry.counter(
    "relay_messages_total",
    "Outcome of sendMessage requests handled by the relay.",
    label_names=("outcome",),
)

presence_updates_total = registry.counter(
    "presence_updates_total",
    "Presence writes attempted by the tracker.",
    label_names=("state", "result"),
)

notifications_created_total = registry.counter(
    "notifications_created_total",
    "Notifications persisted, by type.",
    label_names=("type",),
)
