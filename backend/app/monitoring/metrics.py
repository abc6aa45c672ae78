"""Metric definitions for the realtime relay."""

from __future__ import annotations

from .registry import registry


realtime_connections = registry.gauge(
    "huddle_active_connections",
    "Number of open websocket connections attached to the router.",
    label_names=("scope",),
)

realtime_online_identities = registry.gauge(
    "huddle_online_identities",
    "Number of identities with at least one open connection.",
)

realtime_events_total = registry.counter(
    "huddle_events_total",
    "Count of realtime events processed by the router.",
    label_names=("event", "direction"),
)

realtime_persistence_failures_total = registry.counter(
    "huddle_persistence_failures_total",
    "Message store operations that failed and dropped their outbound effects.",
    label_names=("operation",),
)

private_chats_expired_total = registry.counter(
    "huddle_private_chats_expired_total",
    "Private conversations closed after the inactivity window elapsed.",
)
