"""Prometheus metrics for notification delivery.

Usage:
    from notification_engine.features.notifications.metrics import delivery_transition_total

    delivery_transition_total.labels(channel="email", status="sent").inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# =============================================================================
# Lifecycle
# =============================================================================

notification_created_total = Counter(
    "notification_created_total",
    "Notifications created",
    labelnames=["priority", "scheduled"],
)

notification_dispatched_total = Counter(
    "notification_dispatched_total",
    "Dispatch runs by outcome",
    labelnames=["outcome"],
)
"""
Labels:
    outcome: dispatched, deferred, not_due, skipped
"""

delivery_transition_total = Counter(
    "notification_delivery_transition_total",
    "Tracking records entering a status",
    labelnames=["channel", "status"],
)

# =============================================================================
# Provider calls
# =============================================================================

delivery_send_duration_seconds = Histogram(
    "notification_delivery_send_duration_seconds",
    "Duration of Sender calls",
    labelnames=["channel", "provider"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

delivery_retry_total = Counter(
    "notification_delivery_retry_total",
    "Retries scheduled after transient failures",
    labelnames=["channel"],
)

delivery_error_total = Counter(
    "notification_delivery_error_total",
    "Sender failures by classification",
    labelnames=["channel", "kind"],
)
"""
Labels:
    kind: transient, permanent, bounce, timeout, unexpected
"""

provider_event_total = Counter(
    "notification_provider_event_total",
    "Provider callback events by outcome",
    labelnames=["provider", "event", "outcome"],
)
"""
Labels:
    outcome: applied, ignored, unknown_message, invalid_transition
"""
