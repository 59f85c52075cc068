"""Delivery tracking state machine.

Every status change of a NotificationDeliveryTracking row goes through
``apply_event``; the allowed moves are exactly the keys of ``TRANSITIONS``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

from notification_engine.core.exceptions import InvalidTransitionError

if TYPE_CHECKING:
    from datetime import datetime

    from notification_engine.features.notifications.models import NotificationDeliveryTracking


class DeliveryStatus(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    OPENED = "opened"
    CLICKED = "clicked"
    BOUNCED = "bounced"
    COMPLAINED = "complained"
    FAILED_TRANSIENT = "failed_transient"
    FAILED = "failed"
    SUPPRESSED = "suppressed"
    CANCELLED = "cancelled"


class DeliveryEvent(StrEnum):
    ACCEPTED = "accepted"
    TRANSIENT_ERROR = "transient_error"
    PERMANENT_ERROR = "permanent_error"
    REJECTED_BOUNCE = "rejected_bounce"
    CANCEL = "cancel"
    RETRY = "retry"
    EXHAUSTED = "exhausted"
    DELIVERED = "delivered"
    BOUNCE = "bounce"
    COMPLAINT = "complaint"
    OPEN = "open"
    CLICK = "click"


S = DeliveryStatus
E = DeliveryEvent

TRANSITIONS: dict[tuple[DeliveryStatus, DeliveryEvent], DeliveryStatus] = {
    # Attempt outcomes
    (S.PENDING, E.ACCEPTED): S.SENT,
    (S.PENDING, E.TRANSIENT_ERROR): S.FAILED_TRANSIENT,
    (S.PENDING, E.PERMANENT_ERROR): S.FAILED,
    (S.PENDING, E.REJECTED_BOUNCE): S.BOUNCED,
    (S.PENDING, E.CANCEL): S.CANCELLED,
    # Retry loop
    (S.FAILED_TRANSIENT, E.RETRY): S.PENDING,
    (S.FAILED_TRANSIENT, E.EXHAUSTED): S.FAILED,
    (S.FAILED_TRANSIENT, E.CANCEL): S.CANCELLED,
    # Provider callbacks
    (S.SENT, E.DELIVERED): S.DELIVERED,
    (S.SENT, E.BOUNCE): S.BOUNCED,
    (S.SENT, E.COMPLAINT): S.COMPLAINED,
    (S.SENT, E.OPEN): S.OPENED,
    (S.SENT, E.CLICK): S.CLICKED,
    (S.DELIVERED, E.OPEN): S.OPENED,
    (S.DELIVERED, E.CLICK): S.CLICKED,
    (S.DELIVERED, E.COMPLAINT): S.COMPLAINED,
    (S.OPENED, E.OPEN): S.OPENED,
    (S.OPENED, E.CLICK): S.CLICKED,
    (S.OPENED, E.COMPLAINT): S.COMPLAINED,
    (S.CLICKED, E.OPEN): S.CLICKED,
    (S.CLICKED, E.CLICK): S.CLICKED,
    (S.CLICKED, E.COMPLAINT): S.COMPLAINED,
}

TERMINAL_FAILURE = frozenset({S.FAILED, S.BOUNCED})
DELIVERED_CLASS = frozenset({S.DELIVERED, S.OPENED, S.CLICKED, S.COMPLAINED})
SENT_OR_BETTER = DELIVERED_CLASS | {S.SENT}
CANCELLABLE = frozenset({S.PENDING, S.FAILED_TRANSIENT})

# Timestamp column stamped the first time a record enters a status
_STAMPS: dict[DeliveryStatus, str] = {
    S.SENT: "sent_at",
    S.DELIVERED: "delivered_at",
    S.OPENED: "opened_at",
    S.CLICKED: "clicked_at",
    S.BOUNCED: "bounced_at",
    S.COMPLAINED: "complained_at",
    S.FAILED: "failed_at",
}


def next_status(current: str, event: str) -> DeliveryStatus:
    """Look up the target status for ``event`` in ``current``.

    Raises:
        InvalidTransitionError: The pair is not in the table.
    """
    try:
        target = TRANSITIONS[(DeliveryStatus(current), DeliveryEvent(event))]
    except (KeyError, ValueError):
        raise InvalidTransitionError(str(current), str(event)) from None
    return target


def can_apply(current: str, event: str) -> bool:
    try:
        return (DeliveryStatus(current), DeliveryEvent(event)) in TRANSITIONS
    except ValueError:
        return False


def apply_event(
    record: NotificationDeliveryTracking,
    event: str,
    at: datetime,
) -> DeliveryStatus:
    """Move ``record`` to its next status and stamp lifecycle timestamps.

    Engagement events imply delivery: an open or click on a ``sent`` record
    also stamps ``delivered_at``.
    """
    target = next_status(record.status, event)
    record.status = target

    stamp = _STAMPS.get(target)
    if stamp and getattr(record, stamp) is None:
        setattr(record, stamp, at)
    if target in DELIVERED_CLASS and record.delivered_at is None:
        record.delivered_at = at
    if event == DeliveryEvent.CLICK and record.opened_at is None:
        record.opened_at = at
    if target != S.FAILED_TRANSIENT:
        record.next_retry_at = None
    return target
