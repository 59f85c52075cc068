"""Aggregate notification status derived from per-channel tracking."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

from notification_engine.features.notifications.state_machine import (
    DELIVERED_CLASS,
    SENT_OR_BETTER,
    TERMINAL_FAILURE,
    DeliveryStatus,
)

if TYPE_CHECKING:
    from collections.abc import Iterable


class NotificationStatus(StrEnum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    SENT = "sent"
    DELIVERED = "delivered"
    PARTIALLY_DELIVERED = "partially_delivered"
    FAILED = "failed"
    SUPPRESSED = "suppressed"
    CANCELLED = "cancelled"


def derive_status(own_status: str, child_statuses: Iterable[str]) -> NotificationStatus:
    """Compute the notification status from its tracking rows.

    ``own_status`` is returned unchanged (pending, scheduled or cancelled)
    while there are no children. Suppressed and cancelled children are not
    counted as attempts.
    """
    statuses = [DeliveryStatus(s) for s in child_statuses]
    if not statuses:
        return NotificationStatus(own_status)
    if all(s == DeliveryStatus.SUPPRESSED for s in statuses):
        return NotificationStatus.SUPPRESSED

    attempted = [s for s in statuses if s not in (DeliveryStatus.SUPPRESSED, DeliveryStatus.CANCELLED)]
    if not attempted:
        return NotificationStatus.CANCELLED

    failed = sum(1 for s in attempted if s in TERMINAL_FAILURE)
    if failed == len(attempted):
        return NotificationStatus.FAILED
    if failed and any(s in SENT_OR_BETTER for s in attempted):
        return NotificationStatus.PARTIALLY_DELIVERED
    if any(s in DELIVERED_CLASS for s in attempted):
        return NotificationStatus.DELIVERED
    if any(s == DeliveryStatus.SENT for s in attempted):
        return NotificationStatus.SENT
    return NotificationStatus.PENDING
