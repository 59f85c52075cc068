"""User preferences, suppression list and the policy gate."""

from __future__ import annotations

from .models import NotificationSuppression, UserNotificationPreferences
from .policy import BlockedChannel, BlockReason, DeferredChannel, PolicyDecision, PolicyGate
from .schemas import (
    PreferencesRead,
    PreferencesUpdate,
    SuppressionCreate,
    SuppressionRead,
    SuppressionReason,
)
from .service import PreferenceService, upsert_suppression

__all__ = [
    "BlockReason",
    "BlockedChannel",
    "DeferredChannel",
    "NotificationSuppression",
    "PolicyDecision",
    "PolicyGate",
    "PreferenceService",
    "PreferencesRead",
    "PreferencesUpdate",
    "SuppressionCreate",
    "SuppressionRead",
    "SuppressionReason",
    "UserNotificationPreferences",
    "upsert_suppression",
]
