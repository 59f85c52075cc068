"""Import every model so ``Base.metadata`` is complete (schema creation, Alembic)."""

from __future__ import annotations

from notification_engine.core.database import Base
from notification_engine.features.notifications.models import (
    Notification,
    NotificationDeliveryTracking,
)
from notification_engine.features.preferences.models import (
    NotificationSuppression,
    UserNotificationPreferences,
)
from notification_engine.features.templates.models import (
    CompiledTemplate,
    Template,
    TemplateVersion,
)

__all__ = [
    "Base",
    "CompiledTemplate",
    "Notification",
    "NotificationDeliveryTracking",
    "NotificationSuppression",
    "Template",
    "TemplateVersion",
    "UserNotificationPreferences",
]
