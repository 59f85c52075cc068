"""Notifications, per-channel delivery tracking and provider callbacks."""

from __future__ import annotations

from .models import Notification, NotificationDeliveryTracking
from .orchestrator import DeliveryOrchestrator
from .provider_events import IngestResult, ProviderEvent, ProviderEventIngestor, verify_signature
from .schemas import (
    ChannelReport,
    DeliveryReport,
    DeliveryTrackingRead,
    NotificationCreate,
    NotificationRead,
)
from .sender import Sender, SenderRegistry, SendResult
from .state_machine import TRANSITIONS, DeliveryEvent, DeliveryStatus, apply_event, next_status
from .status import NotificationStatus, derive_status

__all__ = [
    "TRANSITIONS",
    "ChannelReport",
    "DeliveryEvent",
    "DeliveryOrchestrator",
    "DeliveryReport",
    "DeliveryStatus",
    "DeliveryTrackingRead",
    "IngestResult",
    "Notification",
    "NotificationCreate",
    "NotificationDeliveryTracking",
    "NotificationRead",
    "NotificationStatus",
    "ProviderEvent",
    "ProviderEventIngestor",
    "SendResult",
    "Sender",
    "SenderRegistry",
    "apply_event",
    "derive_status",
    "next_status",
    "verify_signature",
]
