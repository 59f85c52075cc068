"""Modular Pydantic Settings v2 configuration.

One frozen settings model per concern, each reading its own environment
prefix (DB_, DELIVERY_, LOG_, REDIS_, TEMPLATE_, WEBHOOK_), accessed through
cached loaders:

    from notification_engine.core.settings import get_delivery_settings
"""

from __future__ import annotations

from .database import DatabaseSettings
from .delivery import DeliverySettings
from .loader import (
    clear_all_caches,
    get_db_settings,
    get_delivery_settings,
    get_logging_settings,
    get_redis_settings,
    get_template_settings,
    get_webhook_settings,
)
from .logs import LoggingSettings
from .redis import RedisSettings
from .templates import TemplateSettings
from .webhooks import WebhookSettings

__all__ = [
    "DatabaseSettings",
    "DeliverySettings",
    "LoggingSettings",
    "RedisSettings",
    "TemplateSettings",
    "WebhookSettings",
    "clear_all_caches",
    "get_db_settings",
    "get_delivery_settings",
    "get_logging_settings",
    "get_redis_settings",
    "get_template_settings",
    "get_webhook_settings",
]
