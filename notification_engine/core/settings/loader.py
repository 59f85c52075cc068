"""LRU-cached settings loaders.

Settings are loaded and validated once, then cached for the lifetime of the
process.

Usage:
    from notification_engine.core.settings import get_delivery_settings

    settings = get_delivery_settings()  # First call: loads and validates
    settings = get_delivery_settings()  # Subsequent calls: cached instance

Testing:
    Clear the cache to force reload, or pass explicit instances to services:
    get_delivery_settings.cache_clear()
"""

from __future__ import annotations

from functools import lru_cache

from .database import DatabaseSettings
from .delivery import DeliverySettings
from .logs import LoggingSettings
from .redis import RedisSettings
from .templates import TemplateSettings
from .webhooks import WebhookSettings


@lru_cache(maxsize=1)
def get_db_settings() -> DatabaseSettings:
    """Get cached database settings."""
    return DatabaseSettings()


@lru_cache(maxsize=1)
def get_delivery_settings() -> DeliverySettings:
    """Get cached delivery settings."""
    return DeliverySettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached logging settings."""
    return LoggingSettings()


@lru_cache(maxsize=1)
def get_redis_settings() -> RedisSettings:
    """Get cached Redis settings."""
    return RedisSettings()


@lru_cache(maxsize=1)
def get_template_settings() -> TemplateSettings:
    """Get cached template settings."""
    return TemplateSettings()


@lru_cache(maxsize=1)
def get_webhook_settings() -> WebhookSettings:
    """Get cached webhook settings."""
    return WebhookSettings()


def clear_all_caches() -> None:
    """Clear every settings cache (tests and hot reload)."""
    get_db_settings.cache_clear()
    get_delivery_settings.cache_clear()
    get_logging_settings.cache_clear()
    get_redis_settings.cache_clear()
    get_template_settings.cache_clear()
    get_webhook_settings.cache_clear()
