"""Unit tests for modular Pydantic Settings v2."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from notification_engine.core.settings import (
    DatabaseSettings,
    DeliverySettings,
    TemplateSettings,
    WebhookSettings,
    clear_all_caches,
    get_delivery_settings,
    get_template_settings,
)


@pytest.fixture(autouse=True)
def _fresh_settings_cache():
    clear_all_caches()
    yield
    clear_all_caches()


@pytest.mark.unit
class TestDeliverySettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("DELIVERY_MAX_ATTEMPTS", raising=False)
        settings = DeliverySettings()

        assert settings.max_attempts == 3
        assert settings.initial_delay == 1.0
        assert settings.backoff_multiplier == 2.0
        assert settings.max_delay == 60.0
        assert settings.auto_suppress_on_complaint is True
        assert settings.auto_suppress_on_bounce is False

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("DELIVERY_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("DELIVERY_AUTO_SUPPRESS_ON_BOUNCE", "true")

        settings = get_delivery_settings()

        assert settings.max_attempts == 5
        assert settings.auto_suppress_on_bounce is True

    def test_loader_caches_instance(self):
        assert get_delivery_settings() is get_delivery_settings()

    def test_frozen(self):
        settings = DeliverySettings()
        with pytest.raises(ValidationError):
            settings.max_attempts = 9

    def test_max_delay_must_cover_initial_delay(self):
        with pytest.raises(ValidationError, match="max_delay"):
            DeliverySettings(initial_delay=10.0, max_delay=5.0)

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValidationError):
            DeliverySettings(max_attempts=0)


@pytest.mark.unit
class TestOtherSettings:
    def test_template_ttl_from_environment(self, monkeypatch):
        monkeypatch.setenv("TEMPLATE_COMPILED_TTL_SECONDS", "3600")
        assert get_template_settings().compiled_ttl_seconds == 3600

    def test_template_defaults(self, monkeypatch):
        monkeypatch.delenv("TEMPLATE_COMPILED_TTL_SECONDS", raising=False)
        settings = TemplateSettings()
        assert settings.compiled_ttl_seconds is None
        assert settings.sms_max_segments == 3

    def test_webhook_secrets_are_secret(self):
        settings = WebhookSettings(secrets={"sendgrid": "s3cr3t"})
        assert settings.secrets["sendgrid"].get_secret_value() == "s3cr3t"
        assert "s3cr3t" not in repr(settings)

    def test_sqlite_skips_pool_options(self):
        settings = DatabaseSettings(url="sqlite+aiosqlite:///./x.db")
        assert settings.is_sqlite
        assert settings.sqlalchemy_engine_kwargs() == {"echo": False}

    def test_postgres_pool_options(self):
        settings = DatabaseSettings(url="postgresql+asyncpg://u:p@db/notifications", pool_size=5)
        kwargs = settings.sqlalchemy_engine_kwargs()
        assert kwargs["pool_size"] == 5
        assert kwargs["pool_pre_ping"] is True
