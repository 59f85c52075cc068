"""Inbound provider webhook settings.

Providers sign their delivery callbacks with a shared secret. The signing
secret per provider is looked up here when verifying a callback.
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class WebhookSettings(BaseSettings):
    """Configuration for provider delivery-event callbacks.

    Environment variables use WEBHOOK_ prefix.
    Example: WEBHOOK_SECRETS='{"sendgrid": "s3cr3t"}'
    """

    # Signature verification
    verify_signatures: bool = Field(
        default=True,
        description="Reject callbacks whose HMAC signature does not match",
    )
    secrets: dict[str, SecretStr] = Field(
        default_factory=dict,
        description="Signing secret per provider name",
    )
    algorithm: Literal["sha256", "sha1"] = Field(
        default="sha256",
        description="HMAC digest used when the provider does not say otherwise",
    )

    # Payload limits
    max_events_per_callback: int = Field(
        default=1000,
        ge=1,
        le=100_000,
        description="Maximum events accepted in one callback batch",
    )

    model_config = SettingsConfigDict(
        env_prefix="WEBHOOK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        populate_by_name=True,
        extra="ignore",
        env_ignore_empty=True,
    )
