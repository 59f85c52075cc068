"""Delivery orchestration settings: retry policy, timeouts and policy hooks."""

from __future__ import annotations

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DeliverySettings(BaseSettings):
    """Retry and policy configuration for the delivery orchestrator.

    Environment variables use DELIVERY_ prefix.
    Example: DELIVERY_MAX_ATTEMPTS=5, DELIVERY_INITIAL_DELAY=2.0

    Backoff for retry ``n`` (0-based) is
    ``min(initial_delay * backoff_multiplier ** n, max_delay)``; the defaults
    give 1s then 2s before the third and final attempt.
    """

    # ──────────────────────────────────────────────────────────────
    # Retry policy
    # ──────────────────────────────────────────────────────────────

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Total provider attempts per channel, including the first",
    )

    initial_delay: float = Field(
        default=1.0,
        ge=0.0,
        le=3600.0,
        description="Delay in seconds before the first retry",
    )

    backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        le=10.0,
        description="Exponential growth factor between retries",
    )

    max_delay: float = Field(
        default=60.0,
        ge=0.0,
        le=86400.0,
        description="Upper bound for a single retry delay in seconds",
    )

    send_timeout: float = Field(
        default=10.0,
        gt=0.0,
        le=300.0,
        description="Seconds a Sender call may take before it counts as a transient failure",
    )

    # ──────────────────────────────────────────────────────────────
    # Policy hooks
    # ──────────────────────────────────────────────────────────────

    auto_suppress_on_complaint: bool = Field(
        default=True,
        description="Insert a suppression entry when a provider reports a spam complaint",
    )

    auto_suppress_on_bounce: bool = Field(
        default=False,
        description="Insert a suppression entry when a provider reports a bounce",
    )

    quiet_hours_bypass_urgent: bool = Field(
        default=True,
        description="Let urgent-priority notifications through during quiet hours",
    )

    rate_counter_backend: Literal["memory", "redis"] = Field(
        default="memory",
        description="Backend holding rolling send counts for daily/weekly caps",
    )

    @model_validator(mode="after")
    def _validate_delays(self) -> DeliverySettings:
        if self.max_delay < self.initial_delay:
            msg = "max_delay must be greater than or equal to initial_delay"
            raise ValueError(msg)
        return self

    model_config = SettingsConfigDict(
        env_prefix="DELIVERY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        populate_by_name=True,
        extra="ignore",
        env_ignore_empty=True,
    )
