"""Pydantic schemas for preferences and suppressions."""

from __future__ import annotations

import re
from datetime import datetime
from enum import StrEnum
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class SuppressionReason(StrEnum):
    BOUNCE = "bounce"
    COMPLAINT = "complaint"
    UNSUBSCRIBE = "unsubscribe"
    MANUAL = "manual"


# ============================================================================
# Preferences
# ============================================================================


class PreferencesUpdate(BaseModel):
    """Partial update; omitted fields keep their current value."""

    email_enabled: bool | None = None
    sms_enabled: bool | None = None
    push_enabled: bool | None = None
    in_app_enabled: bool | None = None
    category_preferences: dict[str, bool] | None = None
    global_opt_out: bool | None = None
    quiet_hours_start: str | None = Field(default=None, description="HH:MM, recipient-local")
    quiet_hours_end: str | None = Field(default=None, description="HH:MM, recipient-local")
    timezone: str | None = None
    max_daily_notifications: int | None = Field(default=None, ge=0)
    max_weekly_notifications: int | None = Field(default=None, ge=0)

    @field_validator("quiet_hours_start", "quiet_hours_end")
    @classmethod
    def _validate_hhmm(cls, value: str | None) -> str | None:
        if value is not None and not _HHMM.match(value):
            msg = "quiet hours must be HH:MM (24-hour)"
            raise ValueError(msg)
        return value

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str | None) -> str | None:
        if value is None:
            return value
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            msg = f"unknown timezone {value!r}"
            raise ValueError(msg) from None
        return value

    @model_validator(mode="after")
    def _quiet_hours_pair(self) -> PreferencesUpdate:
        fields = self.model_fields_set
        if ("quiet_hours_start" in fields) != ("quiet_hours_end" in fields):
            msg = "quiet_hours_start and quiet_hours_end must be set together"
            raise ValueError(msg)
        return self


class PreferencesRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    email_enabled: bool = True
    sms_enabled: bool = True
    push_enabled: bool = True
    in_app_enabled: bool = True
    category_preferences: dict[str, bool] = Field(default_factory=dict)
    global_opt_out: bool = False
    quiet_hours_start: str | None = None
    quiet_hours_end: str | None = None
    timezone: str = "UTC"
    max_daily_notifications: int | None = None
    max_weekly_notifications: int | None = None
    consent_date: datetime | None = None
    opt_out_date: datetime | None = None
    persisted: bool = Field(default=True, description="False when these are the implicit defaults")


# ============================================================================
# Suppressions
# ============================================================================


class SuppressionCreate(BaseModel):
    identifier: str = Field(..., min_length=1, max_length=320)
    channel: str
    reason: SuppressionReason = SuppressionReason.MANUAL
    added_by: str | None = None
    expires_at: datetime | None = None

    @field_validator("expires_at")
    @classmethod
    def _aware(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            msg = "expires_at must be timezone-aware"
            raise ValueError(msg)
        return value


class SuppressionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    identifier: str
    channel: str
    reason: str
    added_by: str | None
    added_at: datetime
    expires_at: datetime | None
    is_active: bool
