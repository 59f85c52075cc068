"""Pydantic schemas for notifications and delivery tracking."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from notification_engine.core.recipients import normalize_phone

Priority = Literal["low", "normal", "high", "urgent"]

# ============================================================================
# Notification Schemas
# ============================================================================


class NotificationCreate(BaseModel):
    """Payload for creating a notification.

    Either ``template_id`` or ad-hoc ``content`` must be given. ``content``
    uses the same ``{channel: payload}`` shape a template version holds for
    one language.
    """

    user_id: str | None = Field(default=None, max_length=255)
    email: str | None = Field(default=None, max_length=320)
    phone: str | None = Field(default=None, max_length=32)
    device_token: str | None = Field(default=None, max_length=512)

    template_id: UUID | None = None
    template_version: int | None = Field(default=None, ge=1, description="Pin a version; None uses the active one")
    language: str = Field(default="en", min_length=2, max_length=16)
    channels: list[str] = Field(..., min_length=1)
    priority: Priority = "normal"
    category: str | None = Field(default=None, max_length=100)
    content: dict[str, Any] | None = None
    variables: dict[str, Any] = Field(default_factory=dict)

    scheduled_at: datetime | None = None
    tracking_enabled: bool = True
    from_service: str | None = Field(default=None, max_length=100)
    from_user_id: str | None = Field(default=None, max_length=255)
    tags: list[str] = Field(default_factory=list)

    @field_validator("scheduled_at")
    @classmethod
    def _aware(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            msg = "scheduled_at must be timezone-aware"
            raise ValueError(msg)
        return value

    @field_validator("phone")
    @classmethod
    def _e164(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return normalize_phone(value)

    @model_validator(mode="after")
    def _validate_recipient_and_source(self) -> NotificationCreate:
        if not (self.user_id or self.email or self.phone):
            msg = "at least one of user_id, email or phone is required"
            raise ValueError(msg)
        if self.template_id is None and not self.content:
            msg = "either template_id or content is required"
            raise ValueError(msg)
        return self


class NotificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: str | None
    email: str | None
    phone: str | None
    device_token: str | None
    template_id: UUID | None
    template_version: int | None
    language: str
    channels: list[str]
    priority: str
    category: str | None
    rendered_content: dict[str, Any] | None
    status: str
    scheduled_at: datetime | None
    next_dispatch_at: datetime | None
    sent_at: datetime | None
    delivered_at: datetime | None
    cancelled_at: datetime | None
    tracking_enabled: bool
    from_service: str | None
    tags: list[str]
    created_at: datetime
    updated_at: datetime


# ============================================================================
# Delivery Tracking Schemas
# ============================================================================


class DeliveryTrackingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    notification_id: UUID
    channel: str
    provider: str | None
    status: str
    provider_message_id: str | None
    sent_at: datetime | None
    delivered_at: datetime | None
    opened_at: datetime | None
    clicked_at: datetime | None
    bounced_at: datetime | None
    complained_at: datetime | None
    failed_at: datetime | None
    next_retry_at: datetime | None
    error_code: str | None
    error_message: str | None
    retry_count: int
    created_at: datetime
    updated_at: datetime


class ChannelReport(BaseModel):
    channel: str
    status: str
    provider: str | None = None
    attempts: int = 0
    error_code: str | None = None
    deferred_until: datetime | None = None


class DeliveryReport(BaseModel):
    """Per-channel summary of one notification."""

    notification_id: UUID
    status: str
    channels: list[ChannelReport]
    sent_at: datetime | None = None
    delivered_at: datetime | None = None

    @property
    def by_channel(self) -> dict[str, ChannelReport]:
        return {c.channel: c for c in self.channels}


# ============================================================================
# Bulk Operation Schemas
# ============================================================================


class BulkItemError(BaseModel):
    index: int
    notification_id: UUID | None = None
    type: str
    detail: str


class BulkDispatchResult(BaseModel):
    """Outcome of ``create_and_dispatch_bulk``; ``results`` keeps request order."""

    total: int
    results: list[NotificationRead] = Field(default_factory=list)
    errors: list[BulkItemError] = Field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> int:
        return len(self.errors)


class BulkCancelResult(BaseModel):
    cancelled: list[UUID] = Field(default_factory=list)
    failed: list[UUID] = Field(default_factory=list)
