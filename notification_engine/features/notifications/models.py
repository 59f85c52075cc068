"""SQLAlchemy models for notifications and per-channel delivery tracking."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from notification_engine.core.database import JSONDocument, UTCDateTime, UUIDTimestampedBase
from notification_engine.core.recipients import RecipientIdentity


class Notification(UUIDTimestampedBase):
    """A request to notify one recipient on one or more channels.

    Provides:
    - Recipient identity (user id and/or direct addresses)
    - Template reference with the version resolved at dispatch, or ad-hoc content
    - Rendered content per channel, kept for audit
    - Aggregate status derived from the delivery tracking rows

    Until tracking rows exist ``status`` is ``pending``, ``scheduled`` or
    ``cancelled``; afterwards it is recomputed from the children on every
    transition.
    """

    __tablename__ = "notifications"

    # Recipient
    user_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Recipient user identifier",
    )
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    device_token: Mapped[str | None] = mapped_column(String(512), nullable=True)

    # Content source
    template_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("notification_templates.id"),
        nullable=True,
        index=True,
    )
    template_version: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="Pinned version, or the active version resolved at dispatch",
    )
    language: Mapped[str] = mapped_column(String(16), nullable=False, default="en")
    channels: Mapped[list[str]] = mapped_column(
        JSONDocument,
        nullable=False,
        default=list,
        comment="Requested channels in request order",
    )
    priority: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default="normal",
        comment="Priority: low, normal, high, urgent",
    )
    category: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        index=True,
        comment="Category for preference overrides (falls back to the template's)",
    )
    content: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="Ad-hoc per-channel payload used when no template is set",
    )
    variables: Mapped[dict[str, Any]] = mapped_column(
        JSONDocument,
        nullable=False,
        default=dict,
    )
    rendered_content: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="Rendered fields per channel",
    )

    # Status
    status: Mapped[str] = mapped_column(
        String(24),
        nullable=False,
        default="pending",
        index=True,
        comment="Aggregate status derived from delivery tracking",
    )
    scheduled_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
        comment="Earliest dispatch time (NULL = immediate)",
    )
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    next_dispatch_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
        comment="When channels still waiting (scheduled or deferred) are due; NULL when none wait",
    )

    # Source
    tracking_enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default="1",
    )
    from_service: Mapped[str | None] = mapped_column(String(100), nullable=True)
    from_user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)

    deliveries: Mapped[list[NotificationDeliveryTracking]] = relationship(
        back_populates="notification",
        cascade="all, delete-orphan",
        order_by="NotificationDeliveryTracking.created_at",
        lazy="raise",
    )

    __table_args__ = (
        Index("idx_notification_status_scheduled", "status", "scheduled_at"),
        Index("idx_notification_next_dispatch", "next_dispatch_at"),
    )

    @property
    def identity(self) -> RecipientIdentity:
        return RecipientIdentity(
            user_id=self.user_id,
            email=self.email,
            phone=self.phone,
            device_token=self.device_token,
        )

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, status={self.status!r})>"


class NotificationDeliveryTracking(UUIDTimestampedBase):
    """Delivery state of one notification on one channel.

    Status changes only through the transition table in
    ``state_machine.TRANSITIONS``. ``retry_count`` counts retries (not
    attempts) and never decreases.

    Indexes:
        - (notification_id, channel) unique: one record per channel
        - (status, next_retry_at) for retry sweeps
        - provider_message_id for provider callbacks
    """

    __tablename__ = "notification_delivery_tracking"

    notification_id: Mapped[UUID] = mapped_column(
        ForeignKey("notifications.id", ondelete="CASCADE"),
        nullable=False,
    )
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    provider: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
        comment="Provider the channel was routed to (e.g., 'sendgrid')",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
    )
    provider_message_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Message id returned by the provider",
    )

    # Lifecycle timestamps
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    opened_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    clicked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    bounced_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    complained_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    next_retry_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
        comment="Due time of the next retry while failed_transient",
    )

    # Errors
    error_code: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Provider error code, or the policy reason for suppressed records",
    )
    error_message: Mapped[str | None] = mapped_column(Text(), nullable=True)
    retry_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )
    provider_response: Mapped[dict[str, Any] | None] = mapped_column(JSONDocument, nullable=True)

    notification: Mapped[Notification] = relationship(back_populates="deliveries", lazy="raise")

    __table_args__ = (
        UniqueConstraint("notification_id", "channel", name="uq_delivery_tracking_channel"),
        Index("idx_delivery_tracking_retry", "status", "next_retry_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<NotificationDeliveryTracking(notification_id={self.notification_id}, "
            f"channel={self.channel!r}, status={self.status!r})>"
        )
