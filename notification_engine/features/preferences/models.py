"""SQLAlchemy models for user preferences and the suppression list."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from notification_engine.core.channels import Channel
from notification_engine.core.database import JSONDocument, UTCDateTime, UUIDTimestampedBase


class UserNotificationPreferences(UUIDTimestampedBase):
    """Per-user opt-in/out matrix.

    Written only by explicit user action; the policy gate reads it. A user
    without a row is treated as fully opted in with no caps or quiet hours.

    Quiet hours are wall-clock ``HH:MM`` values in the user's ``timezone``
    and may wrap midnight (22:00 to 07:00).
    """

    __tablename__ = "user_notification_preferences"

    user_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="User identifier",
    )

    # Channel switches
    email_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    sms_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    push_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    in_app_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")

    category_preferences: Mapped[dict[str, bool]] = mapped_column(
        JSONDocument,
        nullable=False,
        default=dict,
        comment="Per-category overrides; False disables the category",
    )
    global_opt_out: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")

    # Quiet hours (recipient-local)
    quiet_hours_start: Mapped[str | None] = mapped_column(String(5), nullable=True, comment="HH:MM")
    quiet_hours_end: Mapped[str | None] = mapped_column(String(5), nullable=True, comment="HH:MM")
    timezone: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="UTC",
        server_default="UTC",
        comment="IANA timezone used to evaluate quiet hours",
    )

    # Caps
    max_daily_notifications: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_weekly_notifications: Mapped[int | None] = mapped_column(Integer, nullable=True)

    consent_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    opt_out_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def channel_enabled(self, channel: Channel) -> bool:
        return {
            Channel.EMAIL: self.email_enabled,
            Channel.SMS: self.sms_enabled,
            Channel.PUSH: self.push_enabled,
            Channel.IN_APP: self.in_app_enabled,
        }[channel]


class NotificationSuppression(UUIDTimestampedBase):
    """Denylist entry blocking one identifier on one channel.

    Entries are deactivated rather than deleted, so the (identifier, channel)
    row is reused when the same address is suppressed again.
    """

    __tablename__ = "notification_suppressions"
    __table_args__ = (
        UniqueConstraint("identifier", "channel", name="uq_suppression_identifier_channel"),
        Index("idx_suppression_active_expires", "is_active", "expires_at"),
    )

    identifier: Mapped[str] = mapped_column(
        String(320),
        nullable=False,
        comment="Email address, phone number, device token or user id",
    )
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="bounce, complaint, unsubscribe or manual",
    )
    added_by: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Operator who added the entry; NULL for system entries",
    )
    added_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
        comment="NULL means permanent",
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")

    def is_effective(self, at: datetime) -> bool:
        return self.is_active and (self.expires_at is None or self.expires_at > at)

    def __repr__(self) -> str:
        return f"<NotificationSuppression({self.channel}:{self.identifier}, reason={self.reason!r})>"
