"""initial schema

Revision ID: 0a1b2c3d4e5f
Revises:
Create Date: 2026-01-01 00:00:00.000000+00:00

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0a1b2c3d4e5f"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSONDocument = postgresql.JSONB(astext_type=sa.Text()).with_variant(sa.JSON(), "sqlite")


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Uuid(), nullable=False, comment="UUID v7 primary key (time-sortable)"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("(CURRENT_TIMESTAMP)"),
            nullable=False,
            comment="Timestamp of record creation",
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("(CURRENT_TIMESTAMP)"),
            nullable=False,
            comment="Timestamp of last update",
        ),
    ]


def upgrade() -> None:
    """Create template, notification, preference and suppression tables."""
    op.create_table(
        "notification_templates",
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("channels", JSONDocument, nullable=False),
        sa.Column("languages", JSONDocument, nullable=False),
        sa.Column("default_language", sa.String(length=16), nullable=False),
        sa.Column("active_version", sa.Integer(), nullable=True),
        sa.Column("required_variables", JSONDocument, nullable=False),
        sa.Column("optional_variables", JSONDocument, nullable=False),
        sa.Column("variable_schema", JSONDocument, nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default="1", nullable=False),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_notification_templates")),
        sa.UniqueConstraint("name", name=op.f("uq_notification_templates_name")),
    )
    op.create_index(
        op.f("ix_notification_templates_category"), "notification_templates", ["category"], unique=False
    )

    op.create_table(
        "notification_template_versions",
        sa.Column("template_id", sa.Uuid(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("content", JSONDocument, nullable=False),
        sa.Column("changelog", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default="1", nullable=False),
        *_base_columns(),
        sa.ForeignKeyConstraint(
            ["template_id"],
            ["notification_templates.id"],
            name=op.f("fk_notification_template_versions_template_id_notification_templates"),
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_notification_template_versions")),
        sa.UniqueConstraint("template_id", "version", name="uq_template_version"),
    )
    op.create_index(
        op.f("ix_notification_template_versions_template_id"),
        "notification_template_versions",
        ["template_id"],
        unique=False,
    )

    op.create_table(
        "notification_compiled_templates",
        sa.Column("template_id", sa.Uuid(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("language", sa.String(length=16), nullable=False),
        sa.Column("channel", sa.String(length=20), nullable=False),
        sa.Column("compiled_content", JSONDocument, nullable=False),
        sa.Column("required_variables", JSONDocument, nullable=False),
        sa.Column("variable_schema", JSONDocument, nullable=True),
        sa.Column("compiled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        *_base_columns(),
        sa.ForeignKeyConstraint(
            ["template_id"],
            ["notification_templates.id"],
            name=op.f("fk_notification_compiled_templates_template_id_notification_templates"),
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_notification_compiled_templates")),
        sa.UniqueConstraint("template_id", "version", "language", "channel", name="uq_compiled_template_key"),
    )
    op.create_index("idx_compiled_template_expires", "notification_compiled_templates", ["expires_at"], unique=False)

    op.create_table(
        "notifications",
        sa.Column("user_id", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("device_token", sa.String(length=512), nullable=True),
        sa.Column("template_id", sa.Uuid(), nullable=True),
        sa.Column("template_version", sa.Integer(), nullable=True),
        sa.Column("language", sa.String(length=16), nullable=False),
        sa.Column("channels", JSONDocument, nullable=False),
        sa.Column("priority", sa.String(length=10), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=True),
        sa.Column("content", JSONDocument, nullable=True),
        sa.Column("variables", JSONDocument, nullable=False),
        sa.Column("rendered_content", JSONDocument, nullable=True),
        sa.Column("status", sa.String(length=24), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_dispatch_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("tracking_enabled", sa.Boolean(), server_default="1", nullable=False),
        sa.Column("from_service", sa.String(length=100), nullable=True),
        sa.Column("from_user_id", sa.String(length=255), nullable=True),
        sa.Column("tags", JSONDocument, nullable=False),
        *_base_columns(),
        sa.ForeignKeyConstraint(
            ["template_id"],
            ["notification_templates.id"],
            name=op.f("fk_notifications_template_id_notification_templates"),
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_notifications")),
    )
    op.create_index(op.f("ix_notifications_user_id"), "notifications", ["user_id"], unique=False)
    op.create_index(op.f("ix_notifications_template_id"), "notifications", ["template_id"], unique=False)
    op.create_index(op.f("ix_notifications_category"), "notifications", ["category"], unique=False)
    op.create_index(op.f("ix_notifications_status"), "notifications", ["status"], unique=False)
    op.create_index("idx_notification_status_scheduled", "notifications", ["status", "scheduled_at"], unique=False)
    op.create_index("idx_notification_next_dispatch", "notifications", ["next_dispatch_at"], unique=False)

    op.create_table(
        "notification_delivery_tracking",
        sa.Column("notification_id", sa.Uuid(), nullable=False),
        sa.Column("channel", sa.String(length=20), nullable=False),
        sa.Column("provider", sa.String(length=50), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("provider_message_id", sa.String(length=255), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("opened_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("clicked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("bounced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("complained_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_code", sa.String(length=100), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("provider_response", JSONDocument, nullable=True),
        *_base_columns(),
        sa.ForeignKeyConstraint(
            ["notification_id"],
            ["notifications.id"],
            name=op.f("fk_notification_delivery_tracking_notification_id_notifications"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_notification_delivery_tracking")),
        sa.UniqueConstraint("notification_id", "channel", name="uq_delivery_tracking_channel"),
    )
    op.create_index(
        op.f("ix_notification_delivery_tracking_status"), "notification_delivery_tracking", ["status"], unique=False
    )
    op.create_index(
        op.f("ix_notification_delivery_tracking_provider_message_id"),
        "notification_delivery_tracking",
        ["provider_message_id"],
        unique=False,
    )
    op.create_index(
        "idx_delivery_tracking_retry", "notification_delivery_tracking", ["status", "next_retry_at"], unique=False
    )

    op.create_table(
        "user_notification_preferences",
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("email_enabled", sa.Boolean(), server_default="1", nullable=False),
        sa.Column("sms_enabled", sa.Boolean(), server_default="1", nullable=False),
        sa.Column("push_enabled", sa.Boolean(), server_default="1", nullable=False),
        sa.Column("in_app_enabled", sa.Boolean(), server_default="1", nullable=False),
        sa.Column("category_preferences", JSONDocument, nullable=False),
        sa.Column("global_opt_out", sa.Boolean(), server_default="0", nullable=False),
        sa.Column("quiet_hours_start", sa.String(length=5), nullable=True),
        sa.Column("quiet_hours_end", sa.String(length=5), nullable=True),
        sa.Column("timezone", sa.String(length=64), server_default="UTC", nullable=False),
        sa.Column("max_daily_notifications", sa.Integer(), nullable=True),
        sa.Column("max_weekly_notifications", sa.Integer(), nullable=True),
        sa.Column("consent_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("opt_out_date", sa.DateTime(timezone=True), nullable=True),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_user_notification_preferences")),
        sa.UniqueConstraint("user_id", name=op.f("uq_user_notification_preferences_user_id")),
    )

    op.create_table(
        "notification_suppressions",
        sa.Column("identifier", sa.String(length=320), nullable=False),
        sa.Column("channel", sa.String(length=20), nullable=False),
        sa.Column("reason", sa.String(length=50), nullable=False),
        sa.Column("added_by", sa.String(length=255), nullable=True),
        sa.Column("added_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default="1", nullable=False),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_notification_suppressions")),
        sa.UniqueConstraint("identifier", "channel", name="uq_suppression_identifier_channel"),
    )
    op.create_index(
        "idx_suppression_active_expires", "notification_suppressions", ["is_active", "expires_at"], unique=False
    )


def downgrade() -> None:
    """Drop every engine table."""
    op.drop_index("idx_suppression_active_expires", table_name="notification_suppressions")
    op.drop_table("notification_suppressions")
    op.drop_table("user_notification_preferences")

    op.drop_index("idx_delivery_tracking_retry", table_name="notification_delivery_tracking")
    op.drop_index(
        op.f("ix_notification_delivery_tracking_provider_message_id"), table_name="notification_delivery_tracking"
    )
    op.drop_index(op.f("ix_notification_delivery_tracking_status"), table_name="notification_delivery_tracking")
    op.drop_table("notification_delivery_tracking")

    op.drop_index("idx_notification_next_dispatch", table_name="notifications")
    op.drop_index("idx_notification_status_scheduled", table_name="notifications")
    op.drop_index(op.f("ix_notifications_status"), table_name="notifications")
    op.drop_index(op.f("ix_notifications_category"), table_name="notifications")
    op.drop_index(op.f("ix_notifications_template_id"), table_name="notifications")
    op.drop_index(op.f("ix_notifications_user_id"), table_name="notifications")
    op.drop_table("notifications")

    op.drop_index("idx_compiled_template_expires", table_name="notification_compiled_templates")
    op.drop_table("notification_compiled_templates")

    op.drop_index(op.f("ix_notification_template_versions_template_id"), table_name="notification_template_versions")
    op.drop_table("notification_template_versions")

    op.drop_index(op.f("ix_notification_templates_category"), table_name="notification_templates")
    op.drop_table("notification_templates")
