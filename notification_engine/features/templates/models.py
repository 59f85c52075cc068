"""SQLAlchemy models for the template registry and compiled cache."""

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


class Template(UUIDTimestampedBase):
    """Logical message definition.

    Declares which channels and languages the message exists in, the
    variables every rendering needs, and an optional JSON Schema the
    variables must satisfy. Content lives in immutable TemplateVersion rows;
    ``active_version`` points at the one new notifications use.
    """

    __tablename__ = "notification_templates"

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
        comment="Unique template identifier (e.g., 'order_shipped')",
    )
    category: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="Notification category used for preference overrides",
    )
    channels: Mapped[list[str]] = mapped_column(
        JSONDocument,
        nullable=False,
        default=list,
        comment="Channels this template can render for",
    )
    languages: Mapped[list[str]] = mapped_column(
        JSONDocument,
        nullable=False,
        default=list,
        comment="Languages this template can render in",
    )
    default_language: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="Fallback language; always one of languages",
    )
    active_version: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="Version number used when a notification does not pin one",
    )
    required_variables: Mapped[list[str]] = mapped_column(
        JSONDocument,
        nullable=False,
        default=list,
        comment="Variables every rendering must supply",
    )
    optional_variables: Mapped[list[str]] = mapped_column(
        JSONDocument,
        nullable=False,
        default=list,
        comment="Variables a rendering may supply",
    )
    variable_schema: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="JSON Schema the variables map must validate against",
    )
    description: Mapped[str | None] = mapped_column(Text(), nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default="1",
    )

    versions: Mapped[list[TemplateVersion]] = relationship(
        back_populates="template",
        order_by="TemplateVersion.version",
        lazy="raise",
    )

    def __repr__(self) -> str:
        return f"<Template(name={self.name!r}, active_version={self.active_version})>"


class TemplateVersion(UUIDTimestampedBase):
    """Immutable content snapshot of a template.

    ``content`` maps channel to language to payload, with an optional
    per-channel ``required_variables`` list:

        {"email": {"en": {"subject": "Hi", "body": "Hi {{ name }}"},
                   "required_variables": ["name"]}}

    Corrections create a new version; ``is_active`` only marks a version as
    retired.
    """

    __tablename__ = "notification_template_versions"
    __table_args__ = (UniqueConstraint("template_id", "version", name="uq_template_version"),)

    template_id: Mapped[UUID] = mapped_column(
        ForeignKey("notification_templates.id"),
        nullable=False,
        index=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[dict[str, Any]] = mapped_column(
        JSONDocument,
        nullable=False,
        comment="Per-channel, per-language payloads (never mutated)",
    )
    changelog: Mapped[str | None] = mapped_column(Text(), nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default="1",
    )

    template: Mapped[Template] = relationship(back_populates="versions", lazy="raise")

    def __repr__(self) -> str:
        return f"<TemplateVersion(template_id={self.template_id}, version={self.version})>"


class CompiledTemplate(UUIDTimestampedBase):
    """Cache row holding one channel/language payload ready for rendering.

    Not a source of truth: rows may be deleted at any time and are rebuilt
    from the TemplateVersion on the next compile.
    """

    __tablename__ = "notification_compiled_templates"
    __table_args__ = (
        UniqueConstraint(
            "template_id",
            "version",
            "language",
            "channel",
            name="uq_compiled_template_key",
        ),
        Index("idx_compiled_template_expires", "expires_at"),
    )

    template_id: Mapped[UUID] = mapped_column(
        ForeignKey("notification_templates.id"),
        nullable=False,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    language: Mapped[str] = mapped_column(String(16), nullable=False)
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    compiled_content: Mapped[dict[str, str]] = mapped_column(
        JSONDocument,
        nullable=False,
        comment="Field name to template source, placeholders unresolved",
    )
    required_variables: Mapped[list[str]] = mapped_column(
        JSONDocument,
        nullable=False,
        default=list,
        comment="Required variable snapshot taken at compile time",
    )
    variable_schema: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="Template variable_schema snapshot taken at compile time",
    )
    compiled_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
        comment="NULL means the entry never expires",
    )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now
