"""Template compilation settings."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TemplateSettings(BaseSettings):
    """Compiled template cache and rendering options.

    Environment variables use TEMPLATE_ prefix.
    Example: TEMPLATE_COMPILED_TTL_SECONDS=3600
    """

    compiled_ttl_seconds: int | None = Field(
        default=None,
        ge=1,
        description="Lifetime of a compiled template cache row. None keeps entries until invalidated.",
    )

    sms_max_segments: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Rendered SMS bodies longer than this many segments are truncated",
    )

    autoescape_html: bool = Field(
        default=True,
        description="HTML-escape variables rendered into 'html' payload fields",
    )

    model_config = SettingsConfigDict(
        env_prefix="TEMPLATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        populate_by_name=True,
        extra="ignore",
        env_ignore_empty=True,
    )
