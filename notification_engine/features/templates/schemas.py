"""Pydantic schemas for the template registry."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ============================================================================
# Template Schemas
# ============================================================================


class TemplateCreate(BaseModel):
    """Payload for registering a template."""

    name: str = Field(..., min_length=1, max_length=100, description="Unique template identifier")
    category: str = Field(..., min_length=1, max_length=100, description="Notification category")
    channels: list[str] = Field(..., min_length=1, description="Supported channels")
    languages: list[str] = Field(..., min_length=1, description="Supported languages")
    default_language: str = Field(..., min_length=2, max_length=16)
    required_variables: list[str] = Field(default_factory=list)
    optional_variables: list[str] = Field(default_factory=list)
    variable_schema: dict[str, Any] | None = Field(
        default=None,
        description="JSON Schema validated against the variables of every rendering",
    )
    description: str | None = Field(default=None, max_length=500)

    @field_validator("languages", "required_variables", "optional_variables")
    @classmethod
    def _dedupe(cls, values: list[str]) -> list[str]:
        return list(dict.fromkeys(values))


class TemplateRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    category: str
    channels: list[str]
    languages: list[str]
    default_language: str
    active_version: int | None
    required_variables: list[str]
    optional_variables: list[str]
    variable_schema: dict[str, Any] | None
    description: str | None
    is_active: bool
    created_at: datetime
    updated_at: datetime


# ============================================================================
# Version Schemas
# ============================================================================


class TemplateVersionCreate(BaseModel):
    """Payload for adding an immutable content version."""

    version: int = Field(..., ge=1)
    content: dict[str, Any] = Field(..., description="channel -> language -> payload")
    changelog: str | None = Field(default=None, max_length=2000)


class TemplateVersionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    template_id: UUID
    version: int
    content: dict[str, Any]
    changelog: str | None
    is_active: bool
    created_at: datetime


# ============================================================================
# Compiled / Rendered
# ============================================================================


class CompiledTemplateView(BaseModel):
    """Detached, immutable view of a compiled cache entry.

    Shared between concurrent compile callers, so it carries no ORM state.
    """

    model_config = ConfigDict(from_attributes=True, frozen=True)

    template_id: UUID
    version: int
    language: str
    channel: str
    compiled_content: dict[str, str]
    required_variables: list[str]
    variable_schema: dict[str, Any] | None = None
    compiled_at: datetime
    expires_at: datetime | None = None

    @property
    def key(self) -> tuple[UUID, int, str, str]:
        return (self.template_id, self.version, self.language, self.channel)


class RenderedContent(BaseModel):
    """Content ready to hand to a Sender."""

    model_config = ConfigDict(frozen=True)

    channel: str
    fields: dict[str, str]
    segments: int | None = Field(default=None, description="SMS segment count")
    truncated: bool = False

    def get(self, name: str, default: str | None = None) -> str | None:
        return self.fields.get(name, default)
