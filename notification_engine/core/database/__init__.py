"""Core database package: declarative base, column types and repository.

Base Classes and Mixins:
    - Base: declarative base with constraint naming convention
    - UUIDv7PKMixin, TimestampMixin, UUIDTimestampedBase

Types:
    - UTCDateTime: aware UTC datetimes on every backend
    - JSONDocument: JSONB on PostgreSQL, JSON on SQLite

Repository:
    - BaseRepository[T]: generic CRUD with explicit session passing
"""

from __future__ import annotations

from .base import (
    NAMING_CONVENTION,
    Base,
    TimestampMixin,
    UUIDTimestampedBase,
    UUIDv7PKMixin,
    generate_uuid7,
    utcnow,
)
from .repository import BaseRepository
from .types import JSONDocument, UTCDateTime

__all__ = [
    "NAMING_CONVENTION",
    "Base",
    "BaseRepository",
    "JSONDocument",
    "TimestampMixin",
    "UTCDateTime",
    "UUIDTimestampedBase",
    "UUIDv7PKMixin",
    "generate_uuid7",
    "utcnow",
]
