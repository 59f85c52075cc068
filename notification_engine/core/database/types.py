"""Custom SQLAlchemy column types.

- UTCDateTime: timezone-aware datetimes on every backend
- JSONDocument: JSONB on PostgreSQL, JSON elsewhere
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, DateTime, Text, TypeDecorator
from sqlalchemy.dialects.postgresql import JSONB

if TYPE_CHECKING:
    from sqlalchemy.engine import Dialect


class UTCDateTime(TypeDecorator):
    """DateTime column that always round-trips as an aware UTC datetime.

    SQLite has no timezone support and hands back naive values; those are
    interpreted as UTC. Naive values written by callers are rejected so a
    local wall-clock time never lands in the database silently.

    Example:
        sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if not isinstance(value, datetime):
            msg = f"UTCDateTime expects datetime, got {type(value).__name__}"
            raise TypeError(msg)
        if value.tzinfo is None:
            msg = "UTCDateTime requires timezone-aware datetimes"
            raise ValueError(msg)
        value = value.astimezone(UTC)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Any, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


JSONDocument = JSONB(astext_type=Text()).with_variant(JSON(), "sqlite")
"""JSON column type: JSONB on PostgreSQL, plain JSON on SQLite."""
