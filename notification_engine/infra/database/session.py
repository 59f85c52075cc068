"""Async engine and session factory construction."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from notification_engine.core.settings import get_db_settings

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncEngine

    from notification_engine.core.settings.database import DatabaseSettings

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_conn: Any, connection_record: Any) -> None:
    _ = connection_record
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(settings: DatabaseSettings | None = None, *, url: str | None = None) -> AsyncEngine:
    """Create an async engine from DatabaseSettings.

    Args:
        settings: Database settings; defaults to the cached DB_* settings.
        url: Override the configured URL (tests, migrations).
    """
    settings = settings or get_db_settings()
    target = url or settings.url
    kwargs = settings.sqlalchemy_engine_kwargs() if url is None else {"echo": settings.echo}
    engine = create_async_engine(target, **kwargs)

    if engine.dialect.name == "sqlite":
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

    logger.info(
        "Database engine created",
        extra={"dialect": engine.dialect.name, "operation": "db.build_engine"},
    )
    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory used by every service (one session per operation)."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables directly from model metadata.

    Intended for tests and throwaway databases; deployed databases are
    managed by Alembic.
    """
    from notification_engine import models  # noqa: F401  (registers mappers)
    from notification_engine.core.database import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Transactional scope: commit on success, roll back on error.

    Example:
        async with session_scope(factory) as session:
            session.add(entity)
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except BaseException:
            await session.rollback()
            raise
