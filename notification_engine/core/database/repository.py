"""Minimal generic repository for SQLAlchemy models.

Provides basic CRUD operations with explicit session passing. For complex
queries, subclasses use the session directly.

Example:
    class TemplateRepository(BaseRepository[Template]):
        async def get_by_name(self, session: AsyncSession, name: str) -> Template | None:
            return await self.get_by(session, Template.name, name)

    repo = TemplateRepository(Template)
    template = await repo.get_or_raise(session, template_id)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy import delete as sql_delete
from sqlalchemy.exc import IntegrityError

from notification_engine.core.exceptions import ConflictError, NotFoundError
from notification_engine.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sqlalchemy import ColumnElement, Select
    from sqlalchemy.ext.asyncio import AsyncSession
    from sqlalchemy.orm import InstrumentedAttribute


class BaseRepository[T]:
    """Generic repository for CRUD operations.

    Provides:
        - get(session, id) -> T | None
        - get_or_raise(session, id) -> T (raises NotFoundError)
        - get_by(session, attr, value) -> T | None
        - find(session, *criteria) -> Sequence[T]
        - list(session, limit, offset) -> Sequence[T]
        - count(session, *criteria) -> int
        - create(session, instance) -> T (raises ConflictError on unique violations)
        - create_many(session, instances) -> Sequence[T]
        - delete(session, instance) -> None
        - delete_where(session, *criteria) -> int

    Session is always explicit; the repository holds no state besides the model.
    """

    __slots__ = ("model", "_logger", "_lazy")

    def __init__(self, model: type[T]) -> None:
        self.model = model
        self._logger = logging.getLogger(f"repository.{model.__name__}")
        self._lazy = get_lazy_logger(f"repository.{model.__name__}")

    async def get(
        self,
        session: AsyncSession,
        id: Any,  # noqa: A002
        *,
        options: Iterable[Any] | None = None,
        for_update: bool = False,
    ) -> T | None:
        """Get entity by primary key.

        Args:
            session: Database session
            id: Primary key value
            options: SQLAlchemy loader options (e.g., selectinload)
            for_update: Lock the row (SELECT ... FOR UPDATE where supported)
        """
        if options or for_update:
            stmt = select(self.model).where(self.model.id == id)  # type: ignore[attr-defined]
            if options:
                stmt = stmt.options(*options)
            if for_update:
                stmt = stmt.with_for_update()
            result = await session.execute(stmt)
            instance = result.scalar_one_or_none()
        else:
            instance = await session.get(self.model, id)

        self._lazy.debug(
            lambda: f"db.get: {self.model.__name__}({id}) -> {'found' if instance else 'not found'}"
        )
        return instance

    async def get_or_raise(
        self,
        session: AsyncSession,
        id: Any,  # noqa: A002
        *,
        options: Iterable[Any] | None = None,
        for_update: bool = False,
    ) -> T:
        """Get entity by primary key or raise NotFoundError."""
        instance = await self.get(session, id, options=options, for_update=for_update)
        if instance is None:
            self._logger.info(
                "Entity not found",
                extra={
                    "entity": self.model.__name__,
                    "id": str(id),
                    "operation": "db.get_or_raise",
                },
            )
            raise NotFoundError(self.model.__name__, {"id": id})
        return instance

    async def get_by(
        self,
        session: AsyncSession,
        attr: InstrumentedAttribute[Any],
        value: Any,
    ) -> T | None:
        """Get entity by arbitrary (unique) attribute."""
        result = await session.execute(select(self.model).where(attr == value))
        instance = result.scalar_one_or_none()

        self._lazy.debug(
            lambda: f"db.get_by: {self.model.__name__}.{attr.key}={value!r} -> {'found' if instance else 'not found'}"
        )
        return instance

    async def find(
        self,
        session: AsyncSession,
        *criteria: ColumnElement[bool],
        order_by: Any = None,
    ) -> Sequence[T]:
        """Return every entity matching all criteria."""
        stmt: Select[tuple[T]] = select(self.model).where(*criteria)
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        result = await session.execute(stmt)
        items = result.scalars().all()

        self._lazy.debug(lambda: f"db.find: {self.model.__name__} -> {len(items)} items")
        return items

    async def list(
        self,
        session: AsyncSession,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> Sequence[T]:
        """List entities with pagination."""
        result = await session.execute(select(self.model).limit(limit).offset(offset))
        items = result.scalars().all()

        self._lazy.debug(
            lambda: f"db.list: {self.model.__name__}(limit={limit}, offset={offset}) -> {len(items)} items"
        )
        return items

    async def count(self, session: AsyncSession, *criteria: ColumnElement[bool]) -> int:
        stmt = select(func.count()).select_from(self.model).where(*criteria)
        return (await session.execute(stmt)).scalar_one()

    async def create(self, session: AsyncSession, instance: T) -> T:
        """Persist a new entity.

        Flushes to surface unique-constraint violations immediately; they are
        re-raised as ConflictError. The session is unusable afterwards and
        callers must roll back.
        """
        session.add(instance)
        try:
            await session.flush()
        except IntegrityError as exc:
            self._logger.info(
                "Unique constraint violated",
                extra={"entity": self.model.__name__, "operation": "db.create"},
            )
            raise ConflictError(
                f"{self.model.__name__} already exists",
                extra={"entity": self.model.__name__},
            ) from exc
        await session.refresh(instance)

        entity_id = getattr(instance, "id", None)
        self._lazy.debug(lambda: f"db.create: {self.model.__name__}(id={entity_id})")
        return instance

    async def create_many(self, session: AsyncSession, instances: Iterable[T]) -> Sequence[T]:
        instances_list = list(instances)
        session.add_all(instances_list)
        await session.flush()
        for instance in instances_list:
            await session.refresh(instance)

        self._lazy.debug(
            lambda: f"db.create_many: {self.model.__name__} -> {len(instances_list)} created"
        )
        return instances_list

    async def delete(self, session: AsyncSession, instance: T) -> None:
        entity_id = getattr(instance, "id", None)
        await session.delete(instance)
        await session.flush()

        self._logger.info(
            "Entity deleted",
            extra={"entity": self.model.__name__, "id": str(entity_id), "operation": "db.delete"},
        )

    async def delete_where(self, session: AsyncSession, *criteria: ColumnElement[bool]) -> int:
        """Delete every row matching criteria in one statement.

        Returns:
            Number of rows deleted
        """
        result = await session.execute(sql_delete(self.model).where(*criteria))
        await session.flush()
        deleted_count: int = result.rowcount if hasattr(result, "rowcount") else 0

        if deleted_count > 10:
            self._logger.warning(
                "Bulk delete executed",
                extra={
                    "entity": self.model.__name__,
                    "deleted": deleted_count,
                    "operation": "db.delete_where",
                },
            )
        else:
            self._lazy.debug(
                lambda: f"db.delete_where: {self.model.__name__} -> {deleted_count} deleted"
            )
        return deleted_count
