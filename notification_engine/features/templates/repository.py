"""Repositories for templates, versions and the compiled cache."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from notification_engine.core.database import BaseRepository
from notification_engine.core.exceptions import NotFoundError
from notification_engine.features.templates.models import (
    CompiledTemplate,
    Template,
    TemplateVersion,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession


class TemplateRepository(BaseRepository[Template]):
    async def get_by_name(self, session: AsyncSession, name: str) -> Template | None:
        return await self.get_by(session, Template.name, name)

    async def list_by_category(self, session: AsyncSession, category: str) -> Sequence[Template]:
        return await self.find(session, Template.category == category, order_by=Template.name)


class TemplateVersionRepository(BaseRepository[TemplateVersion]):
    async def get_version(
        self,
        session: AsyncSession,
        template_id: UUID,
        version: int,
    ) -> TemplateVersion | None:
        stmt = select(TemplateVersion).where(
            TemplateVersion.template_id == template_id,
            TemplateVersion.version == version,
        )
        result = await session.execute(stmt)
        instance = result.scalar_one_or_none()
        self._lazy.debug(
            lambda: f"db.get_version: {template_id} v{version} -> {'found' if instance else 'not found'}"
        )
        return instance

    async def get_version_or_raise(
        self,
        session: AsyncSession,
        template_id: UUID,
        version: int,
    ) -> TemplateVersion:
        instance = await self.get_version(session, template_id, version)
        if instance is None:
            raise NotFoundError("TemplateVersion", {"template_id": template_id, "version": version})
        return instance

    async def list_for_template(
        self,
        session: AsyncSession,
        template_id: UUID,
    ) -> Sequence[TemplateVersion]:
        return await self.find(
            session,
            TemplateVersion.template_id == template_id,
            order_by=TemplateVersion.version,
        )


class CompiledTemplateRepository(BaseRepository[CompiledTemplate]):
    async def get_entry(
        self,
        session: AsyncSession,
        template_id: UUID,
        version: int,
        language: str,
        channel: str,
    ) -> CompiledTemplate | None:
        stmt = select(CompiledTemplate).where(
            CompiledTemplate.template_id == template_id,
            CompiledTemplate.version == version,
            CompiledTemplate.language == language,
            CompiledTemplate.channel == channel,
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def delete_for_template(
        self,
        session: AsyncSession,
        template_id: UUID,
        version: int | None = None,
    ) -> int:
        criteria = [CompiledTemplate.template_id == template_id]
        if version is not None:
            criteria.append(CompiledTemplate.version == version)
        return await self.delete_where(session, *criteria)


_template_repository: TemplateRepository | None = None
_version_repository: TemplateVersionRepository | None = None
_compiled_repository: CompiledTemplateRepository | None = None


def get_template_repository() -> TemplateRepository:
    global _template_repository
    if _template_repository is None:
        _template_repository = TemplateRepository(Template)
    return _template_repository


def get_template_version_repository() -> TemplateVersionRepository:
    global _version_repository
    if _version_repository is None:
        _version_repository = TemplateVersionRepository(TemplateVersion)
    return _version_repository


def get_compiled_template_repository() -> CompiledTemplateRepository:
    global _compiled_repository
    if _compiled_repository is None:
        _compiled_repository = CompiledTemplateRepository(CompiledTemplate)
    return _compiled_repository
