"""Template registry service: templates, immutable versions, activation, preview."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from notification_engine.core.channels import parse_channels
from notification_engine.core.exceptions import (
    ConflictError,
    MissingVariableError,
    NotFoundError,
    SchemaValidationError,
)
from notification_engine.core.services import BaseService
from notification_engine.features.templates.compiler import TemplateCompiler
from notification_engine.features.templates.metrics import template_render_total
from notification_engine.features.templates.models import Template, TemplateVersion
from notification_engine.features.templates.renderer import TemplateRenderer, iter_payloads
from notification_engine.features.templates.repository import (
    get_template_repository,
    get_template_version_repository,
)
from notification_engine.features.templates.schemas import (
    TemplateCreate,
    TemplateRead,
    TemplateVersionCreate,
    TemplateVersionRead,
)

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from notification_engine.core.clock import Clock
    from notification_engine.core.settings.templates import TemplateSettings
    from notification_engine.features.templates.schemas import (
        CompiledTemplateView,
        RenderedContent,
    )


class TemplateService(BaseService):
    """Registry and compiler front door.

    Example:
        service = TemplateService(session_factory)
        template = await service.create_template(TemplateCreate(...))
        await service.create_version(template.id, TemplateVersionCreate(version=1, content=...))
        await service.activate_version(template.id, 1)
        compiled = await service.compile(template.id, 1, "en", "email")
        rendered = service.render_for_recipient(compiled, {"name": "Ada"})
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        compiler: TemplateCompiler | None = None,
        renderer: TemplateRenderer | None = None,
        clock: Clock | None = None,
        settings: TemplateSettings | None = None,
    ) -> None:
        super().__init__()
        self._session_factory = session_factory
        self.compiler = compiler or TemplateCompiler(session_factory, clock=clock, settings=settings)
        self.renderer = renderer or TemplateRenderer(settings or self.compiler.settings)
        self._templates = get_template_repository()
        self._versions = get_template_version_repository()

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    async def create_template(self, data: TemplateCreate) -> TemplateRead:
        """Register a template with no versions.

        Raises:
            ConflictError: The name is taken.
            SchemaValidationError: default_language not in languages, or an
                invalid variable_schema.
            UnsupportedChannelError: An unknown channel was listed.
        """
        channels = [str(c) for c in parse_channels(data.channels)]
        if data.default_language not in data.languages:
            msg = f"default_language {data.default_language!r} must be one of languages"
            raise SchemaValidationError(msg, errors=["default_language"])
        if data.variable_schema is not None:
            self.renderer.check_variable_schema(data.variable_schema)

        async with self._session_factory() as session:
            if await self._templates.get_by_name(session, data.name) is not None:
                raise ConflictError(f"Template {data.name!r} already exists", extra={"name": data.name})

            template = Template(
                name=data.name,
                category=data.category,
                channels=channels,
                languages=data.languages,
                default_language=data.default_language,
                required_variables=data.required_variables,
                optional_variables=data.optional_variables,
                variable_schema=data.variable_schema,
                description=data.description,
                active_version=None,
            )
            await self._templates.create(session, template)
            await session.commit()

        self.logger.info(
            "Template created",
            extra={
                "template_id": str(template.id),
                "template_name": template.name,
                "channels": channels,
                "operation": "service.create_template",
            },
        )
        return TemplateRead.model_validate(template)

    async def get_template(self, template_id: UUID) -> TemplateRead:
        async with self._session_factory() as session:
            template = await self._templates.get_or_raise(session, template_id)
            return TemplateRead.model_validate(template)

    async def get_template_by_name(self, name: str) -> TemplateRead:
        async with self._session_factory() as session:
            template = await self._templates.get_by_name(session, name)
            if template is None:
                raise NotFoundError("Template", {"name": name})
            return TemplateRead.model_validate(template)

    async def list_templates(self, *, category: str | None = None) -> list[TemplateRead]:
        async with self._session_factory() as session:
            if category is None:
                templates: Sequence[Template] = await self._templates.list(session, limit=1000)
            else:
                templates = await self._templates.list_by_category(session, category)
            return [TemplateRead.model_validate(t) for t in templates]

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    async def create_version(self, template_id: UUID, data: TemplateVersionCreate) -> TemplateVersionRead:
        """Store an immutable content version verbatim.

        Raises:
            NotFoundError: Unknown template.
            ConflictError: The version number already exists for this template.
            SchemaValidationError: Malformed content or template syntax errors.
        """
        self.renderer.check_syntax(data.content)

        async with self._session_factory() as session:
            template = await self._templates.get_or_raise(session, template_id)
            if await self._versions.get_version(session, template_id, data.version) is not None:
                raise ConflictError(
                    f"Version {data.version} of template {template.name!r} already exists",
                    extra={"template_id": str(template_id), "version": data.version},
                )

            unknown = sorted({channel for channel, _, _ in iter_payloads(data.content)} - set(template.channels))
            if unknown:
                self.logger.warning(
                    "Version content has channels the template does not declare",
                    extra={
                        "template_id": str(template_id),
                        "version": data.version,
                        "channels": unknown,
                        "operation": "service.create_version",
                    },
                )

            version = TemplateVersion(
                template_id=template_id,
                version=data.version,
                content=data.content,
                changelog=data.changelog,
            )
            await self._versions.create(session, version)
            await session.commit()

        self.logger.info(
            "Template version created",
            extra={
                "template_id": str(template_id),
                "version": data.version,
                "operation": "service.create_version",
            },
        )
        return TemplateVersionRead.model_validate(version)

    async def activate_version(self, template_id: UUID, version: int) -> TemplateRead:
        """Point the template at ``version``.

        Compiled entries of the previously active version stay cached; versions
        are immutable, so those rows remain correct for notifications that
        pinned that version.

        Raises:
            NotFoundError: Unknown template, unknown version, or a retired version.
        """
        async with self._session_factory() as session:
            template = await self._templates.get_or_raise(session, template_id)
            target = await self._versions.get_version(session, template_id, version)
            if target is None or not target.is_active:
                raise NotFoundError("TemplateVersion", {"template_id": template_id, "version": version})

            previous = template.active_version
            template.active_version = version
            await session.commit()

        self.logger.info(
            "Template version activated",
            extra={
                "template_id": str(template_id),
                "version": version,
                "previous_version": previous,
                "operation": "service.activate_version",
            },
        )
        return TemplateRead.model_validate(template)

    async def retire_version(self, template_id: UUID, version: int) -> TemplateVersionRead:
        """Mark a version inactive so it can no longer be activated.

        Raises:
            NotFoundError: Unknown template or version.
            ConflictError: The version is currently active.
        """
        async with self._session_factory() as session:
            template = await self._templates.get_or_raise(session, template_id)
            target = await self._versions.get_version_or_raise(session, template_id, version)
            if template.active_version == version:
                raise ConflictError(
                    f"Version {version} is active and cannot be retired",
                    extra={"template_id": str(template_id), "version": version},
                )
            target.is_active = False
            await session.commit()

        self.logger.info(
            "Template version retired",
            extra={"template_id": str(template_id), "version": version, "operation": "service.retire_version"},
        )
        return TemplateVersionRead.model_validate(target)

    async def list_versions(self, template_id: UUID) -> list[TemplateVersionRead]:
        async with self._session_factory() as session:
            await self._templates.get_or_raise(session, template_id)
            versions = await self._versions.list_for_template(session, template_id)
            return [TemplateVersionRead.model_validate(v) for v in versions]

    # ------------------------------------------------------------------
    # Compile / render
    # ------------------------------------------------------------------

    async def compile(
        self,
        template_id: UUID,
        version: int | None,
        language: str,
        channel: str,
    ) -> CompiledTemplateView:
        return await self.compiler.compile(template_id, version, language, channel)

    async def invalidate_compiled(self, template_id: UUID, version: int | None = None) -> int:
        return await self.compiler.invalidate(template_id, version)

    def render_for_recipient(
        self,
        compiled: CompiledTemplateView,
        variables: Mapping[str, Any],
    ) -> RenderedContent:
        """Validate variables against the compiled contract and render. Never cached."""
        try:
            rendered = self.renderer.render(compiled, variables)
        except MissingVariableError:
            template_render_total.labels(channel=compiled.channel, outcome="missing_variable").inc()
            raise
        except SchemaValidationError:
            template_render_total.labels(channel=compiled.channel, outcome="schema_error").inc()
            raise
        template_render_total.labels(channel=compiled.channel, outcome="success").inc()
        return rendered

    async def preview(
        self,
        template_id: UUID,
        *,
        language: str,
        channel: str,
        variables: Mapping[str, Any],
        version: int | None = None,
    ) -> RenderedContent:
        """Compile and render without creating a notification."""
        compiled = await self.compile(template_id, version, language, channel)
        return self.render_for_recipient(compiled, variables)
