"""Compiled template cache with per-key singleflight.

A compile request for (template, version, language, channel) is answered
from the ``notification_compiled_templates`` table when an unexpired row
exists. Otherwise one caller (the leader) builds the row while concurrent
callers for the same key await the leader's result.
"""

from __future__ import annotations

import time
from datetime import timedelta
from typing import TYPE_CHECKING, Any
from uuid import UUID

from notification_engine.core.channels import Channel, parse_channel
from notification_engine.core.clock import get_clock
from notification_engine.core.exceptions import (
    ConflictError,
    NotFoundError,
    UnsupportedChannelError,
    UnsupportedLanguageError,
)
from notification_engine.core.services import BaseService
from notification_engine.features.templates.metrics import (
    template_cache_invalidated_total,
    template_compile_duration_seconds,
    template_compile_total,
)
from notification_engine.features.templates.models import CompiledTemplate
from notification_engine.features.templates.renderer import normalize_payload
from notification_engine.features.templates.repository import (
    get_compiled_template_repository,
    get_template_repository,
    get_template_version_repository,
)
from notification_engine.features.templates.schemas import CompiledTemplateView
from notification_engine.utils.singleflight import SingleFlight

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from notification_engine.core.clock import Clock
    from notification_engine.core.settings.templates import TemplateSettings
    from notification_engine.features.templates.models import Template, TemplateVersion

CompileKey = tuple[UUID, int, str, str]


def resolve_payload(
    template: Template,
    version: TemplateVersion,
    language: str,
    channel: Channel,
) -> tuple[dict[str, str], list[str]]:
    """Pick the payload for a language/channel and the effective required variables.

    Falls back to the template's default language when the version has no
    payload for ``language``.

    Raises:
        UnsupportedChannelError: The template or version has no content for the channel.
        UnsupportedLanguageError: The template does not list the language, or
            neither it nor the default language has a payload.
    """
    if channel not in template.channels:
        raise UnsupportedChannelError(channel, template.name)
    if language not in template.languages:
        raise UnsupportedLanguageError(template.name, language)

    by_language: dict[str, Any] | None = version.content.get(channel)
    if not by_language:
        raise UnsupportedChannelError(channel, template.name)

    payload = by_language.get(language)
    if payload is None:
        payload = by_language.get(template.default_language)
    if payload is None:
        raise UnsupportedLanguageError(template.name, language)

    declared = by_language.get("required_variables") or []
    required = list(dict.fromkeys([*template.required_variables, *declared]))
    return normalize_payload(payload, where=f"{channel}.{language}"), required


class TemplateCompiler(BaseService):
    """Builds and caches CompiledTemplate rows.

    ``compile_invocations`` counts how many times a payload was actually
    built (cache misses that reached the leader), for observability and tests.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Clock | None = None,
        settings: TemplateSettings | None = None,
    ) -> None:
        super().__init__()
        if settings is None:
            from notification_engine.core.settings import get_template_settings

            settings = get_template_settings()
        self._session_factory = session_factory
        self._clock = clock or get_clock()
        self.settings = settings
        self._templates = get_template_repository()
        self._versions = get_template_version_repository()
        self._compiled = get_compiled_template_repository()
        self._flight: SingleFlight[CompileKey, CompiledTemplateView] = SingleFlight()
        self.compile_invocations = 0

    @property
    def ttl(self) -> timedelta | None:
        seconds = self.settings.compiled_ttl_seconds
        return timedelta(seconds=seconds) if seconds else None

    async def compile(
        self,
        template_id: UUID,
        version: int | None,
        language: str,
        channel: str | Channel,
    ) -> CompiledTemplateView:
        """Return the compiled entry for a key, building it on a miss.

        Args:
            template_id: Template to compile.
            version: Version number; ``None`` means the template's active version.
            language: Requested language.
            channel: Requested channel.

        Raises:
            NotFoundError: Unknown template or version, or no active version.
            UnsupportedChannelError / UnsupportedLanguageError: See resolve_payload.
        """
        channel = parse_channel(channel)

        async with self._session_factory() as session:
            if version is None:
                template = await self._templates.get_or_raise(session, template_id)
                if template.active_version is None:
                    raise NotFoundError("TemplateVersion", {"template_id": template_id, "version": "active"})
                version = template.active_version

            entry = await self._compiled.get_entry(session, template_id, version, language, channel)
            if entry is not None and not entry.is_expired(self._clock.now()):
                template_compile_total.labels(channel=channel, outcome="hit").inc()
                self._lazy.debug(lambda: f"compile hit: {template_id} v{version} {language}/{channel}")
                return CompiledTemplateView.model_validate(entry)

        key: CompileKey = (template_id, version, language, str(channel))
        try:
            view, shared = await self._flight.do(key, lambda: self._build(key))
        except Exception:
            template_compile_total.labels(channel=channel, outcome="error").inc()
            raise
        template_compile_total.labels(channel=channel, outcome="shared" if shared else "compiled").inc()
        return view

    async def _build(self, key: CompileKey) -> CompiledTemplateView:
        template_id, version, language, channel_name = key
        channel = Channel(channel_name)
        started = time.perf_counter()

        async with self._session_factory() as session:
            now = self._clock.now()
            entry = await self._compiled.get_entry(session, template_id, version, language, channel)
            # Another leader may have finished between the caller's lookup and this one
            if entry is not None and not entry.is_expired(now):
                return CompiledTemplateView.model_validate(entry)

            template = await self._templates.get_or_raise(session, template_id)
            template_version = await self._versions.get_version_or_raise(session, template_id, version)
            compiled_content, required = resolve_payload(template, template_version, language, channel)

            self.compile_invocations += 1
            expires_at = now + self.ttl if self.ttl else None
            if entry is None:
                entry = CompiledTemplate(
                    template_id=template_id,
                    version=version,
                    language=language,
                    channel=channel,
                    compiled_content=compiled_content,
                    required_variables=required,
                    variable_schema=template.variable_schema,
                    compiled_at=now,
                    expires_at=expires_at,
                )
                try:
                    await self._compiled.create(session, entry)
                except ConflictError:
                    # A different process stored the same key first
                    await session.rollback()
                    return await self._load_existing(key)
            else:
                entry.compiled_content = compiled_content
                entry.required_variables = required
                entry.variable_schema = template.variable_schema
                entry.compiled_at = now
                entry.expires_at = expires_at
                await session.flush()
            await session.commit()
            view = CompiledTemplateView.model_validate(entry)

        elapsed = time.perf_counter() - started
        template_compile_duration_seconds.labels(channel=channel).observe(elapsed)
        self.logger.info(
            "Template compiled",
            extra={
                "template_id": str(template_id),
                "version": version,
                "language": language,
                "channel": channel_name,
                "required_variables": required,
                "operation": "compiler.compile",
            },
        )
        return view

    async def _load_existing(self, key: CompileKey) -> CompiledTemplateView:
        template_id, version, language, channel = key
        async with self._session_factory() as session:
            entry = await self._compiled.get_entry(session, template_id, version, language, channel)
            if entry is None:
                raise NotFoundError(
                    "CompiledTemplate",
                    {"template_id": template_id, "version": version, "language": language, "channel": channel},
                )
            return CompiledTemplateView.model_validate(entry)

    async def invalidate(self, template_id: UUID, version: int | None = None) -> int:
        """Drop cached rows for a template (every version when ``version`` is None).

        Returns:
            Number of cache rows removed.
        """
        async with self._session_factory() as session:
            removed = await self._compiled.delete_for_template(session, template_id, version)
            await session.commit()

        template_cache_invalidated_total.inc(removed)
        self.logger.info(
            "Compiled template cache invalidated",
            extra={
                "template_id": str(template_id),
                "version": version,
                "removed": removed,
                "operation": "compiler.invalidate",
            },
        )
        return removed
