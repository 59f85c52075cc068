"""Pytest configuration and shared fixtures.

Fixtures are organized by category:
    - Database Fixtures: file-backed SQLite engine with every table created
    - Time Fixtures: ManualClock and a scheduler whose sleeps advance it
    - Sender Fixtures: scripted fake providers and the channel registry
    - Service Fixtures: templates, preferences, policy gate, orchestrator,
      provider event ingestor

Services are built with explicit settings instances so that no test depends
on the process environment.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import pytest

from notification_engine.core.clock import ManualClock
from notification_engine.core.settings import (
    DatabaseSettings,
    DeliverySettings,
    TemplateSettings,
    WebhookSettings,
)
from notification_engine.features.notifications.orchestrator import DeliveryOrchestrator
from notification_engine.features.notifications.provider_events import ProviderEventIngestor
from notification_engine.features.notifications.sender import SenderRegistry, SendResult
from notification_engine.features.preferences.policy import PolicyGate
from notification_engine.features.preferences.service import PreferenceService
from notification_engine.features.templates.schemas import TemplateCreate, TemplateVersionCreate
from notification_engine.features.templates.service import TemplateService
from notification_engine.infra.database import build_engine, build_session_factory, create_schema
from notification_engine.infra.ratelimit import InMemorySendCounter
from notification_engine.utils.scheduler import AsyncioTaskScheduler

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from notification_engine.core.channels import Channel
    from notification_engine.core.recipients import RecipientIdentity
    from notification_engine.features.templates.schemas import RenderedContent, TemplateRead

# Keep tests independent of a developer's .env / shell
os.environ.setdefault("DELIVERY_RATE_COUNTER_BACKEND", "memory")

# Monday, 12:00 UTC
START = datetime(2025, 1, 6, 12, 0, tzinfo=UTC)


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine]:
    """Async engine on a throwaway SQLite file with all tables created.

    A file (not ``:memory:``) lets concurrent sessions use separate
    connections the way they would against a real server.
    """
    engine = build_engine(DatabaseSettings(), url=f"sqlite+aiosqlite:///{tmp_path / 'notifications.db'}")
    await create_schema(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(db_engine)


# ============================================================================
# Time Fixtures
# ============================================================================


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture
async def scheduler(clock: ManualClock) -> AsyncGenerator[AsyncioTaskScheduler]:
    """Scheduler whose delays advance the manual clock instead of waiting.

    Example:
        await orchestrator.dispatch(notification.id)
        await scheduler.join()  # runs retries, clock moved by their delays
    """

    async def fast_forward(delay: float) -> None:
        clock.advance(seconds=delay)
        await asyncio.sleep(0)

    scheduler = AsyncioTaskScheduler(sleep=fast_forward)
    try:
        yield scheduler
    finally:
        await scheduler.close()


@pytest.fixture
async def frozen_scheduler() -> AsyncGenerator[AsyncioTaskScheduler]:
    """Scheduler whose timers never fire, standing in for timers lost to a restart."""

    async def never(delay: float) -> None:
        _ = delay
        await asyncio.Event().wait()

    scheduler = AsyncioTaskScheduler(sleep=never)
    try:
        yield scheduler
    finally:
        await scheduler.close()


# ============================================================================
# Sender Fixtures
# ============================================================================


@dataclass
class SentMessage:
    channel: Channel
    provider: str
    content: RenderedContent
    recipient: RecipientIdentity


class FakeSender:
    """Sender that replays scripted outcomes, then accepts everything.

    An outcome is an exception instance (raised), an async callable (awaited,
    its result returned) or a SendResult. Accepted sends get the message id
    ``<provider>-<call number>``.
    """

    def __init__(self) -> None:
        self.outcomes: list[Any] = []
        self.calls: list[SentMessage] = []

    async def send(
        self,
        channel: Channel,
        provider: str,
        rendered_content: RenderedContent,
        recipient: RecipientIdentity,
    ) -> SendResult:
        self.calls.append(SentMessage(channel, provider, rendered_content, recipient))
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return await outcome()
        if outcome is not None:
            return outcome
        return SendResult(provider_message_id=f"{provider}-{len(self.calls)}", response={"ok": True})


@pytest.fixture
def email_sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def sms_sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def push_sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def senders(email_sender: FakeSender, sms_sender: FakeSender, push_sender: FakeSender) -> SenderRegistry:
    registry = SenderRegistry()
    registry.register("email", "sendgrid", email_sender)
    registry.register("sms", "twilio", sms_sender)
    registry.register("push", "fcm", push_sender)
    return registry


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture
def delivery_settings() -> DeliverySettings:
    return DeliverySettings(max_attempts=3, initial_delay=1.0, backoff_multiplier=2.0, max_delay=60.0)


@pytest.fixture
def template_settings() -> TemplateSettings:
    return TemplateSettings(compiled_ttl_seconds=None, sms_max_segments=3)


@pytest.fixture
def webhook_settings() -> WebhookSettings:
    return WebhookSettings(secrets={"sendgrid": "sg-secret", "twilio": "tw-secret"})


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture
def counter() -> InMemorySendCounter:
    return InMemorySendCounter()


@pytest.fixture
def templates(
    session_factory: async_sessionmaker[AsyncSession],
    clock: ManualClock,
    template_settings: TemplateSettings,
) -> TemplateService:
    return TemplateService(session_factory, clock=clock, settings=template_settings)


@pytest.fixture
def preferences(session_factory: async_sessionmaker[AsyncSession], clock: ManualClock) -> PreferenceService:
    return PreferenceService(session_factory, clock=clock)


@pytest.fixture
def policy(
    session_factory: async_sessionmaker[AsyncSession],
    counter: InMemorySendCounter,
    clock: ManualClock,
) -> PolicyGate:
    return PolicyGate(session_factory, counter=counter, clock=clock)


@pytest.fixture
def make_orchestrator(
    session_factory: async_sessionmaker[AsyncSession],
    templates: TemplateService,
    senders: SenderRegistry,
    policy: PolicyGate,
    counter: InMemorySendCounter,
    scheduler: AsyncioTaskScheduler,
    clock: ManualClock,
    delivery_settings: DeliverySettings,
):
    """Factory for orchestrators that differ from the default in settings or scheduler."""

    def _make(
        *,
        settings: DeliverySettings | None = None,
        scheduler_override: AsyncioTaskScheduler | None = None,
    ) -> DeliveryOrchestrator:
        return DeliveryOrchestrator(
            session_factory,
            templates=templates,
            senders=senders,
            policy=policy,
            counter=counter,
            scheduler=scheduler_override or scheduler,
            clock=clock,
            settings=settings or delivery_settings,
        )

    return _make


@pytest.fixture
def orchestrator(make_orchestrator) -> DeliveryOrchestrator:
    return make_orchestrator()


@pytest.fixture
def ingestor(
    session_factory: async_sessionmaker[AsyncSession],
    orchestrator: DeliveryOrchestrator,
    webhook_settings: WebhookSettings,
    clock: ManualClock,
) -> ProviderEventIngestor:
    return ProviderEventIngestor(session_factory, orchestrator, settings=webhook_settings, clock=clock)


# ============================================================================
# Data Fixtures
# ============================================================================


@pytest.fixture
async def welcome_template(templates: TemplateService) -> TemplateRead:
    """Active email/sms/push template 'welcome' (v1) requiring ``name``."""
    template = await templates.create_template(
        TemplateCreate(
            name="welcome",
            category="onboarding",
            channels=["email", "sms", "push"],
            languages=["en", "fr"],
            default_language="en",
            required_variables=["name"],
        )
    )
    await templates.create_version(
        template.id,
        TemplateVersionCreate(
            version=1,
            content={
                "email": {
                    "en": {"subject": "Welcome, {{ name }}", "body": "Hi {{ name }}, thanks for joining."},
                    "fr": {"subject": "Bienvenue, {{ name }}", "body": "Salut {{ name }}, merci !"},
                },
                "sms": {"en": "Hi {{ name }}, welcome aboard."},
                "push": {"en": {"title": "Welcome", "body": "Hi {{ name }}"}},
            },
        ),
    )
    return await templates.activate_version(template.id, 1)
