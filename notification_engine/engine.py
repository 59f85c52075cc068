"""Wiring of the engine's services from settings.

Example:
    registry = SenderRegistry()
    registry.register("email", "sendgrid", SendGridSender(api_key))

    async with notification_engine_lifespan(registry) as engine:
        template = await engine.templates.create_template(TemplateCreate(...))
        notification = await engine.orchestrator.create_notification(NotificationCreate(...))
        await engine.orchestrator.dispatch(notification.id)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

from notification_engine.core.clock import get_clock
from notification_engine.core.settings import (
    get_db_settings,
    get_delivery_settings,
    get_logging_settings,
    get_template_settings,
    get_webhook_settings,
)
from notification_engine.features.notifications.orchestrator import DeliveryOrchestrator
from notification_engine.features.notifications.provider_events import ProviderEventIngestor
from notification_engine.features.preferences.policy import PolicyGate
from notification_engine.features.preferences.service import PreferenceService
from notification_engine.features.templates.service import TemplateService
from notification_engine.infra.database import build_engine, build_session_factory, create_schema
from notification_engine.infra.logging import configure_logging
from notification_engine.infra.ratelimit import build_send_counter
from notification_engine.utils.scheduler import AsyncioTaskScheduler

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from notification_engine.core.clock import Clock
    from notification_engine.features.notifications.sender import SenderRegistry
    from notification_engine.infra.ratelimit import SendCounter

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class NotificationEngine:
    """Every service sharing one database engine, clock and scheduler."""

    db_engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    templates: TemplateService
    preferences: PreferenceService
    policy: PolicyGate
    orchestrator: DeliveryOrchestrator
    provider_events: ProviderEventIngestor
    scheduler: AsyncioTaskScheduler

    @classmethod
    def build(
        cls,
        senders: SenderRegistry,
        *,
        database_url: str | None = None,
        clock: Clock | None = None,
        counter: SendCounter | None = None,
        scheduler: AsyncioTaskScheduler | None = None,
    ) -> NotificationEngine:
        delivery_settings = get_delivery_settings()
        clock = clock or get_clock()
        db_engine = build_engine(get_db_settings(), url=database_url)
        session_factory = build_session_factory(db_engine)
        counter = counter or build_send_counter(delivery_settings.rate_counter_backend)
        scheduler = scheduler or AsyncioTaskScheduler()

        templates = TemplateService(session_factory, clock=clock, settings=get_template_settings())
        policy = PolicyGate(
            session_factory,
            counter=counter,
            clock=clock,
            quiet_hours_bypass_urgent=delivery_settings.quiet_hours_bypass_urgent,
        )
        orchestrator = DeliveryOrchestrator(
            session_factory,
            templates=templates,
            senders=senders,
            policy=policy,
            counter=counter,
            scheduler=scheduler,
            clock=clock,
            settings=delivery_settings,
        )
        return cls(
            db_engine=db_engine,
            session_factory=session_factory,
            templates=templates,
            preferences=PreferenceService(session_factory, clock=clock),
            policy=policy,
            orchestrator=orchestrator,
            provider_events=ProviderEventIngestor(
                session_factory,
                orchestrator,
                settings=get_webhook_settings(),
                clock=clock,
            ),
            scheduler=scheduler,
        )

    async def close(self) -> None:
        await self.scheduler.close()
        await self.db_engine.dispose()


@asynccontextmanager
async def notification_engine_lifespan(
    senders: SenderRegistry,
    *,
    database_url: str | None = None,
    create_tables: bool = False,
    configure_logs: bool = True,
) -> AsyncIterator[NotificationEngine]:
    """Build the engine, optionally create tables, and tear everything down on exit.

    Args:
        senders: Channel routing to provider adapters.
        database_url: Override DB_URL.
        create_tables: Create tables from model metadata (tests, scratch
            databases); deployed databases are migrated with Alembic.
        configure_logs: Install the LOG_* logging pipeline first.
    """
    if configure_logs:
        configure_logging(get_logging_settings())

    engine = NotificationEngine.build(senders, database_url=database_url)
    if create_tables:
        await create_schema(engine.db_engine)

    logger.info(
        "Notification engine started",
        extra={
            "channels": [str(c) for c in senders.channels],
            "rate_counter_backend": get_delivery_settings().rate_counter_backend,
            "operation": "engine.startup",
        },
    )
    try:
        yield engine
    finally:
        await engine.close()
        logger.info("Notification engine stopped", extra={"operation": "engine.shutdown"})
