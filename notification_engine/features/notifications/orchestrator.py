"""Delivery orchestration: notification creation, dispatch, retries and provider events.

Dispatch of a notification:

1. Channels without a tracking record are rendered (compiled template or
   ad-hoc content) and passed through the policy gate.
2. Blocked channels get a terminal ``suppressed`` record carrying the reason
   in ``error_code``. Deferred channels get no record; ``next_dispatch_at``
   holds the end of the quiet window and a timer redispatches them then.
3. Allowed channels get a ``pending`` record and are attempted.

Record creation is serialized per notification. Each attempt holds the
(notification, channel) lock and only proceeds when the record is still
``pending``, so repeated or concurrent dispatches never double-send.
Transient failures schedule a retry timer with exponential backoff until the
attempt budget is spent.
"""

from __future__ import annotations

import asyncio
import time
from datetime import timedelta
from typing import TYPE_CHECKING, Any
from uuid import UUID

from notification_engine.core.channels import Channel, parse_channels
from notification_engine.core.clock import get_clock
from notification_engine.core.exceptions import (
    ConflictError,
    NotificationEngineError,
    NotFoundError,
    ProviderPermanentError,
    ProviderTransientError,
    SchemaValidationError,
    UnsupportedChannelError,
)
from notification_engine.core.recipients import ADDRESS_FIELDS, RecipientIdentity
from notification_engine.core.services import BaseService
from notification_engine.features.notifications.metrics import (
    delivery_error_total,
    delivery_retry_total,
    delivery_send_duration_seconds,
    delivery_transition_total,
    notification_created_total,
    notification_dispatched_total,
)
from notification_engine.features.notifications.models import (
    Notification,
    NotificationDeliveryTracking,
)
from notification_engine.features.notifications.repository import (
    get_delivery_tracking_repository,
    get_notification_repository,
)
from notification_engine.features.notifications.schemas import (
    BulkCancelResult,
    BulkDispatchResult,
    BulkItemError,
    ChannelReport,
    DeliveryReport,
    DeliveryTrackingRead,
    NotificationRead,
)
from notification_engine.features.notifications.state_machine import (
    CANCELLABLE,
    DeliveryEvent,
    DeliveryStatus,
    apply_event,
)
from notification_engine.features.notifications.status import NotificationStatus, derive_status
from notification_engine.features.preferences.policy import PolicyGate
from notification_engine.features.preferences.schemas import SuppressionReason
from notification_engine.features.preferences.service import upsert_suppression
from notification_engine.features.templates.renderer import normalize_payload
from notification_engine.features.templates.schemas import RenderedContent
from notification_engine.infra.logging import log_context
from notification_engine.infra.ratelimit import InMemorySendCounter
from notification_engine.utils.backoff import BackoffPolicy
from notification_engine.utils.keyed_lock import KeyedLock
from notification_engine.utils.scheduler import AsyncioTaskScheduler

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from notification_engine.core.clock import Clock
    from notification_engine.core.settings.delivery import DeliverySettings
    from notification_engine.features.notifications.schemas import NotificationCreate
    from notification_engine.features.notifications.sender import SenderRegistry
    from notification_engine.features.templates.service import TemplateService
    from notification_engine.infra.ratelimit import SendCounter
    from notification_engine.utils.scheduler import TaskScheduler

ChannelKey = tuple[UUID, str]

_AGGREGATE_SENT = frozenset(
    {NotificationStatus.SENT, NotificationStatus.DELIVERED, NotificationStatus.PARTIALLY_DELIVERED}
)


class DeliveryOrchestrator(BaseService):
    """Drives notifications through policy, rendering and per-channel delivery.

    Example:
        orchestrator = DeliveryOrchestrator(
            session_factory,
            templates=template_service,
            senders=registry,
        )
        notification = await orchestrator.create_notification(NotificationCreate(...))
        await orchestrator.dispatch(notification.id)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        templates: TemplateService,
        senders: SenderRegistry,
        policy: PolicyGate | None = None,
        counter: SendCounter | None = None,
        scheduler: TaskScheduler | None = None,
        clock: Clock | None = None,
        settings: DeliverySettings | None = None,
    ) -> None:
        super().__init__()
        if settings is None:
            from notification_engine.core.settings import get_delivery_settings

            settings = get_delivery_settings()
        self._session_factory = session_factory
        self._clock = clock or get_clock()
        self.settings = settings
        self.templates = templates
        self.senders = senders
        self.counter = counter or (policy.counter if policy else InMemorySendCounter())
        self.policy = policy or PolicyGate(
            session_factory,
            counter=self.counter,
            clock=self._clock,
            quiet_hours_bypass_urgent=settings.quiet_hours_bypass_urgent,
        )
        self.scheduler = scheduler or AsyncioTaskScheduler()
        self.backoff = BackoffPolicy.from_settings(settings)
        self._locks: KeyedLock[ChannelKey] = KeyedLock()
        self._prepare_locks: KeyedLock[UUID] = KeyedLock()
        self._notifications = get_notification_repository()
        self._tracking = get_delivery_tracking_repository()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_notification(self, data: NotificationCreate) -> NotificationRead:
        """Validate and store a notification without dispatching it.

        Status is ``scheduled`` when ``scheduled_at`` lies in the future,
        otherwise ``pending``.

        Raises:
            UnsupportedChannelError: Unknown channel, a channel the template
                does not declare, or a channel missing from ad-hoc content.
            NotFoundError: Unknown template or pinned version.
            SchemaValidationError: The recipient has no address for a
                requested channel.
        """
        channels = [str(c) for c in parse_channels(data.channels)]
        now = self._clock.now()

        category = data.category
        if data.template_id is not None:
            template = await self.templates.get_template(data.template_id)
            for channel in channels:
                if channel not in template.channels:
                    raise UnsupportedChannelError(channel, template.name)
            if data.template_version is not None:
                versions = {v.version for v in await self.templates.list_versions(data.template_id)}
                if data.template_version not in versions:
                    raise NotFoundError(
                        "TemplateVersion",
                        {"template_id": data.template_id, "version": data.template_version},
                    )
            category = category or template.category
        else:
            content = data.content or {}
            for channel in channels:
                if channel not in content:
                    raise UnsupportedChannelError(channel)
                normalize_payload(content[channel], where=channel)

        identity = RecipientIdentity(
            user_id=data.user_id, email=data.email, phone=data.phone, device_token=data.device_token
        )
        unaddressed = [c for c in channels if not identity.address_for(Channel(c))]
        if unaddressed:
            raise SchemaValidationError(
                f"Recipient has no address for channel(s): {', '.join(unaddressed)}",
                errors=[f"{c}: {ADDRESS_FIELDS[Channel(c)]} is required" for c in unaddressed],
            )

        scheduled = data.scheduled_at is not None and data.scheduled_at > now
        notification = Notification(
            user_id=data.user_id,
            email=data.email,
            phone=data.phone,
            device_token=data.device_token,
            template_id=data.template_id,
            template_version=data.template_version,
            language=data.language,
            channels=channels,
            priority=data.priority,
            category=category,
            content=data.content,
            variables=data.variables,
            status=NotificationStatus.SCHEDULED if scheduled else NotificationStatus.PENDING,
            scheduled_at=data.scheduled_at,
            next_dispatch_at=data.scheduled_at if scheduled else None,
            tracking_enabled=data.tracking_enabled,
            from_service=data.from_service,
            from_user_id=data.from_user_id,
            tags=data.tags,
        )

        async with self._session_factory() as session:
            await self._notifications.create(session, notification)
            await session.commit()

        notification_created_total.labels(priority=data.priority, scheduled=str(scheduled).lower()).inc()
        self.logger.info(
            "Notification created",
            extra={
                "notification_id": str(notification.id),
                "template_id": str(data.template_id) if data.template_id else None,
                "channels": channels,
                "priority": data.priority,
                "scheduled": scheduled,
                "operation": "service.create_notification",
            },
        )
        return NotificationRead.model_validate(notification)

    async def create_and_dispatch_bulk(self, requests: list[NotificationCreate]) -> BulkDispatchResult:
        """Create and dispatch each request in order.

        A request that fails validation, rendering or dispatch is reported in
        ``errors`` with its index; the remaining requests still run. A
        notification that was stored before its dispatch failed keeps its id
        in the error entry.
        """
        result = BulkDispatchResult(total=len(requests))
        for index, request in enumerate(requests):
            notification_id: UUID | None = None
            try:
                notification_id = (await self.create_notification(request)).id
                result.results.append(await self.dispatch(notification_id))
            except NotificationEngineError as exc:
                result.errors.append(
                    BulkItemError(index=index, notification_id=notification_id, type=exc.type, detail=exc.detail)
                )

        self.logger.info(
            "Bulk dispatch finished",
            extra={
                "total": result.total,
                "succeeded": result.succeeded,
                "failed": result.failed,
                "operation": "service.create_and_dispatch_bulk",
            },
        )
        return result

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, notification_id: UUID) -> NotificationRead:
        """Run policy and delivery for every channel that has no record yet.

        Scheduled notifications that are not due and cancelled notifications
        are left untouched. Pending records left by an interrupted run are
        attempted again.

        Raises:
            NotFoundError: Unknown notification, template or version.
            MissingVariableError / SchemaValidationError: Rendering failed;
                no tracking record is created.
            UnsupportedChannelError / UnsupportedLanguageError: The channel
                cannot be rendered or has no registered sender.
        """
        with log_context(notification_id=str(notification_id)):
            async with self._prepare_locks.hold(notification_id):
                to_attempt = await self._prepare(notification_id)
            if to_attempt:
                await asyncio.gather(*(self._attempt(notification_id, channel) for channel in to_attempt))
            return await self.get_notification(notification_id)

    async def _prepare(self, notification_id: UUID) -> list[str]:
        """Create tracking records and return the channels ready for an attempt."""
        async with self._session_factory() as session:
            notification = await self._notifications.get_or_raise(session, notification_id)
            now = self._clock.now()

            if notification.cancelled_at is not None:
                notification_dispatched_total.labels(outcome="skipped").inc()
                return []
            if notification.scheduled_at is not None and notification.scheduled_at > now:
                notification_dispatched_total.labels(outcome="not_due").inc()
                self._lazy.debug(lambda: f"dispatch: {notification_id} not due until {notification.scheduled_at}")
                return []

            existing = {
                r.channel: r for r in await self._tracking.list_for_notification(session, notification_id)
            }
            todo = [c for c in parse_channels(notification.channels) if c not in existing]
            ready = [c for c, r in existing.items() if r.status == DeliveryStatus.PENDING]

            if not todo and notification.next_dispatch_at is not None:
                notification.next_dispatch_at = None
                await session.commit()

            if todo:
                rendered = await self._render(notification, todo)
                decision = await self.policy.filter_channels(
                    notification.identity,
                    notification.category,
                    todo,
                    now,
                    priority=notification.priority,
                    session=session,
                )

                # cancel() commits cancelled_at without waiting for this lock
                await session.refresh(notification, attribute_names=["cancelled_at"])
                if notification.cancelled_at is not None:
                    notification_dispatched_total.labels(outcome="skipped").inc()
                    self._lazy.debug(lambda: f"dispatch: {notification_id} cancelled while preparing")
                    return []

                for blocked in decision.blocked:
                    record = NotificationDeliveryTracking(
                        notification_id=notification.id,
                        channel=str(blocked.channel),
                        status=DeliveryStatus.SUPPRESSED,
                        error_code=blocked.reason,
                        error_message=f"Blocked by policy: {blocked.reason}",
                    )
                    session.add(record)
                    delivery_transition_total.labels(channel=blocked.channel, status=DeliveryStatus.SUPPRESSED).inc()

                for channel in decision.allowed:
                    provider, _ = self.senders.resolve(channel)
                    session.add(
                        NotificationDeliveryTracking(
                            notification_id=notification.id,
                            channel=str(channel),
                            provider=provider,
                            status=DeliveryStatus.PENDING,
                        )
                    )
                    ready.append(str(channel))

                notification.rendered_content = {
                    **(notification.rendered_content or {}),
                    **{str(c): rendered[c].model_dump() for c in decision.allowed},
                }

                deferral = decision.earliest_deferral
                notification.next_dispatch_at = deferral
                if deferral is not None:
                    notification.scheduled_at = deferral
                    if not decision.blocked and not decision.allowed and not existing:
                        notification.status = NotificationStatus.SCHEDULED

                await session.flush()
                await self._refresh_status(session, notification, now)
                await session.commit()

                outcome = "deferred" if deferral is not None and not decision.allowed else "dispatched"
                notification_dispatched_total.labels(outcome=outcome).inc()
                self.logger.info(
                    "Notification dispatched",
                    extra={
                        "notification_id": str(notification_id),
                        "allowed": [str(c) for c in decision.allowed],
                        "blocked": {str(b.channel): b.reason for b in decision.blocked},
                        "deferred_until": deferral.isoformat() if deferral else None,
                        "status": notification.status,
                        "operation": "service.dispatch",
                    },
                )
                if deferral is not None:
                    delay = (deferral - now).total_seconds()
                    self.scheduler.schedule(
                        delay,
                        lambda: self.dispatch(notification_id),
                        name=f"redispatch:{notification_id}",
                    )

        return ready

    async def _render(self, notification: Notification, channels: list[Channel]) -> dict[Channel, RenderedContent]:
        """Render every channel up front so validation errors surface before any record exists."""
        for channel in channels:
            self.senders.resolve(channel)

        rendered: dict[Channel, RenderedContent] = {}
        if notification.template_id is None:
            content = notification.content or {}
            for channel in channels:
                if channel not in content:
                    raise UnsupportedChannelError(channel)
                sources = normalize_payload(content[channel], where=channel)
                rendered[channel] = self.templates.renderer.render_source(channel, sources, notification.variables)
            return rendered

        for channel in channels:
            compiled = await self.templates.compile(
                notification.template_id,
                notification.template_version,
                notification.language,
                channel,
            )
            # Later channels and redispatches reuse the version the first compile resolved
            notification.template_version = compiled.version
            rendered[channel] = self.templates.render_for_recipient(compiled, notification.variables)
        return rendered

    async def _attempt(self, notification_id: UUID, channel: str) -> None:
        """One provider call for a pending record."""
        retry_delay: float | None = None

        with log_context(notification_id=str(notification_id), channel=channel):
            async with self._locks.hold((notification_id, channel)):
                async with self._session_factory() as session:
                    record = await self._tracking.get_for_channel(session, notification_id, channel)
                    if record is None or record.status != DeliveryStatus.PENDING:
                        self._lazy.debug(
                            lambda: f"attempt skipped: {notification_id}/{channel} is "
                            f"{record.status if record else 'missing'}"
                        )
                        return
                    notification = await self._notifications.get_or_raise(session, notification_id)
                    if notification.cancelled_at is not None:
                        now = self._clock.now()
                        apply_event(record, DeliveryEvent.CANCEL, now)
                        delivery_transition_total.labels(channel=channel, status=record.status).inc()
                        await self._refresh_status(session, notification, now)
                        await session.commit()
                        self._lazy.debug(lambda: f"attempt skipped: {notification_id} was cancelled")
                        return
                    rendered = RenderedContent.model_validate((notification.rendered_content or {})[channel])
                    provider, sender = self.senders.resolve(channel)

                    started = time.perf_counter()
                    try:
                        result = await asyncio.wait_for(
                            sender.send(Channel(channel), provider, rendered, notification.identity),
                            timeout=self.settings.send_timeout,
                        )
                    except TimeoutError:
                        retry_delay = self._on_transient(
                            record, "timeout", f"Sender exceeded {self.settings.send_timeout}s", None, kind="timeout"
                        )
                    except ProviderPermanentError as exc:
                        await self._on_permanent(session, notification, record, exc)
                    except ProviderTransientError as exc:
                        retry_delay = self._on_transient(record, exc.code, exc.detail, exc.provider_response)
                    except Exception as exc:
                        self.logger.warning(
                            "Sender raised an unclassified error; treating as transient",
                            exc_info=True,
                            extra={"provider": provider, "operation": "service.attempt"},
                        )
                        retry_delay = self._on_transient(
                            record, type(exc).__name__, str(exc), None, kind="unexpected"
                        )
                    else:
                        now = self._clock.now()
                        apply_event(record, DeliveryEvent.ACCEPTED, now)
                        record.provider_message_id = result.provider_message_id
                        record.provider_response = result.response or None
                        record.error_code = None
                        record.error_message = None
                        delivery_transition_total.labels(channel=channel, status=record.status).inc()
                        rate_key = notification.identity.rate_key
                        if rate_key is not None:
                            await self.counter.record(rate_key, now, member=str(record.id))
                        self.logger.info(
                            "Delivery accepted by provider",
                            extra={
                                "provider": provider,
                                "provider_message_id": result.provider_message_id,
                                "retry_count": record.retry_count,
                                "operation": "service.attempt",
                            },
                        )
                    finally:
                        delivery_send_duration_seconds.labels(channel=channel, provider=provider).observe(
                            time.perf_counter() - started
                        )

                    await self._refresh_status(session, notification, self._clock.now())
                    await session.commit()

            if retry_delay is not None:
                self.scheduler.schedule(
                    retry_delay,
                    lambda: self._retry(notification_id, channel),
                    name=f"retry:{notification_id}:{channel}",
                )

    def _on_transient(
        self,
        record: NotificationDeliveryTracking,
        code: str | None,
        message: str,
        provider_response: dict[str, Any] | None,
        *,
        kind: str = "transient",
    ) -> float | None:
        """Record a transient failure; return the retry delay, or None once exhausted."""
        now = self._clock.now()
        apply_event(record, DeliveryEvent.TRANSIENT_ERROR, now)
        record.error_code = code
        record.error_message = message
        if provider_response is not None:
            record.provider_response = provider_response
        delivery_error_total.labels(channel=record.channel, kind=kind).inc()

        if self.backoff.is_exhausted(record.retry_count):
            apply_event(record, DeliveryEvent.EXHAUSTED, now)
            delivery_transition_total.labels(channel=record.channel, status=record.status).inc()
            self.logger.warning(
                "Delivery failed after exhausting retries",
                extra={
                    "retry_count": record.retry_count,
                    "error_code": code,
                    "operation": "service.attempt",
                },
            )
            return None

        delay = self.backoff.calculate_delay(record.retry_count)
        record.next_retry_at = now + timedelta(seconds=delay)
        delivery_transition_total.labels(channel=record.channel, status=record.status).inc()
        delivery_retry_total.labels(channel=record.channel).inc()
        self.logger.info(
            "Transient delivery failure, retry scheduled",
            extra={
                "retry_count": record.retry_count,
                "retry_in_seconds": delay,
                "error_code": code,
                "operation": "service.attempt",
            },
        )
        return delay

    async def _on_permanent(
        self,
        session: AsyncSession,
        notification: Notification,
        record: NotificationDeliveryTracking,
        exc: ProviderPermanentError,
    ) -> None:
        now = self._clock.now()
        event = DeliveryEvent.REJECTED_BOUNCE if exc.bounce else DeliveryEvent.PERMANENT_ERROR
        apply_event(record, event, now)
        record.error_code = exc.code
        record.error_message = exc.detail
        record.provider_response = exc.provider_response
        delivery_error_total.labels(channel=record.channel, kind="bounce" if exc.bounce else "permanent").inc()
        delivery_transition_total.labels(channel=record.channel, status=record.status).inc()
        self.logger.warning(
            "Permanent delivery failure",
            extra={
                "status": record.status,
                "error_code": exc.code,
                "operation": "service.attempt",
            },
        )
        if exc.bounce and self.settings.auto_suppress_on_bounce:
            await self._auto_suppress(session, notification, record.channel, SuppressionReason.BOUNCE, now)

    async def _retry(self, notification_id: UUID, channel: str) -> None:
        """Move a failed_transient record back to pending and attempt it."""
        async with self._locks.hold((notification_id, channel)):
            async with self._session_factory() as session:
                record = await self._tracking.get_for_channel(session, notification_id, channel)
                if record is None or record.status != DeliveryStatus.FAILED_TRANSIENT:
                    return
                apply_event(record, DeliveryEvent.RETRY, self._clock.now())
                record.retry_count += 1
                notification = await self._notifications.get_or_raise(session, notification_id)
                await self._refresh_status(session, notification, self._clock.now())
                await session.commit()

        await self._attempt(notification_id, channel)

    # ------------------------------------------------------------------
    # Sweeps and cancellation
    # ------------------------------------------------------------------

    async def process_due(self, limit: int = 100) -> int:
        """Dispatch notifications whose ``next_dispatch_at`` has passed and fire overdue retries.

        Covers timers lost to a restart; safe to run alongside live timers.

        Returns:
            Number of notifications and retries processed.
        """
        now = self._clock.now()
        async with self._session_factory() as session:
            due = [n.id for n in await self._notifications.list_due_scheduled(session, now, limit)]
            retries = [(r.notification_id, r.channel) for r in await self._tracking.list_due_retries(session, now, limit)]

        processed = 0
        for notification_id in due:
            try:
                await self.dispatch(notification_id)
            except NotificationEngineError as exc:
                self.logger.warning(
                    "Scheduled dispatch failed",
                    extra={
                        "notification_id": str(notification_id),
                        "error": exc.detail,
                        "operation": "service.process_due",
                    },
                )
                continue
            processed += 1

        for notification_id, channel in retries:
            await self._retry(notification_id, channel)
            processed += 1

        if processed:
            self.logger.info(
                "Due work processed",
                extra={"scheduled": len(due), "retries": len(retries), "operation": "service.process_due"},
            )
        return processed

    async def cancel(self, notification_id: UUID) -> NotificationRead:
        """Cancel whatever has not been handed to a provider.

        Pending and failed_transient records become ``cancelled``; records
        already sent are left as they are. Channels without a record never
        get one.

        ``cancelled_at`` is committed first. A dispatch that is preparing
        re-reads it before creating records, and every attempt checks it
        before calling the provider.
        """
        async with self._session_factory() as session:
            notification = await self._notifications.get_or_raise(session, notification_id)
            if notification.cancelled_at is None:
                notification.cancelled_at = self._clock.now()
            notification.next_dispatch_at = None
            await session.commit()

        cancelled: list[str] = []
        # Records created by a dispatch still preparing are visible once it finishes
        async with self._prepare_locks.hold(notification_id):
            async with self._session_factory() as session:
                channels = [r.channel for r in await self._tracking.list_for_notification(session, notification_id)]

            for channel in channels:
                # Waits for an in-flight attempt so its outcome is not overwritten
                async with self._locks.hold((notification_id, channel)):
                    async with self._session_factory() as session:
                        record = await self._tracking.get_for_channel(session, notification_id, channel)
                        if record is not None and record.status in CANCELLABLE:
                            apply_event(record, DeliveryEvent.CANCEL, self._clock.now())
                            delivery_transition_total.labels(channel=channel, status=record.status).inc()
                            cancelled.append(channel)
                            await session.commit()

            async with self._session_factory() as session:
                notification = await self._notifications.get_or_raise(session, notification_id)
                if not channels:
                    notification.status = NotificationStatus.CANCELLED
                await self._refresh_status(session, notification, self._clock.now())
                await session.commit()

        self.logger.info(
            "Notification cancelled",
            extra={
                "notification_id": str(notification_id),
                "cancelled_channels": cancelled,
                "status": notification.status,
                "operation": "service.cancel",
            },
        )
        return NotificationRead.model_validate(notification)

    async def cancel_many(self, notification_ids: list[UUID]) -> BulkCancelResult:
        """Cancel each notification; unknown ids are reported, not raised."""
        result = BulkCancelResult()
        for notification_id in notification_ids:
            try:
                await self.cancel(notification_id)
            except NotificationEngineError as exc:
                self.logger.warning(
                    "Bulk cancel skipped a notification",
                    extra={
                        "notification_id": str(notification_id),
                        "error": exc.detail,
                        "operation": "service.cancel_many",
                    },
                )
                result.failed.append(notification_id)
                continue
            result.cancelled.append(notification_id)
        return result

    async def reschedule(self, notification_id: UUID, scheduled_at: datetime) -> NotificationRead:
        """Move a notification that has not been dispatched to a new time.

        A time in the past makes it due on the next ``process_due`` sweep.

        Raises:
            NotFoundError: Unknown notification.
            ConflictError: The notification is cancelled or already has
                delivery records.
            SchemaValidationError: ``scheduled_at`` is naive.
        """
        if scheduled_at.tzinfo is None:
            raise SchemaValidationError("scheduled_at must be timezone-aware")

        async with self._prepare_locks.hold(notification_id):
            async with self._session_factory() as session:
                notification = await self._notifications.get_or_raise(session, notification_id)
                if notification.cancelled_at is not None:
                    raise ConflictError(
                        "Cannot reschedule a cancelled notification",
                        extra={"notification_id": str(notification_id)},
                    )
                if await self._tracking.list_for_notification(session, notification_id):
                    raise ConflictError(
                        "Cannot reschedule a notification that has been dispatched",
                        extra={"notification_id": str(notification_id), "status": notification.status},
                    )
                previous = notification.scheduled_at
                notification.scheduled_at = scheduled_at
                notification.next_dispatch_at = scheduled_at
                notification.status = (
                    NotificationStatus.SCHEDULED if scheduled_at > self._clock.now() else NotificationStatus.PENDING
                )
                await session.commit()

        self.logger.info(
            "Notification rescheduled",
            extra={
                "notification_id": str(notification_id),
                "from": previous.isoformat() if previous else None,
                "to": scheduled_at.isoformat(),
                "operation": "service.reschedule",
            },
        )
        return NotificationRead.model_validate(notification)

    # ------------------------------------------------------------------
    # Provider events
    # ------------------------------------------------------------------

    async def record_event(
        self,
        tracking_id: UUID,
        event: str,
        occurred_at: datetime | None = None,
        provider_response: dict[str, Any] | None = None,
    ) -> DeliveryTrackingRead:
        """Apply a provider-reported event to a tracking record.

        Raises:
            NotFoundError: Unknown tracking record.
            InvalidTransitionError: The record's state does not accept the event.
        """
        async with self._session_factory() as session:
            located = await self._tracking.get_or_raise(session, tracking_id)
            key: ChannelKey = (located.notification_id, located.channel)

        async with self._locks.hold(key):
            async with self._session_factory() as session:
                record = await self._tracking.get_or_raise(session, tracking_id)
                notification = await self._notifications.get_or_raise(session, record.notification_id)
                at = occurred_at or self._clock.now()
                previous = record.status

                apply_event(record, event, at)
                if provider_response:
                    record.provider_response = {**(record.provider_response or {}), **provider_response}
                delivery_transition_total.labels(channel=record.channel, status=record.status).inc()

                if event == DeliveryEvent.COMPLAINT and self.settings.auto_suppress_on_complaint:
                    await self._auto_suppress(session, notification, record.channel, SuppressionReason.COMPLAINT, at)
                elif event == DeliveryEvent.BOUNCE and self.settings.auto_suppress_on_bounce:
                    await self._auto_suppress(session, notification, record.channel, SuppressionReason.BOUNCE, at)

                await self._refresh_status(session, notification, at)
                await session.commit()

        self.logger.info(
            "Provider event recorded",
            extra={
                "notification_id": str(record.notification_id),
                "channel": record.channel,
                "event": str(event),
                "from_status": previous,
                "to_status": record.status,
                "operation": "service.record_event",
            },
        )
        return DeliveryTrackingRead.model_validate(record)

    async def _auto_suppress(
        self,
        session: AsyncSession,
        notification: Notification,
        channel: str,
        reason: SuppressionReason,
        at: datetime,
    ) -> None:
        identity = notification.identity
        identifier = identity.address_for(Channel(channel)) or identity.user_id
        if not identifier:
            return
        await upsert_suppression(
            session,
            identifier=identifier,
            channel=channel,
            reason=reason,
            at=at,
            added_by=f"system:{reason}",
            conflict_if_active=False,
        )
        self.logger.info(
            "Recipient suppressed after provider feedback",
            extra={"channel": channel, "reason": str(reason), "operation": "service.auto_suppress"},
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_notification(self, notification_id: UUID) -> NotificationRead:
        async with self._session_factory() as session:
            notification = await self._notifications.get_or_raise(session, notification_id)
            return NotificationRead.model_validate(notification)

    async def list_deliveries(self, notification_id: UUID) -> list[DeliveryTrackingRead]:
        async with self._session_factory() as session:
            await self._notifications.get_or_raise(session, notification_id)
            records = await self._tracking.list_for_notification(session, notification_id)
            return [DeliveryTrackingRead.model_validate(r) for r in records]

    async def list_notifications(self, user_id: str, *, limit: int = 50, offset: int = 0) -> list[NotificationRead]:
        """A user's notifications, newest first."""
        if limit < 1 or offset < 0:
            raise SchemaValidationError("limit must be positive and offset non-negative")
        async with self._session_factory() as session:
            notifications = await self._notifications.list_for_user(session, user_id, limit=limit, offset=offset)
            return [NotificationRead.model_validate(n) for n in notifications]

    async def delivery_report(self, notification_id: UUID) -> DeliveryReport:
        """Per-channel summary, including channels that have no record yet."""
        now = self._clock.now()
        async with self._session_factory() as session:
            notification = await self._notifications.get_or_raise(session, notification_id)
            records = {r.channel: r for r in await self._tracking.list_for_notification(session, notification_id)}

        waiting = (
            notification.cancelled_at is None
            and notification.scheduled_at is not None
            and notification.scheduled_at > now
        )
        channels: list[ChannelReport] = []
        for channel in notification.channels:
            record = records.get(channel)
            if record is None:
                status = "cancelled" if notification.cancelled_at else ("deferred" if waiting else "not_attempted")
                channels.append(
                    ChannelReport(
                        channel=channel,
                        status=status,
                        deferred_until=notification.scheduled_at if waiting else None,
                    )
                )
                continue
            channels.append(
                ChannelReport(
                    channel=channel,
                    status=record.status,
                    provider=record.provider,
                    attempts=_attempts(record),
                    error_code=record.error_code,
                )
            )

        return DeliveryReport(
            notification_id=notification.id,
            status=notification.status,
            channels=channels,
            sent_at=notification.sent_at,
            delivered_at=notification.delivered_at,
        )

    # ------------------------------------------------------------------
    # Aggregate
    # ------------------------------------------------------------------

    async def _refresh_status(self, session: AsyncSession, notification: Notification, now: datetime) -> None:
        """Recompute the aggregate status inside the caller's transaction."""
        await session.flush()
        records = await self._tracking.list_for_notification(session, notification.id)
        status = derive_status(notification.status, [r.status for r in records])
        if status != notification.status:
            self._lazy.debug(lambda: f"aggregate: {notification.id} {notification.status} -> {status}")
        notification.status = status
        if status in _AGGREGATE_SENT and notification.sent_at is None:
            notification.sent_at = now
        if status == NotificationStatus.DELIVERED and notification.delivered_at is None:
            notification.delivered_at = now


def _attempts(record: NotificationDeliveryTracking) -> int:
    if record.status == DeliveryStatus.SUPPRESSED:
        return 0
    if record.status == DeliveryStatus.PENDING:
        return record.retry_count
    if record.status == DeliveryStatus.CANCELLED:
        return record.retry_count + (1 if record.error_code else 0)
    return record.retry_count + 1
