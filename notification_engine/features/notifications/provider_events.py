"""Provider delivery callbacks: signature verification and event mapping.

SendGrid-style callbacks post a JSON array of events keyed by
``sg_message_id``; Twilio-style callbacks post one form-encoded status update
keyed by ``MessageSid``. Anything else is read as generic JSON with
``message_id`` / ``event`` / ``timestamp`` fields.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qsl

from notification_engine.core.clock import get_clock
from notification_engine.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    SchemaValidationError,
    SignatureVerificationError,
)
from notification_engine.core.services import BaseService
from notification_engine.features.notifications.metrics import provider_event_total
from notification_engine.features.notifications.repository import get_delivery_tracking_repository
from notification_engine.features.notifications.state_machine import DeliveryEvent

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from notification_engine.core.clock import Clock
    from notification_engine.core.settings.webhooks import WebhookSettings
    from notification_engine.features.notifications.orchestrator import DeliveryOrchestrator


# Provider event name -> tracking event; None means acknowledged but ignored
SENDGRID_EVENTS: dict[str, DeliveryEvent | None] = {
    "processed": None,
    "deferred": None,
    "delivered": DeliveryEvent.DELIVERED,
    "bounce": DeliveryEvent.BOUNCE,
    "dropped": DeliveryEvent.BOUNCE,
    "spamreport": DeliveryEvent.COMPLAINT,
    "open": DeliveryEvent.OPEN,
    "click": DeliveryEvent.CLICK,
    "unsubscribe": None,
    "group_unsubscribe": None,
}

TWILIO_STATUSES: dict[str, DeliveryEvent | None] = {
    "accepted": None,
    "queued": None,
    "sending": None,
    "sent": None,
    "delivered": DeliveryEvent.DELIVERED,
    "read": DeliveryEvent.OPEN,
    "undelivered": DeliveryEvent.BOUNCE,
    "failed": DeliveryEvent.BOUNCE,
}

GENERIC_EVENTS: dict[str, DeliveryEvent | None] = {
    event.value: event
    for event in (
        DeliveryEvent.DELIVERED,
        DeliveryEvent.BOUNCE,
        DeliveryEvent.COMPLAINT,
        DeliveryEvent.OPEN,
        DeliveryEvent.CLICK,
    )
}


def compute_signature(secret: str, payload: bytes, algorithm: str = "sha256") -> str:
    digest = hashlib.sha1 if algorithm == "sha1" else hashlib.sha256
    return hmac.new(secret.encode(), payload, digest).hexdigest()


def verify_signature(secret: str, payload: bytes, signature: str, algorithm: str = "sha256") -> bool:
    """Constant-time check of a hex HMAC, optionally prefixed ``sha256=`` / ``sha1=``.

    A prefix overrides ``algorithm``.
    """
    if "=" in signature:
        prefix, _, signature = signature.partition("=")
        if prefix not in ("sha256", "sha1"):
            return False
        algorithm = prefix
    expected = compute_signature(secret, payload, algorithm)
    return hmac.compare_digest(expected, signature.strip().lower())


@dataclass(frozen=True, slots=True)
class ProviderEvent:
    provider_message_id: str
    event: DeliveryEvent | None
    provider_event: str
    occurred_at: datetime | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class IngestResult:
    applied: int = 0
    ignored: int = 0
    unknown_message: int = 0
    invalid_transition: int = 0

    @property
    def total(self) -> int:
        return self.applied + self.ignored + self.unknown_message + self.invalid_transition


def _timestamp(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    if isinstance(value, int | float) or (isinstance(value, str) and value.isdigit()):
        return datetime.fromtimestamp(float(value), UTC)
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _load_json(payload: bytes) -> Any:
    try:
        return json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        msg = "Callback body is not valid JSON"
        raise SchemaValidationError(msg, errors=[str(exc)]) from exc


def parse_sendgrid(payload: bytes) -> list[ProviderEvent]:
    data = _load_json(payload)
    if not isinstance(data, list):
        data = [data]
    events = []
    for item in data:
        message_id = str(item.get("sg_message_id") or "")
        if not message_id:
            continue
        name = str(item.get("event", "")).lower()
        events.append(
            ProviderEvent(
                # sg_message_id carries the send id followed by routing suffixes
                provider_message_id=message_id.split(".", 1)[0],
                event=SENDGRID_EVENTS.get(name),
                provider_event=name,
                occurred_at=_timestamp(item.get("timestamp")),
                raw=item,
            )
        )
    return events


def parse_twilio(payload: bytes) -> list[ProviderEvent]:
    form = dict(parse_qsl(payload.decode("utf-8"), keep_blank_values=True))
    message_id = form.get("MessageSid") or form.get("SmsSid")
    if not message_id:
        return []
    status = (form.get("MessageStatus") or form.get("SmsStatus") or "").lower()
    return [
        ProviderEvent(
            provider_message_id=message_id,
            event=TWILIO_STATUSES.get(status),
            provider_event=status,
            raw=form,
        )
    ]


def parse_generic(payload: bytes) -> list[ProviderEvent]:
    data = _load_json(payload)
    if not isinstance(data, list):
        data = [data]
    return [
        ProviderEvent(
            provider_message_id=str(item["message_id"]),
            event=GENERIC_EVENTS.get(str(item.get("event", "")).lower()),
            provider_event=str(item.get("event", "")),
            occurred_at=_timestamp(item.get("timestamp")),
            raw=item,
        )
        for item in data
        if item.get("message_id")
    ]


_PARSERS = {
    "sendgrid": parse_sendgrid,
    "twilio": parse_twilio,
}


class ProviderEventIngestor(BaseService):
    """Verifies provider callbacks and applies their events to tracking records.

    Duplicate or out-of-order events (an ``open`` after a ``bounce``) are
    counted and skipped rather than failing the whole batch.

    Example:
        ingestor = ProviderEventIngestor(session_factory, orchestrator)
        result = await ingestor.ingest("sendgrid", body, headers.get("X-Signature"))
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        orchestrator: DeliveryOrchestrator,
        *,
        settings: WebhookSettings | None = None,
        clock: Clock | None = None,
    ) -> None:
        super().__init__()
        if settings is None:
            from notification_engine.core.settings import get_webhook_settings

            settings = get_webhook_settings()
        self._session_factory = session_factory
        self.orchestrator = orchestrator
        self.settings = settings
        self._clock = clock or get_clock()
        self._tracking = get_delivery_tracking_repository()

    def verify(self, provider: str, payload: bytes, signature: str | None) -> None:
        """Raise SignatureVerificationError unless the payload is signed correctly.

        Providers without a configured secret are only accepted when
        verification is disabled.
        """
        if not self.settings.verify_signatures:
            return
        secret = self.settings.secrets.get(provider)
        if secret is None:
            raise SignatureVerificationError(provider, f"No signing secret configured for {provider!r}")
        if not signature or not verify_signature(
            secret.get_secret_value(), payload, signature, self.settings.algorithm
        ):
            self.logger.warning(
                "Rejected provider callback with bad signature",
                extra={"provider": provider, "operation": "webhook.verify"},
            )
            raise SignatureVerificationError(provider)

    def parse(self, provider: str, payload: bytes) -> list[ProviderEvent]:
        events = _PARSERS.get(provider, parse_generic)(payload)
        if len(events) > self.settings.max_events_per_callback:
            msg = f"Callback carries {len(events)} events; limit is {self.settings.max_events_per_callback}"
            raise SchemaValidationError(msg, errors=["events"])
        return events

    async def ingest(self, provider: str, payload: bytes, signature: str | None = None) -> IngestResult:
        """Verify, parse and apply one callback body."""
        self.verify(provider, payload, signature)
        result = IngestResult()

        for item in self.parse(provider, payload):
            if item.event is None:
                result.ignored += 1
                provider_event_total.labels(provider=provider, event=item.provider_event, outcome="ignored").inc()
                continue

            async with self._session_factory() as session:
                record = await self._tracking.get_by_provider_message_id(session, item.provider_message_id)
            if record is None:
                result.unknown_message += 1
                provider_event_total.labels(provider=provider, event=item.event, outcome="unknown_message").inc()
                self._lazy.debug(lambda: f"callback for unknown message {item.provider_message_id}")
                continue

            try:
                await self.orchestrator.record_event(
                    record.id,
                    item.event,
                    item.occurred_at or self._clock.now(),
                    {f"{provider}_{item.provider_event}": item.raw},
                )
            except (InvalidTransitionError, NotFoundError) as exc:
                result.invalid_transition += 1
                provider_event_total.labels(provider=provider, event=item.event, outcome="invalid_transition").inc()
                self.logger.info(
                    "Provider event not applicable to delivery state",
                    extra={
                        "provider": provider,
                        "provider_message_id": item.provider_message_id,
                        "event": str(item.event),
                        "error": exc.detail,
                        "operation": "webhook.ingest",
                    },
                )
                continue

            result.applied += 1
            provider_event_total.labels(provider=provider, event=item.event, outcome="applied").inc()

        self.logger.info(
            "Provider callback processed",
            extra={
                "provider": provider,
                "applied": result.applied,
                "ignored": result.ignored,
                "unknown_message": result.unknown_message,
                "invalid_transition": result.invalid_transition,
                "operation": "webhook.ingest",
            },
        )
        return result
