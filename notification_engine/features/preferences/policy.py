"""Policy gate: decides which requested channels may be sent now.

Per channel, checks run in a fixed order and the first match wins:

1. active, unexpired suppression for the channel address or user id -> blocked
2. global opt-out -> blocked ``global-opt-out``
3. channel switched off -> blocked ``channel-disabled``
4. category explicitly disabled -> blocked ``category-disabled``
5. inside recipient-local quiet hours -> deferred until the window ends
6. daily or weekly cap reached -> blocked ``rate-limited``
7. allowed

A user without a preferences row is fully opted in; suppression checks run
regardless.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from notification_engine.core.channels import Channel, parse_channels
from notification_engine.core.clock import get_clock
from notification_engine.core.exceptions import PreferenceBlockedError, SuppressedError
from notification_engine.core.services import BaseService
from notification_engine.features.preferences.metrics import policy_decision_total
from notification_engine.features.preferences.repository import (
    get_preferences_repository,
    get_suppression_repository,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from notification_engine.core.clock import Clock
    from notification_engine.core.recipients import RecipientIdentity
    from notification_engine.features.preferences.models import UserNotificationPreferences
    from notification_engine.infra.ratelimit import SendCounter


class BlockReason(StrEnum):
    GLOBAL_OPT_OUT = "global-opt-out"
    CHANNEL_DISABLED = "channel-disabled"
    CATEGORY_DISABLED = "category-disabled"
    RATE_LIMITED = "rate-limited"


DAY = timedelta(days=1)
WEEK = timedelta(days=7)


@dataclass(frozen=True, slots=True)
class BlockedChannel:
    channel: Channel
    reason: str
    suppressed: bool = False
    """True when a suppression entry (not a preference) caused the block."""


@dataclass(frozen=True, slots=True)
class DeferredChannel:
    channel: Channel
    until: datetime


@dataclass(slots=True)
class PolicyDecision:
    allowed: list[Channel] = field(default_factory=list)
    blocked: list[BlockedChannel] = field(default_factory=list)
    deferred: list[DeferredChannel] = field(default_factory=list)

    def blocked_reason(self, channel: Channel) -> str | None:
        return next((b.reason for b in self.blocked if b.channel == channel), None)

    @property
    def earliest_deferral(self) -> datetime | None:
        return min((d.until for d in self.deferred), default=None)


def _parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def quiet_window_end(prefs: UserNotificationPreferences, at: datetime) -> datetime | None:
    """End of the quiet window containing ``at``, or None when ``at`` is outside it.

    Windows where start > end wrap midnight. Equal start and end means no
    quiet hours.
    """
    if not prefs.quiet_hours_start or not prefs.quiet_hours_end:
        return None
    start = _parse_hhmm(prefs.quiet_hours_start)
    end = _parse_hhmm(prefs.quiet_hours_end)
    if start == end:
        return None

    zone = ZoneInfo(prefs.timezone or "UTC")
    local = at.astimezone(zone)
    now_t = local.time().replace(tzinfo=None)

    inside = start <= now_t < end if start < end else (now_t >= start or now_t < end)
    if not inside:
        return None

    candidate = datetime.combine(local.date(), end, tzinfo=zone)
    if candidate <= local:
        candidate = datetime.combine(local.date() + timedelta(days=1), end, tzinfo=zone)
    return candidate.astimezone(at.tzinfo)


class PolicyGate(BaseService):
    """Filters channels against suppressions, preferences and send caps.

    Example:
        gate = PolicyGate(session_factory, counter=InMemorySendCounter())
        decision = await gate.filter_channels(identity, "marketing", ["email", "sms"], clock.now())
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        counter: SendCounter,
        clock: Clock | None = None,
        quiet_hours_bypass_urgent: bool = True,
    ) -> None:
        super().__init__()
        self._session_factory = session_factory
        self.counter = counter
        self._clock = clock or get_clock()
        self.quiet_hours_bypass_urgent = quiet_hours_bypass_urgent
        self._preferences = get_preferences_repository()
        self._suppressions = get_suppression_repository()

    async def filter_channels(
        self,
        identity: RecipientIdentity,
        category: str | None,
        requested_channels: Sequence[str | Channel],
        occurrence_time: datetime | None = None,
        *,
        priority: str = "normal",
        session: AsyncSession | None = None,
    ) -> PolicyDecision:
        """Evaluate every requested channel.

        Args:
            identity: Recipient identifiers.
            category: Notification category for per-category overrides.
            requested_channels: Channels to evaluate, in request order.
            occurrence_time: Time of evaluation; defaults to the clock.
            priority: ``urgent`` bypasses quiet hours when configured.
            session: Reuse the caller's session (reads only).
        """
        at = occurrence_time or self._clock.now()
        channels = parse_channels(list(requested_channels))

        if session is None:
            async with self._session_factory() as own_session:
                return await self._evaluate(own_session, identity, category, channels, at, priority)
        return await self._evaluate(session, identity, category, channels, at, priority)

    async def _evaluate(
        self,
        session: AsyncSession,
        identity: RecipientIdentity,
        category: str | None,
        channels: list[Channel],
        at: datetime,
        priority: str,
    ) -> PolicyDecision:
        decision = PolicyDecision()
        prefs = None
        if identity.user_id:
            prefs = await self._preferences.get_for_user(session, identity.user_id)

        cap_reached: bool | None = None

        for channel in channels:
            suppression = await self._suppressions.find_effective(
                session, identity.suppression_keys(channel), channel, at
            )
            if suppression is not None:
                self._block(decision, channel, suppression.reason, suppressed=True)
                continue

            if prefs is not None:
                if prefs.global_opt_out:
                    self._block(decision, channel, BlockReason.GLOBAL_OPT_OUT)
                    continue
                if not prefs.channel_enabled(channel):
                    self._block(decision, channel, BlockReason.CHANNEL_DISABLED)
                    continue
                if category and (prefs.category_preferences or {}).get(category) is False:
                    self._block(decision, channel, BlockReason.CATEGORY_DISABLED)
                    continue

                quiet_end = quiet_window_end(prefs, at)
                if quiet_end is not None and not (priority == "urgent" and self.quiet_hours_bypass_urgent):
                    decision.deferred.append(DeferredChannel(channel, quiet_end))
                    policy_decision_total.labels(channel=channel, outcome="deferred", reason="quiet-hours").inc()
                    continue

                if cap_reached is None:
                    cap_reached = await self._cap_reached(prefs, identity, at)
                if cap_reached:
                    self._block(decision, channel, BlockReason.RATE_LIMITED)
                    continue

            decision.allowed.append(channel)
            policy_decision_total.labels(channel=channel, outcome="allowed", reason="none").inc()

        self._lazy.debug(
            lambda: (
                f"policy: user={identity.user_id} allowed={[str(c) for c in decision.allowed]} "
                f"blocked={[(str(b.channel), b.reason) for b in decision.blocked]} "
                f"deferred={[str(d.channel) for d in decision.deferred]}"
            )
        )
        return decision

    def _block(self, decision: PolicyDecision, channel: Channel, reason: str, *, suppressed: bool = False) -> None:
        decision.blocked.append(BlockedChannel(channel, str(reason), suppressed))
        policy_decision_total.labels(channel=channel, outcome="blocked", reason=str(reason)).inc()

    async def _cap_reached(
        self,
        prefs: UserNotificationPreferences,
        identity: RecipientIdentity,
        at: datetime,
    ) -> bool:
        key = identity.rate_key
        if key is None:
            return False
        if prefs.max_daily_notifications is not None:
            if await self.counter.count(key, DAY, at) >= prefs.max_daily_notifications:
                return True
        if prefs.max_weekly_notifications is not None:
            if await self.counter.count(key, WEEK, at) >= prefs.max_weekly_notifications:
                return True
        return False

    async def ensure_allowed(
        self,
        identity: RecipientIdentity,
        category: str | None,
        channel: str | Channel,
        occurrence_time: datetime | None = None,
    ) -> None:
        """Raise when a single channel would be blocked.

        Raises:
            SuppressedError: A suppression entry blocks the channel.
            PreferenceBlockedError: Preferences or caps block it, or it is
                inside quiet hours.
        """
        decision = await self.filter_channels(identity, category, [channel], occurrence_time)
        if decision.blocked:
            blocked = decision.blocked[0]
            if blocked.suppressed:
                raise SuppressedError(blocked.channel, blocked.reason)
            raise PreferenceBlockedError(blocked.channel, blocked.reason)
        if decision.deferred:
            raise PreferenceBlockedError(decision.deferred[0].channel, "quiet-hours")
