"""Preference and suppression management."""

from __future__ import annotations

from typing import TYPE_CHECKING

from notification_engine.core.channels import parse_channel
from notification_engine.core.clock import get_clock
from notification_engine.core.exceptions import ConflictError, NotFoundError
from notification_engine.core.services import BaseService
from notification_engine.features.preferences.metrics import suppression_added_total
from notification_engine.features.preferences.models import (
    NotificationSuppression,
    UserNotificationPreferences,
)
from notification_engine.features.preferences.repository import (
    get_preferences_repository,
    get_suppression_repository,
    normalize_identifier,
)
from notification_engine.features.preferences.schemas import (
    PreferencesRead,
    PreferencesUpdate,
    SuppressionCreate,
    SuppressionRead,
    SuppressionReason,
)

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from notification_engine.core.clock import Clock


async def upsert_suppression(
    session: AsyncSession,
    *,
    identifier: str,
    channel: str,
    reason: str,
    at: datetime,
    added_by: str | None = None,
    expires_at: datetime | None = None,
    conflict_if_active: bool = True,
) -> NotificationSuppression:
    """Insert a suppression entry, or reactivate the row already keyed on (identifier, channel).

    Args:
        conflict_if_active: Raise ConflictError when an effective entry
            exists; otherwise return it untouched (system-triggered inserts).
    """
    repository = get_suppression_repository()
    entry = await repository.get_entry(session, identifier, channel)
    if entry is not None and entry.is_effective(at):
        if conflict_if_active:
            raise ConflictError(
                f"{channel}:{entry.identifier} is already suppressed",
                extra={"identifier": entry.identifier, "channel": channel, "reason": entry.reason},
            )
        return entry

    if entry is None:
        entry = NotificationSuppression(
            identifier=normalize_identifier(channel, identifier),
            channel=channel,
            reason=reason,
            added_by=added_by,
            added_at=at,
            expires_at=expires_at,
            is_active=True,
        )
        await repository.create(session, entry)
    else:
        entry.reason = reason
        entry.added_by = added_by
        entry.added_at = at
        entry.expires_at = expires_at
        entry.is_active = True
        await session.flush()

    suppression_added_total.labels(channel=channel, reason=reason).inc()
    return entry


class PreferenceService(BaseService):
    """User preference matrix and suppression list maintenance.

    Example:
        service = PreferenceService(session_factory)
        await service.upsert_preferences("u-1", PreferencesUpdate(sms_enabled=False))
        await service.add_suppression(SuppressionCreate(identifier="a@b.com", channel="email"))
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Clock | None = None,
    ) -> None:
        super().__init__()
        self._session_factory = session_factory
        self._clock = clock or get_clock()
        self._preferences = get_preferences_repository()
        self._suppressions = get_suppression_repository()

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    async def get_preferences(self, user_id: str) -> PreferencesRead:
        """Stored preferences, or the implicit all-enabled defaults."""
        async with self._session_factory() as session:
            prefs = await self._preferences.get_for_user(session, user_id)
            if prefs is None:
                return PreferencesRead(user_id=user_id, persisted=False)
            return PreferencesRead.model_validate(prefs)

    async def upsert_preferences(self, user_id: str, data: PreferencesUpdate) -> PreferencesRead:
        changes = data.model_dump(exclude_unset=True)
        now = self._clock.now()

        async with self._session_factory() as session:
            prefs = await self._preferences.get_for_user(session, user_id)
            created = prefs is None
            if prefs is None:
                prefs = UserNotificationPreferences(user_id=user_id, consent_date=now)
                session.add(prefs)

            previous_opt_out = bool(prefs.global_opt_out)
            for name, value in changes.items():
                setattr(prefs, name, value)
            if "global_opt_out" in changes and changes["global_opt_out"] != previous_opt_out:
                if changes["global_opt_out"]:
                    prefs.opt_out_date = now
                else:
                    prefs.consent_date = now

            await session.commit()

        self.logger.info(
            "Notification preferences saved",
            extra={
                "user_id": user_id,
                "preferences_created": created,
                "fields": sorted(changes),
                "operation": "service.upsert_preferences",
            },
        )
        return PreferencesRead.model_validate(prefs)

    async def opt_out(self, user_id: str) -> PreferencesRead:
        return await self.upsert_preferences(user_id, PreferencesUpdate(global_opt_out=True))

    async def opt_in(self, user_id: str) -> PreferencesRead:
        return await self.upsert_preferences(user_id, PreferencesUpdate(global_opt_out=False))

    # ------------------------------------------------------------------
    # Suppressions
    # ------------------------------------------------------------------

    async def add_suppression(self, data: SuppressionCreate) -> SuppressionRead:
        """Suppress an identifier on a channel.

        Raises:
            ConflictError: An active, unexpired entry already exists.
            UnsupportedChannelError: Unknown channel.
        """
        channel = str(parse_channel(data.channel))
        async with self._session_factory() as session:
            entry = await upsert_suppression(
                session,
                identifier=data.identifier,
                channel=channel,
                reason=str(data.reason),
                at=self._clock.now(),
                added_by=data.added_by,
                expires_at=data.expires_at,
            )
            await session.commit()

        self.logger.info(
            "Suppression added",
            extra={
                "identifier": entry.identifier,
                "channel": channel,
                "reason": entry.reason,
                "expires_at": entry.expires_at.isoformat() if entry.expires_at else None,
                "operation": "service.add_suppression",
            },
        )
        return SuppressionRead.model_validate(entry)

    async def remove_suppression(self, identifier: str, channel: str) -> SuppressionRead:
        """Deactivate an entry.

        Raises:
            NotFoundError: No active entry exists for the key.
        """
        channel = str(parse_channel(channel))
        async with self._session_factory() as session:
            entry = await self._suppressions.get_entry(session, identifier, channel)
            if entry is None or not entry.is_active:
                raise NotFoundError("NotificationSuppression", {"identifier": identifier, "channel": channel})
            entry.is_active = False
            await session.commit()

        self.logger.info(
            "Suppression removed",
            extra={"identifier": entry.identifier, "channel": channel, "operation": "service.remove_suppression"},
        )
        return SuppressionRead.model_validate(entry)

    async def is_suppressed(self, identifier: str, channel: str, at: datetime | None = None) -> bool:
        channel = str(parse_channel(channel))
        async with self._session_factory() as session:
            entry = await self._suppressions.find_effective(
                session, [identifier], channel, at or self._clock.now()
            )
            return entry is not None

    async def list_suppressions(
        self,
        *,
        identifier: str | None = None,
        channel: str | None = None,
        active_only: bool = True,
    ) -> list[SuppressionRead]:
        channel = str(parse_channel(channel)) if channel else None
        async with self._session_factory() as session:
            entries = await self._suppressions.list_entries(
                session, identifier=identifier, channel=channel, active_only=active_only
            )
            return [SuppressionRead.model_validate(e) for e in entries]

    async def purge_expired(self) -> int:
        """Deactivate entries whose expiry has passed. Returns how many changed."""
        now = self._clock.now()
        async with self._session_factory() as session:
            entries = await self._suppressions.list_expired_active(session, now)
            for entry in entries:
                entry.is_active = False
            await session.commit()

        if entries:
            self.logger.info(
                "Expired suppressions deactivated",
                extra={"count": len(entries), "operation": "service.purge_expired"},
            )
        return len(entries)


__all__ = ["PreferenceService", "SuppressionReason", "upsert_suppression"]
