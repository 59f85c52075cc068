"""Repositories for preferences and suppressions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import or_, select

from notification_engine.core.channels import Channel
from notification_engine.core.database import BaseRepository
from notification_engine.core.recipients import normalize_phone
from notification_engine.features.preferences.models import (
    NotificationSuppression,
    UserNotificationPreferences,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession


def normalize_identifier(channel: str, identifier: str) -> str:
    """Canonical form used for suppression keys.

    Emails are case-insensitive and phone numbers are compared in E.164.
    An sms identifier that does not parse as a phone number (a user id,
    say) is kept as given.
    """
    identifier = identifier.strip()
    if channel == Channel.EMAIL:
        return identifier.lower()
    if channel == Channel.SMS and identifier.startswith("+"):
        try:
            return normalize_phone(identifier)
        except ValueError:
            return identifier
    return identifier


class PreferencesRepository(BaseRepository[UserNotificationPreferences]):
    async def get_for_user(self, session: AsyncSession, user_id: str) -> UserNotificationPreferences | None:
        return await self.get_by(session, UserNotificationPreferences.user_id, user_id)


class SuppressionRepository(BaseRepository[NotificationSuppression]):
    async def get_entry(
        self,
        session: AsyncSession,
        identifier: str,
        channel: str,
    ) -> NotificationSuppression | None:
        stmt = select(NotificationSuppression).where(
            NotificationSuppression.identifier == normalize_identifier(channel, identifier),
            NotificationSuppression.channel == channel,
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_effective(
        self,
        session: AsyncSession,
        identifiers: Iterable[str],
        channel: str,
        at: datetime,
    ) -> NotificationSuppression | None:
        """First active, unexpired entry for any of ``identifiers`` on ``channel``."""
        keys = sorted({normalize_identifier(channel, i) for i in identifiers if i})
        if not keys:
            return None
        stmt = (
            select(NotificationSuppression)
            .where(
                NotificationSuppression.identifier.in_(keys),
                NotificationSuppression.channel == channel,
                NotificationSuppression.is_active.is_(True),
                or_(
                    NotificationSuppression.expires_at.is_(None),
                    NotificationSuppression.expires_at > at,
                ),
            )
            .order_by(NotificationSuppression.added_at)
            .limit(1)
        )
        result = await session.execute(stmt)
        entry = result.scalar_one_or_none()
        self._lazy.debug(
            lambda: f"db.find_effective: {channel}:{keys} -> {entry.reason if entry else 'none'}"
        )
        return entry

    async def list_entries(
        self,
        session: AsyncSession,
        *,
        identifier: str | None = None,
        channel: str | None = None,
        active_only: bool = True,
    ) -> Sequence[NotificationSuppression]:
        criteria = []
        if channel is not None:
            criteria.append(NotificationSuppression.channel == channel)
        if identifier is not None:
            # Without a channel every channel's canonical form is a candidate
            scopes = [channel] if channel is not None else list(Channel)
            candidates = {identifier.strip(), *(normalize_identifier(c, identifier) for c in scopes)}
            criteria.append(NotificationSuppression.identifier.in_(sorted(candidates)))
        if active_only:
            criteria.append(NotificationSuppression.is_active.is_(True))
        return await self.find(session, *criteria, order_by=NotificationSuppression.added_at)

    async def list_expired_active(self, session: AsyncSession, at: datetime) -> Sequence[NotificationSuppression]:
        return await self.find(
            session,
            NotificationSuppression.is_active.is_(True),
            NotificationSuppression.expires_at.is_not(None),
            NotificationSuppression.expires_at <= at,
        )


_preferences_repository: PreferencesRepository | None = None
_suppression_repository: SuppressionRepository | None = None


def get_preferences_repository() -> PreferencesRepository:
    global _preferences_repository
    if _preferences_repository is None:
        _preferences_repository = PreferencesRepository(UserNotificationPreferences)
    return _preferences_repository


def get_suppression_repository() -> SuppressionRepository:
    global _suppression_repository
    if _suppression_repository is None:
        _suppression_repository = SuppressionRepository(NotificationSuppression)
    return _suppression_repository
