"""Repositories for notifications and delivery tracking."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from notification_engine.core.database import BaseRepository
from notification_engine.features.notifications.models import (
    Notification,
    NotificationDeliveryTracking,
)
from notification_engine.features.notifications.state_machine import DeliveryStatus

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession


class NotificationRepository(BaseRepository[Notification]):
    async def list_due_scheduled(self, session: AsyncSession, at: datetime, limit: int = 100) -> Sequence[Notification]:
        """Notifications with channels waiting on a schedule or a quiet-hours deferral that is now due."""
        stmt = (
            select(Notification)
            .where(
                Notification.cancelled_at.is_(None),
                Notification.next_dispatch_at <= at,
            )
            .order_by(Notification.next_dispatch_at)
            .limit(limit)
        )
        result = await session.execute(stmt)
        items = result.scalars().all()
        self._lazy.debug(lambda: f"db.list_due_scheduled: {len(items)} due at {at.isoformat()}")
        return items

    async def list_for_user(
        self,
        session: AsyncSession,
        user_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[Notification]:
        stmt = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await session.execute(stmt)
        return result.scalars().all()


class DeliveryTrackingRepository(BaseRepository[NotificationDeliveryTracking]):
    async def list_for_notification(
        self,
        session: AsyncSession,
        notification_id: UUID,
    ) -> Sequence[NotificationDeliveryTracking]:
        return await self.find(
            session,
            NotificationDeliveryTracking.notification_id == notification_id,
            order_by=NotificationDeliveryTracking.created_at,
        )

    async def get_for_channel(
        self,
        session: AsyncSession,
        notification_id: UUID,
        channel: str,
    ) -> NotificationDeliveryTracking | None:
        stmt = select(NotificationDeliveryTracking).where(
            NotificationDeliveryTracking.notification_id == notification_id,
            NotificationDeliveryTracking.channel == channel,
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_provider_message_id(
        self,
        session: AsyncSession,
        provider_message_id: str,
    ) -> NotificationDeliveryTracking | None:
        stmt = (
            select(NotificationDeliveryTracking)
            .where(NotificationDeliveryTracking.provider_message_id == provider_message_id)
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_due_retries(
        self,
        session: AsyncSession,
        at: datetime,
        limit: int = 100,
    ) -> Sequence[NotificationDeliveryTracking]:
        stmt = (
            select(NotificationDeliveryTracking)
            .where(
                NotificationDeliveryTracking.status == DeliveryStatus.FAILED_TRANSIENT,
                NotificationDeliveryTracking.next_retry_at <= at,
            )
            .order_by(NotificationDeliveryTracking.next_retry_at)
            .limit(limit)
        )
        result = await session.execute(stmt)
        return result.scalars().all()


_notification_repository: NotificationRepository | None = None
_tracking_repository: DeliveryTrackingRepository | None = None


def get_notification_repository() -> NotificationRepository:
    global _notification_repository
    if _notification_repository is None:
        _notification_repository = NotificationRepository(Notification)
    return _notification_repository


def get_delivery_tracking_repository() -> DeliveryTrackingRepository:
    global _tracking_repository
    if _tracking_repository is None:
        _tracking_repository = DeliveryTrackingRepository(NotificationDeliveryTracking)
    return _tracking_repository
