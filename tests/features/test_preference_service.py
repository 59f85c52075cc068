"""Tests for preference and suppression management."""

from __future__ import annotations

from datetime import timedelta

import pytest

from notification_engine.core.exceptions import ConflictError, NotFoundError
from notification_engine.features.preferences.schemas import (
    PreferencesUpdate,
    SuppressionCreate,
    SuppressionReason,
)
from notification_engine.features.preferences.service import PreferenceService

pytestmark = pytest.mark.integration


@pytest.mark.asyncio
async def test_defaults_without_row(preferences: PreferenceService) -> None:
    prefs = await preferences.get_preferences("u-1")

    assert prefs.persisted is False
    assert prefs.email_enabled and prefs.sms_enabled and prefs.push_enabled and prefs.in_app_enabled
    assert prefs.global_opt_out is False


@pytest.mark.asyncio
async def test_partial_update_keeps_other_fields(preferences: PreferenceService) -> None:
    await preferences.upsert_preferences("u-1", PreferencesUpdate(sms_enabled=False, timezone="Europe/Paris"))
    prefs = await preferences.upsert_preferences("u-1", PreferencesUpdate(category_preferences={"marketing": False}))

    assert prefs.persisted is True
    assert prefs.sms_enabled is False
    assert prefs.email_enabled is True
    assert prefs.timezone == "Europe/Paris"
    assert prefs.category_preferences == {"marketing": False}


@pytest.mark.asyncio
async def test_opt_out_and_back_in(preferences: PreferenceService, clock) -> None:
    out = await preferences.opt_out("u-1")
    assert out.global_opt_out is True
    assert out.opt_out_date == clock.now()

    clock.advance(days=1)
    back = await preferences.opt_in("u-1")
    assert back.global_opt_out is False
    assert back.consent_date == clock.now()
    assert back.opt_out_date == out.opt_out_date


@pytest.mark.asyncio
async def test_add_and_check_suppression(preferences: PreferenceService) -> None:
    entry = await preferences.add_suppression(
        SuppressionCreate(identifier="Ada@Example.com", channel="email", reason=SuppressionReason.UNSUBSCRIBE)
    )

    assert entry.identifier == "ada@example.com"
    assert entry.reason == "unsubscribe"
    assert await preferences.is_suppressed("ADA@example.com", "email")
    assert not await preferences.is_suppressed("ada@example.com", "sms")


@pytest.mark.asyncio
async def test_phone_suppression_ignores_formatting(preferences: PreferenceService) -> None:
    entry = await preferences.add_suppression(SuppressionCreate(identifier="+1 (555) 000-1234", channel="sms"))

    assert entry.identifier == "+15550001234"
    assert await preferences.is_suppressed("+15550001234", "sms")
    assert await preferences.is_suppressed("+1 555-000-1234", "sms")
    assert [e.identifier for e in await preferences.list_suppressions(identifier="+1.555.000.1234")] == [
        "+15550001234"
    ]
    with pytest.raises(ConflictError):
        await preferences.add_suppression(SuppressionCreate(identifier="+15550001234", channel="sms"))


@pytest.mark.asyncio
async def test_duplicate_active_suppression_conflicts(preferences: PreferenceService) -> None:
    await preferences.add_suppression(SuppressionCreate(identifier="+15550001", channel="sms"))
    with pytest.raises(ConflictError):
        await preferences.add_suppression(SuppressionCreate(identifier="+15550001", channel="sms"))


@pytest.mark.asyncio
async def test_remove_then_re_add_reuses_row(preferences: PreferenceService) -> None:
    first = await preferences.add_suppression(SuppressionCreate(identifier="+15550001", channel="sms"))
    removed = await preferences.remove_suppression("+15550001", "sms")
    assert removed.is_active is False
    assert not await preferences.is_suppressed("+15550001", "sms")

    again = await preferences.add_suppression(
        SuppressionCreate(identifier="+15550001", channel="sms", reason=SuppressionReason.BOUNCE)
    )
    assert again.id == first.id
    assert again.reason == "bounce"
    assert again.is_active is True


@pytest.mark.asyncio
async def test_remove_missing_suppression(preferences: PreferenceService) -> None:
    with pytest.raises(NotFoundError):
        await preferences.remove_suppression("nobody@example.com", "email")


@pytest.mark.asyncio
async def test_expired_suppression_is_not_effective(preferences: PreferenceService, clock) -> None:
    await preferences.add_suppression(
        SuppressionCreate(identifier="a@b.com", channel="email", expires_at=clock.now() + timedelta(hours=1))
    )
    assert await preferences.is_suppressed("a@b.com", "email")

    clock.advance(hours=2)
    assert not await preferences.is_suppressed("a@b.com", "email")

    # An expired entry does not block a new one
    renewed = await preferences.add_suppression(SuppressionCreate(identifier="a@b.com", channel="email"))
    assert renewed.expires_at is None


@pytest.mark.asyncio
async def test_purge_expired(preferences: PreferenceService, clock) -> None:
    await preferences.add_suppression(
        SuppressionCreate(identifier="a@b.com", channel="email", expires_at=clock.now() + timedelta(minutes=5))
    )
    await preferences.add_suppression(SuppressionCreate(identifier="c@d.com", channel="email"))

    assert await preferences.purge_expired() == 0
    clock.advance(minutes=10)
    assert await preferences.purge_expired() == 1

    active = await preferences.list_suppressions()
    assert [s.identifier for s in active] == ["c@d.com"]
    assert len(await preferences.list_suppressions(active_only=False)) == 2


@pytest.mark.asyncio
async def test_list_suppressions_by_identifier(preferences: PreferenceService) -> None:
    await preferences.add_suppression(SuppressionCreate(identifier="a@b.com", channel="email"))
    await preferences.add_suppression(SuppressionCreate(identifier="u-1", channel="push"))

    assert [s.channel for s in await preferences.list_suppressions(identifier="A@B.com")] == ["email"]
    assert [s.identifier for s in await preferences.list_suppressions(channel="push")] == ["u-1"]
