"""Tests for the policy gate's check order and outcomes."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from notification_engine.core.channels import Channel
from notification_engine.core.exceptions import PreferenceBlockedError, SuppressedError
from notification_engine.core.recipients import RecipientIdentity
from notification_engine.features.preferences.policy import PolicyGate
from notification_engine.features.preferences.schemas import PreferencesUpdate, SuppressionCreate
from notification_engine.features.preferences.service import PreferenceService

pytestmark = pytest.mark.integration

ADA = RecipientIdentity(user_id="u-1", email="ada@example.com", phone="+15550001", device_token="tok-1")


def _reasons(decision) -> dict[str, str]:
    return {str(b.channel): b.reason for b in decision.blocked}


@pytest.mark.asyncio
async def test_no_preferences_row_allows_everything(policy: PolicyGate) -> None:
    decision = await policy.filter_channels(ADA, "marketing", ["email", "sms", "push", "in_app"])

    assert decision.allowed == [Channel.EMAIL, Channel.SMS, Channel.PUSH, Channel.IN_APP]
    assert decision.blocked == []
    assert decision.deferred == []


@pytest.mark.asyncio
async def test_channel_disabled(policy: PolicyGate, preferences: PreferenceService) -> None:
    await preferences.upsert_preferences("u-1", PreferencesUpdate(email_enabled=False))

    decision = await policy.filter_channels(ADA, "onboarding", ["email", "sms"])

    assert decision.allowed == [Channel.SMS]
    assert decision.blocked_reason(Channel.EMAIL) == "channel-disabled"


@pytest.mark.asyncio
async def test_expired_suppression_is_ignored(policy: PolicyGate, preferences: PreferenceService, clock) -> None:
    await preferences.add_suppression(
        SuppressionCreate(identifier="ada@example.com", channel="email", expires_at=clock.now() - timedelta(days=1))
    )

    decision = await policy.filter_channels(ADA, None, ["email"])

    assert decision.allowed == [Channel.EMAIL]


@pytest.mark.asyncio
async def test_active_suppression_blocks_with_its_reason(policy: PolicyGate, preferences: PreferenceService) -> None:
    await preferences.add_suppression(SuppressionCreate(identifier="ada@example.com", channel="email", reason="bounce"))

    decision = await policy.filter_channels(ADA, None, ["email", "sms"])

    assert decision.allowed == [Channel.SMS]
    assert decision.blocked[0].reason == "bounce"
    assert decision.blocked[0].suppressed is True


@pytest.mark.asyncio
async def test_user_id_suppression_blocks_every_channel(policy: PolicyGate, preferences: PreferenceService) -> None:
    await preferences.add_suppression(SuppressionCreate(identifier="u-1", channel="in_app"))
    await preferences.add_suppression(SuppressionCreate(identifier="u-1", channel="push"))

    decision = await policy.filter_channels(ADA, None, ["push", "in_app", "email"])

    assert decision.allowed == [Channel.EMAIL]
    assert set(_reasons(decision)) == {"push", "in_app"}


@pytest.mark.asyncio
async def test_suppression_checks_run_even_without_user(policy: PolicyGate, preferences: PreferenceService) -> None:
    await preferences.add_suppression(SuppressionCreate(identifier="+15550001", channel="sms", reason="complaint"))

    decision = await policy.filter_channels(RecipientIdentity(phone="+15550001"), None, ["sms"])

    assert _reasons(decision) == {"sms": "complaint"}


@pytest.mark.asyncio
async def test_suppression_wins_over_opt_out(policy: PolicyGate, preferences: PreferenceService) -> None:
    await preferences.add_suppression(SuppressionCreate(identifier="ada@example.com", channel="email"))
    await preferences.opt_out("u-1")

    decision = await policy.filter_channels(ADA, None, ["email", "sms"])

    assert _reasons(decision) == {"email": "manual", "sms": "global-opt-out"}


@pytest.mark.asyncio
async def test_opt_out_wins_over_channel_and_category(policy: PolicyGate, preferences: PreferenceService) -> None:
    await preferences.upsert_preferences(
        "u-1",
        PreferencesUpdate(global_opt_out=True, sms_enabled=False, category_preferences={"marketing": False}),
    )

    decision = await policy.filter_channels(ADA, "marketing", ["sms"])

    assert _reasons(decision) == {"sms": "global-opt-out"}


@pytest.mark.asyncio
async def test_channel_disabled_wins_over_category(policy: PolicyGate, preferences: PreferenceService) -> None:
    await preferences.upsert_preferences(
        "u-1", PreferencesUpdate(sms_enabled=False, category_preferences={"marketing": False})
    )

    decision = await policy.filter_channels(ADA, "marketing", ["sms", "email"])

    assert _reasons(decision) == {"sms": "channel-disabled", "email": "category-disabled"}


@pytest.mark.asyncio
async def test_category_only_blocks_when_explicitly_false(policy: PolicyGate, preferences: PreferenceService) -> None:
    await preferences.upsert_preferences(
        "u-1", PreferencesUpdate(category_preferences={"marketing": False, "security": True})
    )

    assert (await policy.filter_channels(ADA, "security", ["email"])).allowed == [Channel.EMAIL]
    assert (await policy.filter_channels(ADA, "billing", ["email"])).allowed == [Channel.EMAIL]
    assert (await policy.filter_channels(ADA, None, ["email"])).allowed == [Channel.EMAIL]


@pytest.mark.asyncio
async def test_category_disabled_wins_over_quiet_hours(policy: PolicyGate, preferences: PreferenceService) -> None:
    await preferences.upsert_preferences(
        "u-1",
        PreferencesUpdate(category_preferences={"marketing": False}, quiet_hours_start="00:00", quiet_hours_end="23:59"),
    )

    decision = await policy.filter_channels(ADA, "marketing", ["email"])

    assert _reasons(decision) == {"email": "category-disabled"}
    assert decision.deferred == []


@pytest.mark.asyncio
async def test_quiet_hours_defer_until_window_end(policy: PolicyGate, preferences: PreferenceService) -> None:
    await preferences.upsert_preferences("u-1", PreferencesUpdate(quiet_hours_start="22:00", quiet_hours_end="07:00"))
    night = datetime(2025, 1, 6, 23, 15, tzinfo=UTC)

    decision = await policy.filter_channels(ADA, None, ["email", "push"], night)

    assert decision.allowed == []
    assert [d.channel for d in decision.deferred] == [Channel.EMAIL, Channel.PUSH]
    assert decision.earliest_deferral == datetime(2025, 1, 7, 7, 0, tzinfo=UTC)


@pytest.mark.asyncio
async def test_urgent_bypasses_quiet_hours(policy: PolicyGate, preferences: PreferenceService) -> None:
    await preferences.upsert_preferences("u-1", PreferencesUpdate(quiet_hours_start="22:00", quiet_hours_end="07:00"))
    night = datetime(2025, 1, 6, 23, 15, tzinfo=UTC)

    decision = await policy.filter_channels(ADA, None, ["email"], night, priority="urgent")

    assert decision.allowed == [Channel.EMAIL]


@pytest.mark.asyncio
async def test_urgent_bypass_can_be_disabled(session_factory, counter, clock, preferences: PreferenceService) -> None:
    strict = PolicyGate(session_factory, counter=counter, clock=clock, quiet_hours_bypass_urgent=False)
    await preferences.upsert_preferences("u-1", PreferencesUpdate(quiet_hours_start="22:00", quiet_hours_end="07:00"))

    decision = await strict.filter_channels(ADA, None, ["email"], datetime(2025, 1, 6, 23, 15, tzinfo=UTC), priority="urgent")

    assert len(decision.deferred) == 1


@pytest.mark.asyncio
async def test_quiet_hours_win_over_rate_limit(policy: PolicyGate, preferences: PreferenceService, counter) -> None:
    await preferences.upsert_preferences(
        "u-1",
        PreferencesUpdate(max_daily_notifications=0, quiet_hours_start="22:00", quiet_hours_end="07:00"),
    )

    night = await policy.filter_channels(ADA, None, ["email"], datetime(2025, 1, 6, 23, 15, tzinfo=UTC))
    day = await policy.filter_channels(ADA, None, ["email"], datetime(2025, 1, 6, 12, 0, tzinfo=UTC))

    assert len(night.deferred) == 1
    assert _reasons(day) == {"email": "rate-limited"}


@pytest.mark.asyncio
async def test_daily_cap(policy: PolicyGate, preferences: PreferenceService, counter, clock) -> None:
    await preferences.upsert_preferences("u-1", PreferencesUpdate(max_daily_notifications=2))
    await counter.record("user:u-1", clock.now() - timedelta(hours=1))

    assert (await policy.filter_channels(ADA, None, ["email"])).allowed == [Channel.EMAIL]

    await counter.record("user:u-1", clock.now())
    assert _reasons(await policy.filter_channels(ADA, None, ["email", "sms"])) == {
        "email": "rate-limited",
        "sms": "rate-limited",
    }

    clock.advance(days=1)
    assert (await policy.filter_channels(ADA, None, ["email"])).allowed == [Channel.EMAIL]


@pytest.mark.asyncio
async def test_weekly_cap(policy: PolicyGate, preferences: PreferenceService, counter, clock) -> None:
    await preferences.upsert_preferences("u-1", PreferencesUpdate(max_weekly_notifications=2))
    await counter.record("user:u-1", clock.now() - timedelta(days=3))
    await counter.record("user:u-1", clock.now() - timedelta(days=5))

    assert _reasons(await policy.filter_channels(ADA, None, ["email"])) == {"email": "rate-limited"}


@pytest.mark.asyncio
async def test_ensure_allowed_raises_typed_errors(policy: PolicyGate, preferences: PreferenceService) -> None:
    await preferences.add_suppression(SuppressionCreate(identifier="ada@example.com", channel="email"))
    await preferences.upsert_preferences("u-1", PreferencesUpdate(sms_enabled=False))

    with pytest.raises(SuppressedError):
        await policy.ensure_allowed(ADA, None, "email")
    with pytest.raises(PreferenceBlockedError) as exc_info:
        await policy.ensure_allowed(ADA, None, "sms")
    assert exc_info.value.reason == "channel-disabled"

    await policy.ensure_allowed(ADA, None, "push")
