"""Unit tests for rolling-window send counters."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from notification_engine.infra.ratelimit import (
    InMemorySendCounter,
    RedisSendCounter,
    SendCounter,
    build_send_counter,
)

NOW = datetime(2025, 1, 6, 12, 0, tzinfo=UTC)
DAY = timedelta(days=1)
WEEK = timedelta(days=7)


@pytest.mark.unit
class TestInMemorySendCounter:
    @pytest.mark.asyncio
    async def test_counts_within_window(self):
        counter = InMemorySendCounter()
        await counter.record("user:1", NOW - timedelta(hours=30))
        await counter.record("user:1", NOW - timedelta(hours=2))
        await counter.record("user:1", NOW)

        assert await counter.count("user:1", DAY, NOW) == 2
        assert await counter.count("user:1", WEEK, NOW) == 3
        assert await counter.count("user:2", WEEK, NOW) == 0

    @pytest.mark.asyncio
    async def test_same_member_counts_once(self):
        counter = InMemorySendCounter()
        await counter.record("user:1", NOW, member="tracking-1")
        await counter.record("user:1", NOW, member="tracking-1")

        assert await counter.count("user:1", DAY, NOW) == 1

    @pytest.mark.asyncio
    async def test_entries_age_out(self):
        counter = InMemorySendCounter()
        await counter.record("user:1", NOW)

        later = NOW + timedelta(days=8)
        assert await counter.count("user:1", WEEK, later) == 0

    @pytest.mark.asyncio
    async def test_idle_keys_are_dropped(self):
        counter = InMemorySendCounter()
        for i in range(10):
            assert await counter.count(f"user:{i}", DAY, NOW) == 0
        assert counter._entries == {}

        await counter.record("user:1", NOW)
        await counter.count("user:1", WEEK, NOW + timedelta(days=8))
        assert "user:1" not in counter._entries

    def test_satisfies_protocol(self):
        assert isinstance(InMemorySendCounter(), SendCounter)


@pytest.mark.unit
class TestRedisSendCounter:
    @pytest.mark.asyncio
    async def test_count_uses_zcount_over_window(self):
        redis = AsyncMock()
        redis.zcount.return_value = 4
        counter = RedisSendCounter(redis, key_prefix="test:")

        assert await counter.count("user:1", DAY, NOW) == 4
        key, low, high = redis.zcount.await_args.args
        assert key == "test:sends:user:1"
        assert high - low == DAY.total_seconds()

    @pytest.mark.asyncio
    async def test_record_runs_script_with_member(self):
        redis = AsyncMock()
        counter = RedisSendCounter(redis, key_prefix="test:")

        await counter.record("user:1", NOW, member="tracking-1")

        args = redis.eval.await_args.args
        assert args[1] == 1
        assert args[2] == "test:sends:user:1"
        assert args[3] == NOW.timestamp()
        assert args[5] == "tracking-1"

    @pytest.mark.asyncio
    async def test_unreachable_backend_permits_send(self):
        redis = AsyncMock()
        redis.zcount.side_effect = RedisConnectionError("down")
        redis.eval.side_effect = RedisConnectionError("down")
        counter = RedisSendCounter(redis)

        assert await counter.count("user:1", DAY, NOW) == 0
        await counter.record("user:1", NOW)

    def test_long_identifiers_are_hashed(self):
        counter = RedisSendCounter(AsyncMock(), key_prefix="p:")
        key = counter._make_key("addr:" + "x" * 100)
        assert key.startswith("p:sends:")
        assert len(key) == len("p:sends:") + 16


@pytest.mark.unit
def test_build_memory_counter():
    assert isinstance(build_send_counter("memory"), InMemorySendCounter)
