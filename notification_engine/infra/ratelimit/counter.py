"""Rolling-window send counters for daily and weekly caps.

Two backends implement the same ``SendCounter`` protocol:

- InMemorySendCounter: per-process, for single-instance deployments and tests
- RedisSendCounter: sorted-set sliding window shared across instances

Counts are only ever added to; they leave a window by ageing out. When the
backend is unreachable the Redis counter reports zero so a send is permitted
rather than blocked.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from collections import defaultdict
from datetime import timedelta
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from redis.exceptions import RedisError

if TYPE_CHECKING:
    from datetime import datetime

    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

# Longest window any policy asks about; older entries are discarded.
RETENTION = timedelta(days=7)


@runtime_checkable
class SendCounter(Protocol):
    """Per-identity send history queried over rolling windows."""

    async def count(self, key: str, window: timedelta, now: datetime) -> int:
        """Number of sends recorded for ``key`` in ``(now - window, now]``."""
        ...

    async def record(self, key: str, now: datetime, member: str | None = None) -> None:
        """Record one send. Recording the same ``member`` twice counts once."""
        ...


class InMemorySendCounter:
    """Process-local counter keeping send timestamps per key."""

    def __init__(self, retention: timedelta = RETENTION) -> None:
        self.retention = retention
        self._entries: dict[str, dict[str, datetime]] = defaultdict(dict)

    def _prune(self, key: str, now: datetime) -> None:
        entries = self._entries.get(key)
        if entries is None:
            return
        cutoff = now - self.retention
        for member in [m for m, ts in entries.items() if ts <= cutoff]:
            del entries[member]
        if not entries:
            del self._entries[key]

    async def count(self, key: str, window: timedelta, now: datetime) -> int:
        self._prune(key, now)
        start = now - window
        return sum(1 for ts in self._entries.get(key, {}).values() if start < ts <= now)

    async def record(self, key: str, now: datetime, member: str | None = None) -> None:
        self._entries[key].setdefault(member or uuid.uuid4().hex, now)


# Atomic add + trim + expire; ZADD NX keeps repeated members from moving.
_RECORD_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local retention = tonumber(ARGV[2])
local member = ARGV[3]

redis.call('ZREMRANGEBYSCORE', key, 0, now - retention)
redis.call('ZADD', key, 'NX', now, member)
redis.call('EXPIRE', key, math.ceil(retention))
return redis.call('ZCARD', key)
"""


class RedisSendCounter:
    """Redis sorted-set sliding window.

    Each send is a member scored by its Unix timestamp. Counting is a ZCOUNT
    over the window, which never blocks concurrent recorders.

    Example:
        counter = RedisSendCounter(redis_client, key_prefix="notifications:")
        await counter.record("user:42", clock.now(), member=str(tracking.id))
    """

    def __init__(
        self,
        redis: Redis,
        key_prefix: str = "notifications:",
        retention: timedelta = RETENTION,
    ) -> None:
        self.redis = redis
        self.key_prefix = key_prefix
        self.retention = retention

    def _make_key(self, identifier: str) -> str:
        # Hash long identifiers to keep key size reasonable
        if len(identifier) > 50:
            identifier = hashlib.sha256(identifier.encode()).hexdigest()[:16]
        return f"{self.key_prefix}sends:{identifier}"

    async def count(self, key: str, window: timedelta, now: datetime) -> int:
        ts = now.timestamp()
        try:
            return int(
                await self.redis.zcount(self._make_key(key), ts - window.total_seconds(), ts)
            )
        except RedisError:
            logger.exception(
                "Send counter unavailable, permitting send",
                extra={"key": key, "operation": "ratelimit.count"},
            )
            return 0

    async def record(self, key: str, now: datetime, member: str | None = None) -> None:
        try:
            await self.redis.eval(
                _RECORD_SCRIPT,
                1,
                self._make_key(key),
                now.timestamp(),
                self.retention.total_seconds(),
                member or uuid.uuid4().hex,
            )
        except RedisError:
            logger.exception(
                "Failed to record send",
                extra={"key": key, "operation": "ratelimit.record"},
            )


def build_send_counter(backend: str | None = None) -> SendCounter:
    """Create the counter selected by ``DELIVERY_RATE_COUNTER_BACKEND``."""
    from notification_engine.core.settings import get_delivery_settings, get_redis_settings

    backend = backend or get_delivery_settings().rate_counter_backend
    if backend == "redis":
        from redis.asyncio import Redis

        redis_settings = get_redis_settings()
        client = Redis.from_url(
            redis_settings.redis_url,
            max_connections=redis_settings.max_connections,
            socket_timeout=redis_settings.socket_timeout,
        )
        return RedisSendCounter(client, key_prefix=redis_settings.key_prefix)
    return InMemorySendCounter()
