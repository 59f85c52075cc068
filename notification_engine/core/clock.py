"""Injectable time source.

Quiet hours, rate windows, suppression expiry and retry scheduling all read
the current time through a Clock so tests can control it.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Source of the current time as an aware UTC datetime."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class ManualClock:
    """Clock that only moves when told to.

    Example:
        clock = ManualClock(datetime(2025, 1, 1, 9, tzinfo=UTC))
        clock.advance(seconds=30)
    """

    def __init__(self, start: datetime | None = None) -> None:
        start = start or datetime(2025, 1, 1, tzinfo=UTC)
        if start.tzinfo is None:
            msg = "ManualClock requires a timezone-aware start time"
            raise ValueError(msg)
        self._now = start.astimezone(UTC)

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        if value.tzinfo is None:
            msg = "ManualClock requires timezone-aware datetimes"
            raise ValueError(msg)
        self._now = value.astimezone(UTC)

    def advance(self, delta: timedelta | None = None, **kwargs: float) -> datetime:
        self._now += delta if delta is not None else timedelta(**kwargs)
        return self._now


_clock: Clock | None = None


def get_clock() -> Clock:
    """Get the process-wide clock (SystemClock unless overridden)."""
    global _clock
    if _clock is None:
        _clock = SystemClock()
    return _clock


def set_clock(clock: Clock | None) -> None:
    """Override the process-wide clock; ``None`` restores the system clock."""
    global _clock
    _clock = clock
