"""Collapse concurrent identical work into one computation.

While a call for a key is in flight, further callers for the same key await
the leader's future instead of starting their own. Different keys never wait
on each other.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Hashable


class SingleFlight[K: Hashable, V]:
    """Per-key registry of in-flight futures.

    Example:
        flight: SingleFlight[tuple, Compiled] = SingleFlight()
        value, shared = await flight.do(key, lambda: compile_now(key))
    """

    def __init__(self) -> None:
        self._inflight: dict[K, asyncio.Future[V]] = {}

    def in_flight(self, key: K) -> bool:
        return key in self._inflight

    async def do(self, key: K, fn: Callable[[], Awaitable[V]]) -> tuple[V, bool]:
        """Run ``fn`` once per key at a time.

        Returns:
            ``(value, shared)`` where ``shared`` is True for followers that
            reused the leader's result. A leader's exception propagates to
            every waiter.
        """
        existing = self._inflight.get(key)
        if existing is not None:
            return await asyncio.shield(existing), True

        future: asyncio.Future[V] = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            value = await fn()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Mark retrieved so an unawaited future does not log at GC
            future.exception()
            raise
        else:
            future.set_result(value)
            return value, False
        finally:
            self._inflight.pop(key, None)
