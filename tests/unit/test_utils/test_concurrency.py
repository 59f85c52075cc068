"""Unit tests for SingleFlight, KeyedLock and the timer scheduler."""

from __future__ import annotations

import asyncio

import pytest

from notification_engine.utils.keyed_lock import KeyedLock
from notification_engine.utils.scheduler import AsyncioTaskScheduler
from notification_engine.utils.singleflight import SingleFlight


@pytest.mark.unit
class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_computation(self):
        flight: SingleFlight[str, int] = SingleFlight()
        release = asyncio.Event()
        calls = 0

        async def compute() -> int:
            nonlocal calls
            calls += 1
            await release.wait()
            return 42

        tasks = [asyncio.create_task(flight.do("k", compute)) for _ in range(5)]
        await asyncio.sleep(0)
        assert flight.in_flight("k")
        release.set()
        results = await asyncio.gather(*tasks)

        assert calls == 1
        assert [value for value, _ in results] == [42] * 5
        assert sorted(shared for _, shared in results) == [False, True, True, True, True]
        assert not flight.in_flight("k")

    @pytest.mark.asyncio
    async def test_leader_error_reaches_every_waiter(self):
        flight: SingleFlight[str, int] = SingleFlight()
        release = asyncio.Event()

        async def fail() -> int:
            await release.wait()
            raise RuntimeError("compile failed")

        tasks = [asyncio.create_task(flight.do("k", fail)) for _ in range(3)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, RuntimeError) for r in results)
        assert not flight.in_flight("k")

    @pytest.mark.asyncio
    async def test_distinct_keys_do_not_wait_on_each_other(self):
        flight: SingleFlight[str, str] = SingleFlight()
        blocker = asyncio.Event()

        async def slow() -> str:
            await blocker.wait()
            return "slow"

        async def fast() -> str:
            return "fast"

        slow_task = asyncio.create_task(flight.do("a", slow))
        await asyncio.sleep(0)
        value, shared = await asyncio.wait_for(flight.do("b", fast), timeout=1)

        assert (value, shared) == ("fast", False)
        blocker.set()
        assert (await slow_task)[0] == "slow"

    @pytest.mark.asyncio
    async def test_key_is_recomputed_after_completion(self):
        flight: SingleFlight[str, int] = SingleFlight()
        counter = iter(range(10))

        async def compute() -> int:
            return next(counter)

        assert (await flight.do("k", compute))[0] == 0
        assert (await flight.do("k", compute))[0] == 1


@pytest.mark.unit
class TestKeyedLock:
    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self):
        locks: KeyedLock[str] = KeyedLock()
        order: list[str] = []

        async def worker(name: str) -> None:
            async with locks.hold("email"):
                order.append(f"{name}:start")
                await asyncio.sleep(0.01)
                order.append(f"{name}:end")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a:start", "a:end", "b:start", "b:end"]

    @pytest.mark.asyncio
    async def test_different_keys_run_concurrently(self):
        locks: KeyedLock[str] = KeyedLock()
        inside = asyncio.Event()

        async def holder() -> None:
            async with locks.hold("email"):
                inside.set()
                await asyncio.sleep(0.05)

        task = asyncio.create_task(holder())
        await inside.wait()
        async with locks.hold("sms"):
            assert locks.locked("email")
        await task

    @pytest.mark.asyncio
    async def test_locks_are_discarded_when_idle(self):
        locks: KeyedLock[tuple[str, str]] = KeyedLock()
        async with locks.hold(("n1", "email")):
            assert len(locks) == 1
        assert len(locks) == 0
        assert not locks.locked(("n1", "email"))

    @pytest.mark.asyncio
    async def test_lock_released_on_error(self):
        locks: KeyedLock[str] = KeyedLock()
        with pytest.raises(RuntimeError):
            async with locks.hold("k"):
                raise RuntimeError("boom")
        assert len(locks) == 0


@pytest.mark.unit
class TestAsyncioTaskScheduler:
    @pytest.mark.asyncio
    async def test_runs_callback_after_delay(self):
        delays: list[float] = []
        ran = asyncio.Event()

        async def fake_sleep(delay: float) -> None:
            delays.append(delay)

        async def job() -> None:
            ran.set()

        scheduler = AsyncioTaskScheduler(sleep=fake_sleep)
        scheduler.schedule(2.5, job, name="job")
        await scheduler.join()

        assert ran.is_set()
        assert delays == [2.5]
        assert scheduler.pending == 0

    @pytest.mark.asyncio
    async def test_negative_delay_is_clamped(self):
        delays: list[float] = []

        async def fake_sleep(delay: float) -> None:
            delays.append(delay)

        async def job() -> None:
            return None

        scheduler = AsyncioTaskScheduler(sleep=fake_sleep)
        scheduler.schedule(-5, job)
        await scheduler.join()
        assert delays == [0.0]

    @pytest.mark.asyncio
    async def test_join_waits_for_tasks_scheduled_meanwhile(self):
        seen: list[str] = []

        async def no_wait(delay: float) -> None:
            _ = delay

        scheduler = AsyncioTaskScheduler(sleep=no_wait)

        async def second() -> None:
            seen.append("second")

        async def first() -> None:
            seen.append("first")
            scheduler.schedule(1, second)

        scheduler.schedule(1, first)
        await scheduler.join()

        assert seen == ["first", "second"]

    @pytest.mark.asyncio
    async def test_failing_job_is_logged_not_raised(self, caplog):
        async def no_wait(delay: float) -> None:
            _ = delay

        async def broken() -> None:
            raise RuntimeError("boom")

        scheduler = AsyncioTaskScheduler(sleep=no_wait)
        scheduler.schedule(0, broken, name="broken")
        await scheduler.join()

        assert "Scheduled task failed" in caplog.text

    @pytest.mark.asyncio
    async def test_close_cancels_pending_timers(self):
        ran = False

        async def job() -> None:
            nonlocal ran
            ran = True

        scheduler = AsyncioTaskScheduler()
        scheduler.schedule(3600, job)
        assert scheduler.pending == 1
        await scheduler.close()

        assert scheduler.pending == 0
        assert ran is False
