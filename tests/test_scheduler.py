"""Tests for clocks, schedulers, and the write-behind queue."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from pairtalk.core.scheduler import AsyncioScheduler, ManualClock, ManualScheduler
from pairtalk.core.writer import WriteBehind


class TestManualClock:
    def test_advance(self) -> None:
        clock = ManualClock(datetime(2025, 1, 1, tzinfo=UTC))
        clock.advance(90)
        assert clock.now() == datetime(2025, 1, 1, 0, 1, 30, tzinfo=UTC)

    def test_cannot_move_backwards(self) -> None:
        clock = ManualClock()
        with pytest.raises(ValueError):
            clock.set(clock.now() - timedelta(seconds=1))


class TestManualScheduler:
    async def test_jobs_run_at_due_times(self, clock: ManualClock) -> None:
        scheduler = ManualScheduler(clock)
        start = clock.now()
        seen: list[float] = []

        async def job() -> None:
            seen.append((clock.now() - start).total_seconds())

        scheduler.every("job", 2, job)
        await scheduler.start()
        await scheduler.advance(7)

        assert seen == [2, 4, 6]
        assert clock.now() == start + timedelta(seconds=7)

    async def test_jobs_interleave_in_time_order(self, clock: ManualClock) -> None:
        scheduler = ManualScheduler(clock)
        order: list[str] = []

        async def fast() -> None:
            order.append("fast")

        async def slow() -> None:
            order.append("slow")

        scheduler.every("slow", 3, slow)
        scheduler.every("fast", 2, fast)
        await scheduler.start()
        await scheduler.advance(6)

        assert order == ["fast", "slow", "fast", "slow", "fast"]

    async def test_not_started_only_moves_clock(self, clock: ManualClock) -> None:
        scheduler = ManualScheduler(clock)
        ran = False

        async def job() -> None:
            nonlocal ran
            ran = True

        scheduler.every("job", 1, job)
        await scheduler.advance(5)
        assert not ran

    async def test_failing_job_keeps_schedule(self, clock: ManualClock) -> None:
        scheduler = ManualScheduler(clock)
        calls = 0

        async def job() -> None:
            nonlocal calls
            calls += 1
            raise RuntimeError("boom")

        scheduler.every("job", 1, job)
        await scheduler.start()
        await scheduler.advance(3)
        assert calls == 3


class TestAsyncioScheduler:
    async def test_runs_and_stops(self) -> None:
        scheduler = AsyncioScheduler()
        ran = asyncio.Event()

        async def job() -> None:
            ran.set()

        scheduler.every("job", 0.001, job)
        await scheduler.start()
        await asyncio.wait_for(ran.wait(), timeout=1)
        await scheduler.close()


class TestWriteBehind:
    async def test_writes_in_order(self) -> None:
        writer = WriteBehind("test")
        written: list[int] = []

        async def write(n: int) -> None:
            await asyncio.sleep(0)
            written.append(n)

        for n in range(5):
            writer.submit("write", write, n)
        await writer.drain()

        assert written == [0, 1, 2, 3, 4]
        assert writer.pending == 0

    async def test_failure_is_logged_and_queue_continues(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        writer = WriteBehind("test")
        written: list[str] = []

        async def fail() -> None:
            raise ConnectionError("down")

        async def ok() -> None:
            written.append("ok")

        writer.submit("fail", fail)
        writer.submit("ok", ok)
        await writer.close()

        assert writer.failures == 1
        assert written == ["ok"]
        assert "Write-behind fail failed" in caplog.text
