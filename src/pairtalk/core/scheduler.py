"""Clocks and periodic job schedulers.

Time-based behaviour (ring-timeout sweep, session tick) runs as scheduled
callbacks, never as a blocking wait in a request path. Tests swap in
``ManualClock`` and ``ManualScheduler`` to advance virtual time.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

logger = logging.getLogger("pairtalk.scheduler")

JobFn = Callable[[], Coroutine[Any, Any, Any]]


class Clock(ABC):
    """Source of the current time."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current timezone-aware UTC time."""
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(UTC)


class ManualClock(Clock):
    """A clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2025, 1, 15, 12, 0, tzinfo=UTC)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> datetime:
        self._now += timedelta(seconds=seconds)
        return self._now

    def set(self, moment: datetime) -> None:
        if moment < self._now:
            raise ValueError("ManualClock cannot move backwards")
        self._now = moment


@dataclass
class _Job:
    name: str
    interval: float
    fn: JobFn
    next_run: datetime | None = None


async def _run_job(job: _Job) -> None:
    try:
        await job.fn()
    except Exception:
        logger.exception("Scheduled job %s failed", job.name)


class Scheduler(ABC):
    """Runs registered coroutines periodically."""

    @abstractmethod
    def every(self, name: str, interval: float, fn: JobFn) -> None:
        """Register *fn* to run every *interval* seconds."""
        ...

    @abstractmethod
    async def start(self) -> None:
        """Begin running registered jobs."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Stop all jobs."""
        ...


class AsyncioScheduler(Scheduler):
    """One background task per job, sleeping between runs."""

    def __init__(self) -> None:
        self._jobs: list[_Job] = []
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._started = False

    def every(self, name: str, interval: float, fn: JobFn) -> None:
        job = _Job(name=name, interval=interval, fn=fn)
        self._jobs.append(job)
        if self._started:
            self._spawn(job)

    def _spawn(self, job: _Job) -> None:
        self._tasks[job.name] = asyncio.create_task(self._loop(job), name=f"pairtalk:{job.name}")

    async def _loop(self, job: _Job) -> None:
        while True:
            await asyncio.sleep(job.interval)
            await _run_job(job)

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        for job in self._jobs:
            self._spawn(job)

    async def close(self) -> None:
        self._started = False
        for task in self._tasks.values():
            task.cancel()
        for task in self._tasks.values():
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()


class ManualScheduler(Scheduler):
    """Virtual-time scheduler driven by :meth:`advance`.

    Example::

        clock = ManualClock()
        scheduler = ManualScheduler(clock)
        kit = PairTalk(clock=clock, scheduler=scheduler)
        await kit.start()
        await scheduler.advance(61)  # runs every due job in time order
    """

    def __init__(self, clock: ManualClock) -> None:
        self._clock = clock
        self._jobs: list[_Job] = []
        self._started = False

    def every(self, name: str, interval: float, fn: JobFn) -> None:
        job = _Job(name=name, interval=interval, fn=fn)
        if self._started:
            job.next_run = self._clock.now() + timedelta(seconds=interval)
        self._jobs.append(job)

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        now = self._clock.now()
        for job in self._jobs:
            job.next_run = now + timedelta(seconds=job.interval)

    async def close(self) -> None:
        self._started = False

    async def advance(self, seconds: float) -> None:
        """Move the clock forward, running jobs at their due times."""
        target = self._clock.now() + timedelta(seconds=seconds)
        while self._started:
            due = [j for j in self._jobs if j.next_run is not None and j.next_run <= target]
            if not due:
                break
            job = min(due, key=lambda j: j.next_run)  # type: ignore[arg-type,return-value]
            assert job.next_run is not None
            self._clock.set(max(job.next_run, self._clock.now()))
            job.next_run += timedelta(seconds=job.interval)
            await _run_job(job)
        self._clock.set(max(target, self._clock.now()))

    async def run_all(self) -> None:
        """Run every registered job once at the current time."""
        for job in list(self._jobs):
            await _run_job(job)
