"""Write-behind queue for persistence calls made off the request path."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Callable, Coroutine
from typing import Any

logger = logging.getLogger("pairtalk.writer")

WriteFn = Callable[..., Coroutine[Any, Any, Any]]


class WriteBehind:
    """Runs submitted writes one at a time, in submission order.

    Failures are logged and do not stop the queue. Durable ids are
    allocated by the caller before submitting, so delivery never waits
    on a write.
    """

    def __init__(self, name: str = "persistence") -> None:
        self._name = name
        self._queue: deque[tuple[str, WriteFn, tuple[Any, ...]]] = deque()
        self._task: asyncio.Task[None] | None = None
        self._idle = asyncio.Event()
        self._idle.set()
        self.failures = 0

    def submit(self, label: str, fn: WriteFn, *args: Any) -> None:
        self._queue.append((label, fn, args))
        self._idle.clear()
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"pairtalk:{self._name}")

    @property
    def pending(self) -> int:
        return len(self._queue)

    async def drain(self) -> None:
        """Wait until every submitted write has been attempted."""
        await self._idle.wait()

    async def close(self) -> None:
        await self.drain()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def _run(self) -> None:
        try:
            while self._queue:
                label, fn, args = self._queue.popleft()
                try:
                    await fn(*args)
                except Exception:
                    self.failures += 1
                    logger.exception("Write-behind %s failed", label)
        finally:
            self._task = None
            if not self._queue:
                self._idle.set()
