"""Shared test fixtures and helpers."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from typing import Any

import pytest

from pairtalk.collaborators.mock import (
    InMemoryPersistence,
    MockMediaProvider,
    MockRelationshipService,
)
from pairtalk.core.framework import PairTalk
from pairtalk.core.scheduler import ManualClock, ManualScheduler
from pairtalk.models.config import PairTalkConfig
from pairtalk.models.events import OutboundEvent


class Inbox:
    """Collects outbound events per connection id."""

    def __init__(self) -> None:
        self.events: dict[str, list[OutboundEvent]] = {}

    async def send(self, connection_id: str, event: OutboundEvent) -> None:
        self.events.setdefault(connection_id, []).append(event)

    def of(self, connection_id: str, event_type: str | None = None) -> list[Any]:
        events = self.events.get(connection_id, [])
        if event_type is None:
            return list(events)
        return [e for e in events if e.type == event_type]

    def types(self, connection_id: str) -> list[str]:
        return [e.type for e in self.events.get(connection_id, [])]

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture
def advance() -> Callable[[int], Coroutine[Any, Any, None]]:
    """Yield control to let pending tasks run without real delay."""

    async def _advance(n: int = 5) -> None:
        for _ in range(n):
            await asyncio.sleep(0)

    return _advance


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def scheduler(clock: ManualClock) -> ManualScheduler:
    return ManualScheduler(clock)


@pytest.fixture
def relationships() -> MockRelationshipService:
    rel = MockRelationshipService()
    rel.match("alice", "bob", room_id="room-ab")
    rel.match("alice", "carol", room_id="room-ac")
    return rel


@pytest.fixture
def persistence() -> InMemoryPersistence:
    return InMemoryPersistence()


@pytest.fixture
def media() -> MockMediaProvider:
    return MockMediaProvider()


@pytest.fixture
def inbox() -> Inbox:
    return Inbox()


@pytest.fixture
async def kit(
    relationships: MockRelationshipService,
    persistence: InMemoryPersistence,
    media: MockMediaProvider,
    clock: ManualClock,
    scheduler: ManualScheduler,
) -> Any:
    pairtalk = PairTalk(
        relationships,
        persistence=persistence,
        media=media,
        config=PairTalkConfig(),
        clock=clock,
        scheduler=scheduler,
    )
    await pairtalk.start()
    yield pairtalk
    await pairtalk.close()
