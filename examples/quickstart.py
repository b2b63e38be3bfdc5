"""A matched pair chatting, calling, and running out of call time.

Demonstrates the PairTalk orchestrator with in-memory collaborators and
a virtual clock. Shows:
- Joining a shared room from several devices and fanning out a message
- The call handshake: invite, accept, hang up
- The monthly quota ending a call mid-conversation

Run with:
    python examples/quickstart.py
"""

from __future__ import annotations

import asyncio
import logging

from pairtalk import (
    InMemoryPersistence,
    ManualClock,
    ManualScheduler,
    MockMediaProvider,
    MockRelationshipService,
    OutboundEvent,
    PairTalk,
)


async def printer(connection_id: str, event: OutboundEvent) -> None:
    print(f"  -> {connection_id:<8} {event.type}: {event.model_dump(exclude={'type'})}")


async def main() -> None:
    logging.basicConfig(level=logging.WARNING)

    relationships = MockRelationshipService()
    relationships.match("alice", "bob", room_id="room-ab")

    clock = ManualClock()
    scheduler = ManualScheduler(clock)

    async with PairTalk(
        relationships,
        persistence=InMemoryPersistence(),
        media=MockMediaProvider(),
        clock=clock,
        scheduler=scheduler,
    ) as kit:
        await kit.connect("alice-1", "alice", printer)
        await kit.connect("bob-ph", "bob", printer)
        await kit.connect("bob-pc", "bob", printer)

        print("=== Chat ===")
        for conn in ("alice-1", "bob-ph", "bob-pc"):
            await kit.handle(conn, {"type": "join_room", "room_id": "room-ab"})
        await kit.handle(
            "alice-1", {"type": "send_message", "room_id": "room-ab", "body": "hi bob!"}
        )

        print("\n=== A short call ===")
        [initiated] = await kit.handle("alice-1", {"type": "call_initiate", "recipient_id": "bob"})
        session_id = initiated.session_id
        await kit.handle(
            "bob-ph", {"type": "call_respond", "session_id": session_id, "decision": "accept"}
        )
        await scheduler.advance(250)
        await kit.handle("alice-1", {"type": "call_end", "session_id": session_id})

        print("\n=== Running out of monthly quota ===")
        [initiated] = await kit.handle(
            "bob-pc", {"type": "call_initiate", "recipient_id": "alice"}
        )
        await kit.handle(
            "alice-1",
            {"type": "call_respond", "session_id": initiated.session_id, "decision": "accept"},
        )
        await scheduler.advance(60)

        usage = await kit.quota.usage("alice:bob")
        print(f"\nUsed {usage.used_seconds:.0f}s of {usage.cap_seconds:.0f}s this month")


if __name__ == "__main__":
    asyncio.run(main())
