"""Tests for the SessionRegistry tick."""

from __future__ import annotations

from datetime import timedelta

import pytest

from pairtalk.collaborators.mock import MockRelationshipService
from pairtalk.core.errors import QuotaExceededError
from pairtalk.core.framework import PairTalk
from pairtalk.core.scheduler import ManualClock, ManualScheduler
from pairtalk.core.state_machine import SYSTEM_USER_ID
from pairtalk.models.config import PairTalkConfig
from pairtalk.models.enums import CallDecision, EndReason, InvitationState
from tests.conftest import Inbox

PAIR = "alice:bob"


async def start_call(kit: PairTalk, inbox: Inbox) -> str:
    await kit.connect("a1", "alice", inbox.send)
    await kit.connect("b1", "bob", inbox.send)
    invitation = (await kit.controller.initiate("alice", "bob")).invitation
    await kit.controller.respond(invitation.session_id, "bob", CallDecision.ACCEPT)
    return invitation.session_id


class TestSessionTick:
    async def test_quota_exhaustion_mid_call(
        self, kit: PairTalk, inbox: Inbox, scheduler: ManualScheduler
    ) -> None:
        await kit.quota.commit_usage(PAIR, 280)
        sid = await start_call(kit, inbox)

        await scheduler.advance(19)
        assert (await kit.controller.get(sid)).state == InvitationState.ACCEPTED

        await scheduler.advance(1)
        ended = await kit.controller.get(sid)
        assert ended.state == InvitationState.ENDED
        assert ended.end_reason == EndReason.QUOTA_EXHAUSTED
        assert ended.duration_seconds == 20
        assert (await kit.quota.usage(PAIR)).used_seconds == 300
        assert kit.sessions.active_session_ids == []
        for conn in ("a1", "b1"):
            [event] = inbox.of(conn, "call_ended")
            assert event.reason == EndReason.QUOTA_EXHAUSTED

        with pytest.raises(QuotaExceededError):
            await kit.controller.initiate("alice", "bob")

    async def test_warning_sent_once_before_exhaustion(
        self, kit: PairTalk, inbox: Inbox, scheduler: ManualScheduler
    ) -> None:
        await kit.quota.commit_usage(PAIR, 280)
        await start_call(kit, inbox)

        await scheduler.advance(5)

        for conn in ("a1", "b1"):
            [warning] = inbox.of(conn, "quota_warning")
            assert warning.pair_key == PAIR
            assert warning.remaining_seconds == 19

    async def test_per_call_ceiling(
        self,
        relationships: MockRelationshipService,
        clock: ManualClock,
        scheduler: ManualScheduler,
        inbox: Inbox,
    ) -> None:
        config = PairTalkConfig(monthly_cap_seconds=3600, call_ceiling_seconds=120)
        async with PairTalk(relationships, config=config, clock=clock, scheduler=scheduler) as kit:
            sid = await start_call(kit, inbox)
            await scheduler.advance(59)
            assert inbox.of("a1", "quota_warning") == []

            await scheduler.advance(61)
            ended = await kit.controller.get(sid)

        assert ended.end_reason == EndReason.TIME_LIMIT_REACHED
        assert ended.duration_seconds == 120
        assert len(inbox.of("a1", "quota_warning")) == 1

    async def test_quota_takes_precedence_over_ceiling(
        self,
        relationships: MockRelationshipService,
        clock: ManualClock,
        scheduler: ManualScheduler,
        inbox: Inbox,
    ) -> None:
        config = PairTalkConfig(monthly_cap_seconds=300, call_ceiling_seconds=100)
        async with PairTalk(relationships, config=config, clock=clock, scheduler=scheduler) as kit:
            await kit.quota.commit_usage(PAIR, 200)
            sid = await start_call(kit, inbox)
            await scheduler.advance(100)
            ended = await kit.controller.get(sid)

        assert ended.end_reason == EndReason.QUOTA_EXHAUSTED

    async def test_tick_after_manual_end_untracks_quietly(
        self, kit: PairTalk, inbox: Inbox, clock: ManualClock
    ) -> None:
        sid = await start_call(kit, inbox)
        await kit.controller.end(sid, SYSTEM_USER_ID, EndReason.HANGUP)
        # Re-track a call that has already ended, as a stale entry would be.
        kit.sessions.track(sid, PAIR, clock.now() - timedelta(seconds=400), ("alice", "bob"))

        assert await kit.sessions.tick() == []
        assert kit.sessions.active_session_ids == []

    async def test_tick_returns_forced_sessions(
        self, kit: PairTalk, inbox: Inbox, clock: ManualClock
    ) -> None:
        sid = await start_call(kit, inbox)
        clock.advance(300)
        assert await kit.sessions.tick() == [(sid, EndReason.QUOTA_EXHAUSTED)]

    async def test_untrack_unknown(self, kit: PairTalk) -> None:
        assert not kit.sessions.untrack("nope")
