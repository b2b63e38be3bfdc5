"""Tests for the pure call state machine."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from pairtalk.core.errors import InvalidStateError
from pairtalk.core.state_machine import SYSTEM_USER_ID, next_state, transition
from pairtalk.models.call import CallInvitation
from pairtalk.models.enums import CallAction, EndReason, InvitationState

NOW = datetime(2025, 3, 1, 9, 0, tzinfo=UTC)


def make_invitation(state: InvitationState = InvitationState.PENDING) -> CallInvitation:
    return CallInvitation(
        session_id="s1",
        call_id="c1",
        caller_id="alice",
        recipient_id="bob",
        created_at=NOW,
        expires_at=NOW + timedelta(seconds=60),
        state=state,
    )


class TestNextState:
    @pytest.mark.parametrize(
        ("action", "expected"),
        [
            (CallAction.ACCEPT, InvitationState.ACCEPTED),
            (CallAction.DECLINE, InvitationState.DECLINED),
            (CallAction.CANCEL, InvitationState.CANCELED),
            (CallAction.EXPIRE, InvitationState.MISSED),
        ],
    )
    def test_pending_exits(self, action: CallAction, expected: InvitationState) -> None:
        assert next_state(InvitationState.PENDING, action) == expected

    def test_accepted_only_ends(self) -> None:
        assert next_state(InvitationState.ACCEPTED, CallAction.END) == InvitationState.ENDED
        with pytest.raises(InvalidStateError):
            next_state(InvitationState.ACCEPTED, CallAction.CANCEL)

    @pytest.mark.parametrize(
        "state",
        [
            InvitationState.DECLINED,
            InvitationState.CANCELED,
            InvitationState.MISSED,
            InvitationState.ENDED,
        ],
    )
    def test_terminal_states_accept_nothing(self, state: InvitationState) -> None:
        assert state.is_terminal
        for action in CallAction:
            with pytest.raises(InvalidStateError):
                next_state(state, action)

    def test_end_not_allowed_while_pending(self) -> None:
        with pytest.raises(InvalidStateError):
            next_state(InvitationState.PENDING, CallAction.END)


class TestTransition:
    def test_accept_sets_answered_and_notifies_both(self) -> None:
        result = transition(
            make_invitation(), CallAction.ACCEPT, actor_id="bob", now=NOW, join_reference="j1"
        )
        assert result.current.state == InvitationState.ACCEPTED
        assert result.current.answered_at == NOW
        assert result.current.ended_at is None
        assert result.previous.state == InvitationState.PENDING
        assert [n.user_id for n in result.notifications] == ["alice", "bob"]
        assert all(n.event.type == "call_accepted" for n in result.notifications)
        assert result.notifications[0].event.join_reference == "j1"

    def test_only_recipient_may_respond(self) -> None:
        with pytest.raises(InvalidStateError) as excinfo:
            transition(make_invitation(), CallAction.ACCEPT, actor_id="alice", now=NOW)
        assert excinfo.value.session_id == "s1"

    def test_only_caller_may_cancel(self) -> None:
        with pytest.raises(InvalidStateError):
            transition(make_invitation(), CallAction.CANCEL, actor_id="bob", now=NOW)
        result = transition(make_invitation(), CallAction.CANCEL, actor_id="alice", now=NOW)
        assert result.current.state == InvitationState.CANCELED
        assert result.current.ended_at == NOW

    def test_expire_requires_timeout_and_system(self) -> None:
        invitation = make_invitation()
        with pytest.raises(InvalidStateError):
            transition(invitation, CallAction.EXPIRE, actor_id=SYSTEM_USER_ID, now=NOW)
        with pytest.raises(InvalidStateError):
            transition(
                invitation,
                CallAction.EXPIRE,
                actor_id="alice",
                now=NOW + timedelta(seconds=61),
            )
        result = transition(
            invitation,
            CallAction.EXPIRE,
            actor_id=SYSTEM_USER_ID,
            now=NOW + timedelta(seconds=60),
        )
        assert result.current.state == InvitationState.MISSED
        assert {n.event.type for n in result.notifications} == {"call_missed"}

    def test_end_records_duration_and_reason(self) -> None:
        accepted = make_invitation(InvitationState.ACCEPTED)
        result = transition(
            accepted,
            CallAction.END,
            actor_id=SYSTEM_USER_ID,
            now=NOW,
            reason=EndReason.QUOTA_EXHAUSTED,
            duration_seconds=42.0,
        )
        assert result.current.state == InvitationState.ENDED
        assert result.current.duration_seconds == 42.0
        assert result.current.end_reason == EndReason.QUOTA_EXHAUSTED
        event = result.notifications[0].event
        assert event.duration_seconds == 42.0
        assert event.reason == EndReason.QUOTA_EXHAUSTED

    def test_outsider_cannot_end(self) -> None:
        accepted = make_invitation(InvitationState.ACCEPTED)
        with pytest.raises(InvalidStateError):
            transition(accepted, CallAction.END, actor_id="mallory", now=NOW)

    def test_input_invitation_is_not_mutated(self) -> None:
        invitation = make_invitation()
        transition(invitation, CallAction.DECLINE, actor_id="bob", now=NOW)
        assert invitation.state == InvitationState.PENDING
