"""Pure call-invitation state machine.

``transition`` maps ``(invitation, action)`` to the next invitation and
the outbound events owed to each participant, with no I/O. The signaling
controller commits the result with a compare-and-set and then delivers
the notifications.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pairtalk.core.errors import InvalidStateError
from pairtalk.models.call import CallInvitation
from pairtalk.models.enums import CallAction, EndReason, InvitationState
from pairtalk.models.events import (
    CallAccepted,
    CallCanceled,
    CallDeclined,
    CallEnded,
    CallMissed,
    OutboundEvent,
)

SYSTEM_USER_ID = "system"

_TRANSITIONS: dict[InvitationState, dict[CallAction, InvitationState]] = {
    InvitationState.PENDING: {
        CallAction.ACCEPT: InvitationState.ACCEPTED,
        CallAction.DECLINE: InvitationState.DECLINED,
        CallAction.CANCEL: InvitationState.CANCELED,
        CallAction.EXPIRE: InvitationState.MISSED,
    },
    InvitationState.ACCEPTED: {
        CallAction.END: InvitationState.ENDED,
    },
}


@dataclass(frozen=True)
class Notification:
    """An outbound event addressed to one user."""

    user_id: str
    event: OutboundEvent


@dataclass(frozen=True)
class Transition:
    """A computed, not yet committed, state change."""

    action: CallAction
    previous: CallInvitation
    current: CallInvitation
    notifications: list[Notification] = field(default_factory=list)


def next_state(state: InvitationState, action: CallAction) -> InvitationState:
    """Return the state reached by applying *action*.

    Raises:
        InvalidStateError: If *action* is not allowed from *state*.
    """
    target = _TRANSITIONS.get(state, {}).get(action)
    if target is None:
        raise InvalidStateError(f"Cannot {action} a call in state {state}")
    return target


def _check_actor(invitation: CallInvitation, action: CallAction, actor_id: str) -> None:
    if action in (CallAction.ACCEPT, CallAction.DECLINE):
        allowed = actor_id == invitation.recipient_id
    elif action is CallAction.CANCEL:
        allowed = actor_id == invitation.caller_id
    elif action is CallAction.EXPIRE:
        allowed = actor_id == SYSTEM_USER_ID
    else:
        allowed = actor_id == SYSTEM_USER_ID or actor_id in invitation.participant_ids
    if not allowed:
        raise InvalidStateError(
            f"User {actor_id} cannot {action} call {invitation.session_id}",
            session_id=invitation.session_id,
        )


def transition(
    invitation: CallInvitation,
    action: CallAction,
    *,
    actor_id: str,
    now: datetime,
    reason: EndReason | None = None,
    duration_seconds: float | None = None,
    join_reference: str | None = None,
) -> Transition:
    """Compute the effect of *action* on *invitation*.

    Raises:
        InvalidStateError: If the action is not allowed from the current
            state, by this actor, or (for expiry) before ``expires_at``.
    """
    try:
        target = next_state(invitation.state, action)
    except InvalidStateError as exc:
        raise InvalidStateError(str(exc), session_id=invitation.session_id) from None
    _check_actor(invitation, action, actor_id)
    if action is CallAction.EXPIRE and now < invitation.expires_at:
        raise InvalidStateError(
            f"Call {invitation.session_id} has not timed out", session_id=invitation.session_id
        )

    update: dict[str, Any] = {"state": target, "updated_at": now}
    session_id = invitation.session_id
    event: OutboundEvent
    if action is CallAction.ACCEPT:
        update["answered_at"] = now
        event = CallAccepted(session_id=session_id, join_reference=join_reference)
    elif action is CallAction.DECLINE:
        event = CallDeclined(session_id=session_id)
    elif action is CallAction.CANCEL:
        event = CallCanceled(session_id=session_id)
    elif action is CallAction.EXPIRE:
        event = CallMissed(session_id=session_id)
    else:
        duration = max(duration_seconds or 0.0, 0.0)
        end_reason = reason or EndReason.HANGUP
        update["end_reason"] = end_reason
        update["duration_seconds"] = duration
        event = CallEnded(session_id=session_id, duration_seconds=duration, reason=end_reason)
    if target.is_terminal:
        update["ended_at"] = now

    current = invitation.model_copy(update=update)
    notifications = [Notification(user_id, event) for user_id in invitation.participant_ids]
    return Transition(
        action=action, previous=invitation, current=current, notifications=notifications
    )
