"""Call invitation and session models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from pairtalk.models.enums import EndReason, InvitationState


PAIR_KEY_SEPARATOR = ":"


def pair_key(user_a: str, user_b: str) -> str:
    """Return the order-independent key identifying two users.

    Raises:
        ValueError: Either id contains the separator, which would let two
            different pairs share a key.
    """
    for user_id in (user_a, user_b):
        if PAIR_KEY_SEPARATOR in user_id:
            raise ValueError(f"User id {user_id!r} must not contain {PAIR_KEY_SEPARATOR!r}")
    first, second = sorted((user_a, user_b))
    return f"{first}{PAIR_KEY_SEPARATOR}{second}"


class CallInvitation(BaseModel):
    """A call invitation and its lifecycle state."""

    session_id: str
    call_id: str
    caller_id: str
    recipient_id: str
    created_at: datetime
    expires_at: datetime
    state: InvitationState = InvitationState.PENDING
    updated_at: datetime | None = None
    answered_at: datetime | None = None
    ended_at: datetime | None = None
    end_reason: EndReason | None = None
    duration_seconds: float | None = Field(default=None, ge=0.0)

    @property
    def pair_key(self) -> str:
        return pair_key(self.caller_id, self.recipient_id)

    @property
    def participant_ids(self) -> tuple[str, str]:
        return (self.caller_id, self.recipient_id)


class CallSession(BaseModel):
    """The accepted phase of a call."""

    session_id: str
    pair_key: str
    participant_ids: list[str]
    started_at: datetime
    ended_at: datetime | None = None
    accumulated_seconds: float = Field(default=0.0, ge=0.0)
    join_reference: str | None = None
