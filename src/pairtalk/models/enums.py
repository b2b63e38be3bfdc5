"""All string enums for PairTalk."""

from __future__ import annotations

from enum import StrEnum, unique


@unique
class InvitationState(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CANCELED = "canceled"
    MISSED = "missed"
    ENDED = "ended"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {
        InvitationState.DECLINED,
        InvitationState.CANCELED,
        InvitationState.MISSED,
        InvitationState.ENDED,
    }
)


@unique
class CallAction(StrEnum):
    ACCEPT = "accept"
    DECLINE = "decline"
    CANCEL = "cancel"
    EXPIRE = "expire"
    END = "end"


@unique
class CallDecision(StrEnum):
    ACCEPT = "accept"
    DECLINE = "decline"


@unique
class EndReason(StrEnum):
    HANGUP = "hangup"
    QUOTA_EXHAUSTED = "quota_exhausted"
    TIME_LIMIT_REACHED = "time_limit_reached"
    PARTICIPANT_DISCONNECTED = "participant_disconnected"


@unique
class MessageKind(StrEnum):
    TEXT = "text"
    CALL_INVITATION = "call_invitation"
    SYSTEM = "system"


@unique
class MessageStatus(StrEnum):
    UNREAD = "unread"
    READ = "read"


@unique
class ErrorCode(StrEnum):
    NOT_AUTHORIZED = "not_authorized"
    ALREADY_IN_PROGRESS = "already_in_progress"
    INVALID_STATE = "invalid_state"
    QUOTA_EXCEEDED = "quota_exceeded"
    NOT_FOUND = "not_found"
    TRANSPORT_UNAVAILABLE = "transport_unavailable"
    BAD_REQUEST = "bad_request"
    INTERNAL = "internal"
