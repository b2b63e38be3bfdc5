"""Typed errors raised by PairTalk services."""

from __future__ import annotations

from pairtalk.models.enums import ErrorCode


class PairTalkError(Exception):
    """Base exception for all PairTalk errors."""

    code: ErrorCode = ErrorCode.INTERNAL

    def __init__(self, message: str = "", *, session_id: str | None = None) -> None:
        super().__init__(message)
        self.session_id = session_id


class NotAuthorizedError(PairTalkError):
    """The relationship service does not allow the operation."""

    code = ErrorCode.NOT_AUTHORIZED


class AlreadyInProgressError(PairTalkError):
    """A non-terminal invitation already exists for the pair."""

    code = ErrorCode.ALREADY_IN_PROGRESS


class InvalidStateError(PairTalkError):
    """The invitation is not in a state that permits the operation."""

    code = ErrorCode.INVALID_STATE


class QuotaExceededError(PairTalkError):
    """The pair has no call time left this month."""

    code = ErrorCode.QUOTA_EXCEEDED


class NotFoundError(PairTalkError):
    """Unknown session, connection, or room."""

    code = ErrorCode.NOT_FOUND


class TransportUnavailableError(PairTalkError):
    """The target user has no live connection."""

    code = ErrorCode.TRANSPORT_UNAVAILABLE


class BadRequestError(PairTalkError):
    """The client request is malformed or violates a limit."""

    code = ErrorCode.BAD_REQUEST
