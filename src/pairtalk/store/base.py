"""Abstract base classes for live call and quota state."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from pairtalk.models.call import CallInvitation, CallSession
from pairtalk.models.enums import InvitationState
from pairtalk.models.quota import QuotaRecord


class CallStore(ABC):
    """Keyed storage for invitations and sessions.

    Implementations back this with process memory (single instance) or a
    distributed key-value store (multi-instance). ``create_invitation``
    and ``compare_and_set`` must be atomic per key.
    """

    # Invitation operations

    @abstractmethod
    async def create_invitation(self, invitation: CallInvitation) -> bool:
        """Insert *invitation* unless its pair already has a non-terminal one.

        Returns:
            ``True`` if inserted, ``False`` if the pair is busy.
        """
        ...

    @abstractmethod
    async def get_invitation(self, session_id: str) -> CallInvitation | None:
        """Get an invitation by session id."""
        ...

    @abstractmethod
    async def compare_and_set(
        self,
        session_id: str,
        expected: InvitationState,
        invitation: CallInvitation,
    ) -> bool:
        """Replace the invitation only if its stored state equals *expected*.

        Returns:
            ``True`` if this write committed.
        """
        ...

    @abstractmethod
    async def active_for_pair(self, pair_key: str) -> CallInvitation | None:
        """Return the non-terminal invitation of a pair, if any."""
        ...

    @abstractmethod
    async def list_invitations(
        self,
        state: InvitationState | None = None,
        user_id: str | None = None,
    ) -> list[CallInvitation]:
        """List invitations, optionally filtered by state and participant."""
        ...

    async def list_expired(self, now: datetime) -> list[CallInvitation]:
        """Return pending invitations whose ring timeout has passed."""
        pending = await self.list_invitations(state=InvitationState.PENDING)
        return [inv for inv in pending if inv.expires_at <= now]

    async def live_for_user(self, user_id: str) -> list[CallInvitation]:
        """Return the pending and accepted invitations *user_id* takes part in."""
        invitations = await self.list_invitations(user_id=user_id)
        return [inv for inv in invitations if not inv.state.is_terminal]

    # Session operations

    @abstractmethod
    async def create_session(self, session: CallSession) -> bool:
        """Insert *session* unless one already exists for its session id.

        Returns:
            ``True`` if this caller now owns the session.
        """
        ...

    @abstractmethod
    async def put_session(self, session: CallSession) -> CallSession:
        """Replace a session this caller already owns."""
        ...

    @abstractmethod
    async def get_session(self, session_id: str) -> CallSession | None:
        """Get a live session by id."""
        ...

    @abstractmethod
    async def delete_session(self, session_id: str) -> CallSession | None:
        """Remove and return a session, or ``None`` if unknown."""
        ...


class QuotaStore(ABC):
    """Storage for monthly usage counters.

    Callers serialize writes per pair key; the store itself only needs
    read-your-writes consistency.
    """

    @abstractmethod
    async def get_record(self, pair_key: str, month_key: str) -> QuotaRecord | None:
        """Return the usage record, or ``None`` for an unseen month."""
        ...

    @abstractmethod
    async def put_record(self, record: QuotaRecord) -> QuotaRecord:
        """Store a usage record."""
        ...
