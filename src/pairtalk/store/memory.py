"""In-memory implementations of CallStore and QuotaStore."""

from __future__ import annotations

from collections import OrderedDict
from datetime import datetime

from pairtalk.models.call import CallInvitation, CallSession
from pairtalk.models.enums import InvitationState
from pairtalk.models.quota import QuotaRecord
from pairtalk.store.base import CallStore, QuotaStore


class InMemoryCallStore(CallStore):
    """Dict-based call store for single-process deployments.

    Live (pending or accepted) invitations are indexed by pair and by
    participant, so the expiry sweep and disconnect cleanup only touch
    calls still in progress. Terminal invitations are kept for the most
    recent ``max_terminal`` calls, long enough for a late ``cancel`` or
    ``end`` to see the final state; older ones are dropped since the
    persistence service holds the history.

    **Concurrency note:** no method awaits between its read and its write,
    so each one is atomic within a single event-loop iteration.
    """

    def __init__(self, max_terminal: int = 1024) -> None:
        if max_terminal < 0:
            raise ValueError("max_terminal must be non-negative")
        self._max_terminal = max_terminal
        self._invitations: dict[str, CallInvitation] = {}
        self._active_by_pair: dict[str, str] = {}
        self._live_by_user: dict[str, set[str]] = {}
        self._terminal: OrderedDict[str, None] = OrderedDict()
        self._sessions: dict[str, CallSession] = {}

    @property
    def live_count(self) -> int:
        """Number of pending or accepted invitations."""
        return len(self._active_by_pair)

    @property
    def retained_count(self) -> int:
        """Number of invitations held, live and terminal."""
        return len(self._invitations)

    async def create_invitation(self, invitation: CallInvitation) -> bool:
        key = invitation.pair_key
        if key in self._active_by_pair or invitation.session_id in self._invitations:
            return False
        self._invitations[invitation.session_id] = invitation
        if invitation.state.is_terminal:
            self._retire(invitation)
        else:
            self._index_live(invitation)
        return True

    async def get_invitation(self, session_id: str) -> CallInvitation | None:
        return self._invitations.get(session_id)

    async def compare_and_set(
        self,
        session_id: str,
        expected: InvitationState,
        invitation: CallInvitation,
    ) -> bool:
        current = self._invitations.get(session_id)
        if current is None or current.state != expected:
            return False
        self._invitations[session_id] = invitation
        if invitation.state.is_terminal:
            self._retire(invitation)
        return True

    async def active_for_pair(self, pair_key: str) -> CallInvitation | None:
        session_id = self._active_by_pair.get(pair_key)
        return self._invitations.get(session_id) if session_id is not None else None

    async def list_invitations(
        self,
        state: InvitationState | None = None,
        user_id: str | None = None,
    ) -> list[CallInvitation]:
        if state is not None and not state.is_terminal:
            candidates = self._live_ids(user_id)
        else:
            candidates = list(self._invitations)
        results: list[CallInvitation] = []
        for session_id in candidates:
            invitation = self._invitations[session_id]
            if state is not None and invitation.state != state:
                continue
            if user_id is not None and user_id not in invitation.participant_ids:
                continue
            results.append(invitation)
        return results

    async def list_expired(self, now: datetime) -> list[CallInvitation]:
        return [
            invitation
            for invitation in (self._invitations[s] for s in self._live_ids(None))
            if invitation.state == InvitationState.PENDING and invitation.expires_at <= now
        ]

    async def live_for_user(self, user_id: str) -> list[CallInvitation]:
        return [self._invitations[s] for s in self._live_ids(user_id)]

    async def create_session(self, session: CallSession) -> bool:
        if session.session_id in self._sessions:
            return False
        self._sessions[session.session_id] = session
        return True

    async def put_session(self, session: CallSession) -> CallSession:
        self._sessions[session.session_id] = session
        return session

    async def get_session(self, session_id: str) -> CallSession | None:
        return self._sessions.get(session_id)

    async def delete_session(self, session_id: str) -> CallSession | None:
        return self._sessions.pop(session_id, None)

    def _live_ids(self, user_id: str | None) -> list[str]:
        if user_id is None:
            return list(self._active_by_pair.values())
        return list(self._live_by_user.get(user_id, ()))

    def _index_live(self, invitation: CallInvitation) -> None:
        self._active_by_pair[invitation.pair_key] = invitation.session_id
        for user_id in invitation.participant_ids:
            self._live_by_user.setdefault(user_id, set()).add(invitation.session_id)

    def _retire(self, invitation: CallInvitation) -> None:
        session_id = invitation.session_id
        if self._active_by_pair.get(invitation.pair_key) == session_id:
            del self._active_by_pair[invitation.pair_key]
        for user_id in invitation.participant_ids:
            live = self._live_by_user.get(user_id)
            if live is None:
                continue
            live.discard(session_id)
            if not live:
                del self._live_by_user[user_id]

        self._terminal[session_id] = None
        while len(self._terminal) > self._max_terminal:
            expired, _ = self._terminal.popitem(last=False)
            self._invitations.pop(expired, None)


class InMemoryQuotaStore(QuotaStore):
    """Dict-based quota store keyed by ``(pair_key, month_key)``."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], QuotaRecord] = {}

    async def get_record(self, pair_key: str, month_key: str) -> QuotaRecord | None:
        return self._records.get((pair_key, month_key))

    async def put_record(self, record: QuotaRecord) -> QuotaRecord:
        self._records[(record.pair_key, record.month_key)] = record
        return record
