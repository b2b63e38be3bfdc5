"""In-memory collaborators for development and testing."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from uuid import uuid4

from pairtalk.collaborators.base import MediaProvider, PersistenceService, RelationshipService
from pairtalk.models.call import CallInvitation, CallSession, pair_key
from pairtalk.models.enums import MessageStatus
from pairtalk.models.message import ChatMessage


class InMemoryPersistence(PersistenceService):
    """Dict-based persistence with optional failure injection."""

    def __init__(self, *, fail_writes: bool = False) -> None:
        self.fail_writes = fail_writes
        self.messages: dict[str, ChatMessage] = {}
        self.invitations: dict[str, CallInvitation] = {}
        self._room_messages: dict[str, list[str]] = {}

    async def allocate_message_id(self) -> str:
        return f"msg-{uuid4().hex}"

    async def allocate_call_id(self) -> str:
        return f"call-{uuid4().hex}"

    async def save_message(self, message: ChatMessage) -> None:
        if self.fail_writes:
            raise ConnectionError("persistence unavailable")
        if message.id not in self.messages:
            self._room_messages.setdefault(message.room_id, []).append(message.id)
        self.messages[message.id] = message

    async def save_invitation(self, invitation: CallInvitation) -> None:
        if self.fail_writes:
            raise ConnectionError("persistence unavailable")
        self.invitations[invitation.call_id] = invitation

    async def mark_read(self, room_id: str, reader_id: str, read_at: datetime) -> int:
        updated = 0
        for message_id in self._room_messages.get(room_id, []):
            message = self.messages[message_id]
            if message.sender_id == reader_id or message.status == MessageStatus.READ:
                continue
            self.messages[message_id] = message.model_copy(update={"status": MessageStatus.READ})
            updated += 1
        return updated

    async def list_messages(self, room_id: str, limit: int = 50) -> list[ChatMessage]:
        ids = self._room_messages.get(room_id, [])[-limit:]
        return [self.messages[i] for i in ids]


class MockRelationshipService(RelationshipService):
    """Authorizes from a pre-configured set of matches and rooms.

    Example::

        relationships = MockRelationshipService()
        relationships.match("alice", "bob", room_id="room-1")
    """

    def __init__(
        self,
        matches: Iterable[tuple[str, str]] | None = None,
        rooms: dict[str, set[str]] | None = None,
    ) -> None:
        self._matches: set[str] = {pair_key(a, b) for a, b in matches or ()}
        self._rooms: dict[str, set[str]] = {k: set(v) for k, v in (rooms or {}).items()}

    def match(self, user_a: str, user_b: str, *, room_id: str | None = None) -> None:
        self._matches.add(pair_key(user_a, user_b))
        if room_id is not None:
            self._rooms.setdefault(room_id, set()).update({user_a, user_b})

    def unmatch(self, user_a: str, user_b: str) -> None:
        self._matches.discard(pair_key(user_a, user_b))

    async def are_matched(self, user_a: str, user_b: str) -> bool:
        return pair_key(user_a, user_b) in self._matches

    async def can_join_room(self, user_id: str, room_id: str) -> bool:
        return user_id in self._rooms.get(room_id, set())


class MockMediaProvider(MediaProvider):
    """Hands out deterministic join references and records calls."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.created: list[str] = []
        self.closed: list[str] = []

    async def create_session(self, session: CallSession) -> str:
        if self.fail:
            raise ConnectionError("media provider unavailable")
        self.created.append(session.session_id)
        return f"media-{session.session_id}"

    async def close_session(self, session_id: str) -> None:
        self.closed.append(session_id)
