"""Abstract contracts for persistence, relationship, and media collaborators."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from pairtalk.models.call import CallInvitation, CallSession
from pairtalk.models.message import ChatMessage


class PersistenceService(ABC):
    """Durable storage for finalized messages and invitations.

    Ids are allocated before any broadcast; the writes themselves may
    complete asynchronously after delivery.
    """

    @abstractmethod
    async def allocate_message_id(self) -> str:
        """Reserve a durable id for a chat message."""
        ...

    @abstractmethod
    async def allocate_call_id(self) -> str:
        """Reserve a durable id for a call record."""
        ...

    @abstractmethod
    async def save_message(self, message: ChatMessage) -> None:
        """Persist a chat message."""
        ...

    @abstractmethod
    async def save_invitation(self, invitation: CallInvitation) -> None:
        """Persist the latest state of a call invitation (upsert by call id)."""
        ...

    @abstractmethod
    async def mark_read(self, room_id: str, reader_id: str, read_at: datetime) -> int:
        """Mark messages in *room_id* not sent by *reader_id* as read.

        Returns:
            The number of messages updated.
        """
        ...

    @abstractmethod
    async def list_messages(self, room_id: str, limit: int = 50) -> list[ChatMessage]:
        """Return the latest messages of a room, oldest first.

        Reconnecting clients use this to pull history missed while offline.
        """
        ...


class RelationshipService(ABC):
    """Authorizes room membership and calls between users."""

    @abstractmethod
    async def are_matched(self, user_a: str, user_b: str) -> bool:
        """Return whether the two users may call each other."""
        ...

    @abstractmethod
    async def can_join_room(self, user_id: str, room_id: str) -> bool:
        """Return whether *user_id* participates in conversation *room_id*."""
        ...


class MediaProvider(ABC):
    """Third-party video provider; PairTalk only exchanges signaling metadata."""

    @abstractmethod
    async def create_session(self, session: CallSession) -> str:
        """Create a media room for an accepted call and return its join reference."""
        ...

    @abstractmethod
    async def close_session(self, session_id: str) -> None:
        """Tear down the media room of an ended call."""
        ...
