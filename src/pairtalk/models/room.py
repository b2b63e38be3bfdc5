"""Room and connection models."""

from __future__ import annotations

from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from pairtalk.models.events import OutboundEvent

PERSONAL_ROOM_PREFIX = "user:"

SendFn = Callable[[str, "OutboundEvent"], Coroutine[Any, Any, None]]


def personal_room(user_id: str) -> str:
    """Return the room every connection of *user_id* is implicitly joined to."""
    return f"{PERSONAL_ROOM_PREFIX}{user_id}"


class Room(BaseModel):
    """A conversation room mirrored from the relationship service."""

    id: str
    member_ids: set[str] = Field(default_factory=set)

    @property
    def is_personal(self) -> bool:
        return self.id.startswith(PERSONAL_ROOM_PREFIX)


@dataclass
class Connection:
    """A live transport connection owned by the connection registry.

    Attributes:
        connection_id: Unique id assigned by the transport layer.
        user_id: The authenticated user owning the connection.
        send_fn: Coroutine used to push outbound events to the client.
        joined_rooms: Rooms this connection explicitly or implicitly joined.
    """

    connection_id: str
    user_id: str
    send_fn: SendFn
    joined_rooms: set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=lambda: datetime.now(UTC))
