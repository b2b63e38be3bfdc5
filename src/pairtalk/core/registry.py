"""Connection registry mapping users to live connections and rooms."""

from __future__ import annotations

import logging

from pairtalk.collaborators.base import RelationshipService
from pairtalk.core.errors import BadRequestError, NotAuthorizedError, NotFoundError
from pairtalk.models.call import PAIR_KEY_SEPARATOR
from pairtalk.models.room import PERSONAL_ROOM_PREFIX, Connection, Room, SendFn, personal_room

logger = logging.getLogger("pairtalk.registry")


class ConnectionRegistry:
    """Tracks live connections per user and their room memberships.

    A user may own any number of connections (one per device). Each
    connection is joined to its user's personal room on registration.

    **Concurrency note:** every mutation completes without awaiting
    between reading and writing the indexes, so concurrent connect and
    disconnect events on the event loop cannot interleave inside one.
    ``join_room`` awaits the relationship check first and re-validates
    the connection before mutating.
    """

    def __init__(self, relationships: RelationshipService) -> None:
        self._relationships = relationships
        self._connections: dict[str, Connection] = {}
        self._by_user: dict[str, set[str]] = {}
        self._by_room: dict[str, set[str]] = {}

    # -- Connections --

    def register(self, connection_id: str, user_id: str, send_fn: SendFn) -> Connection:
        """Register a connection. Re-registering an id is a no-op apart
        from refreshing its send function."""
        if not user_id or PAIR_KEY_SEPARATOR in user_id:
            raise BadRequestError(f"Invalid user id {user_id!r}")
        existing = self._connections.get(connection_id)
        if existing is not None:
            if existing.user_id == user_id:
                existing.send_fn = send_fn
                return existing
            logger.warning(
                "Connection %s re-registered for user %s (was %s)",
                connection_id,
                user_id,
                existing.user_id,
            )
            self.unregister(connection_id)

        connection = Connection(connection_id=connection_id, user_id=user_id, send_fn=send_fn)
        self._connections[connection_id] = connection
        self._by_user.setdefault(user_id, set()).add(connection_id)
        self._add_to_room(connection, personal_room(user_id))
        logger.debug(
            "User %s connected via %s (%d connections)",
            user_id,
            connection_id,
            len(self._by_user[user_id]),
        )
        return connection

    def unregister(self, connection_id: str) -> Connection | None:
        """Remove a connection and all of its memberships. Unknown ids are ignored."""
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return None

        user_connections = self._by_user.get(connection.user_id)
        if user_connections is not None:
            user_connections.discard(connection_id)
            if not user_connections:
                del self._by_user[connection.user_id]

        for room_id in list(connection.joined_rooms):
            self._remove_from_room(connection, room_id)
        logger.debug("Connection %s of user %s unregistered", connection_id, connection.user_id)
        return connection

    def get(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def connections_for(self, user_id: str) -> list[Connection]:
        """Snapshot of the user's live connections, safe to iterate across awaits."""
        ids = self._by_user.get(user_id, ())
        return [self._connections[c] for c in ids if c in self._connections]

    def is_online(self, user_id: str) -> bool:
        return bool(self._by_user.get(user_id))

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    # -- Rooms --

    async def join_room(self, connection_id: str, room_id: str) -> Room:
        """Join *room_id* if the relationship service authorizes the user.

        Raises:
            NotFoundError: The connection is not registered.
            NotAuthorizedError: The user is not a participant of the room.
        """
        connection = self._require(connection_id)
        if room_id.startswith(PERSONAL_ROOM_PREFIX):
            if room_id != personal_room(connection.user_id):
                raise NotAuthorizedError(f"Cannot join another user's room {room_id}")
        elif not await self._relationships.can_join_room(connection.user_id, room_id):
            raise NotAuthorizedError(f"User {connection.user_id} may not join room {room_id}")

        # The connection may have dropped while the check was in flight.
        connection = self._require(connection_id)
        self._add_to_room(connection, room_id)
        return self.room(room_id)

    async def leave_room(self, connection_id: str, room_id: str) -> Room:
        """Leave *room_id*. Leaving a room that was never joined is a no-op."""
        connection = self._require(connection_id)
        if room_id == personal_room(connection.user_id):
            raise NotAuthorizedError("Cannot leave the personal room")
        self._remove_from_room(connection, room_id)
        return self.room(room_id)

    def room(self, room_id: str) -> Room:
        return Room(id=room_id, member_ids=self.members(room_id))

    def members(self, room_id: str) -> set[str]:
        """Users with at least one connection joined to the room."""
        return {
            self._connections[c].user_id
            for c in self._by_room.get(room_id, ())
            if c in self._connections
        }

    def is_member(self, user_id: str, room_id: str) -> bool:
        return user_id in self.members(room_id)

    def recipients(self, room_id: str) -> list[Connection]:
        """Every live connection of every member of the room."""
        connections: list[Connection] = []
        for user_id in sorted(self.members(room_id)):
            connections.extend(self.connections_for(user_id))
        return connections

    def _require(self, connection_id: str) -> Connection:
        connection = self._connections.get(connection_id)
        if connection is None:
            raise NotFoundError(f"Unknown connection {connection_id}")
        return connection

    def _add_to_room(self, connection: Connection, room_id: str) -> None:
        connection.joined_rooms.add(room_id)
        self._by_room.setdefault(room_id, set()).add(connection.connection_id)

    def _remove_from_room(self, connection: Connection, room_id: str) -> None:
        connection.joined_rooms.discard(room_id)
        room_connections = self._by_room.get(room_id)
        if room_connections is None:
            return
        room_connections.discard(connection.connection_id)
        if not room_connections:
            del self._by_room[room_id]
