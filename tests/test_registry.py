"""Tests for the ConnectionRegistry."""

from __future__ import annotations

import pytest

from pairtalk.collaborators.mock import MockRelationshipService
from pairtalk.core.errors import BadRequestError, NotAuthorizedError, NotFoundError
from pairtalk.core.registry import ConnectionRegistry

from tests.conftest import Inbox


@pytest.fixture
def registry(relationships: MockRelationshipService) -> ConnectionRegistry:
    return ConnectionRegistry(relationships)


class TestConnections:
    async def test_register_joins_personal_room(
        self, registry: ConnectionRegistry, inbox: Inbox
    ) -> None:
        conn = registry.register("c1", "alice", inbox.send)
        assert conn.joined_rooms == {"user:alice"}
        assert registry.members("user:alice") == {"alice"}
        assert registry.is_online("alice")

    async def test_register_is_idempotent(
        self, registry: ConnectionRegistry, inbox: Inbox
    ) -> None:
        first = registry.register("c1", "alice", inbox.send)
        second = registry.register("c1", "alice", inbox.send)
        assert first is second
        assert registry.connection_count == 1

    async def test_multiple_devices(self, registry: ConnectionRegistry, inbox: Inbox) -> None:
        registry.register("phone", "alice", inbox.send)
        registry.register("laptop", "alice", inbox.send)
        ids = {c.connection_id for c in registry.connections_for("alice")}
        assert ids == {"phone", "laptop"}

    async def test_unregister_is_idempotent(
        self, registry: ConnectionRegistry, inbox: Inbox
    ) -> None:
        registry.register("c1", "alice", inbox.send)
        removed = registry.unregister("c1")
        assert removed is not None
        assert removed.user_id == "alice"
        assert registry.unregister("c1") is None
        assert not registry.is_online("alice")
        assert registry.members("user:alice") == set()

    async def test_reregister_under_other_user_moves_connection(
        self, registry: ConnectionRegistry, inbox: Inbox
    ) -> None:
        registry.register("c1", "alice", inbox.send)
        registry.register("c1", "bob", inbox.send)
        assert not registry.is_online("alice")
        assert registry.get("c1").user_id == "bob"  # type: ignore[union-attr]

    @pytest.mark.parametrize("user_id", ["", "a:b"])
    async def test_rejects_invalid_user_ids(
        self, registry: ConnectionRegistry, inbox: Inbox, user_id: str
    ) -> None:
        with pytest.raises(BadRequestError):
            registry.register("c1", user_id, inbox.send)
        assert registry.get("c1") is None


class TestRooms:
    async def test_join_authorized_room(self, registry: ConnectionRegistry, inbox: Inbox) -> None:
        registry.register("c1", "alice", inbox.send)
        room = await registry.join_room("c1", "room-ab")
        assert room.member_ids == {"alice"}
        assert registry.is_member("alice", "room-ab")

    async def test_join_unauthorized_room(
        self, registry: ConnectionRegistry, inbox: Inbox
    ) -> None:
        registry.register("c1", "bob", inbox.send)
        with pytest.raises(NotAuthorizedError):
            await registry.join_room("c1", "room-ac")
        assert not registry.is_member("bob", "room-ac")

    async def test_join_other_users_personal_room(
        self, registry: ConnectionRegistry, inbox: Inbox
    ) -> None:
        registry.register("c1", "bob", inbox.send)
        with pytest.raises(NotAuthorizedError):
            await registry.join_room("c1", "user:alice")

    async def test_join_unknown_connection(self, registry: ConnectionRegistry) -> None:
        with pytest.raises(NotFoundError):
            await registry.join_room("ghost", "room-ab")

    async def test_connection_dropped_during_authorization(self, inbox: Inbox) -> None:
        registry: ConnectionRegistry

        class DroppingRelationships(MockRelationshipService):
            async def can_join_room(self, user_id: str, room_id: str) -> bool:
                registry.unregister("c1")
                return True

        registry = ConnectionRegistry(DroppingRelationships())
        registry.register("c1", "alice", inbox.send)
        with pytest.raises(NotFoundError):
            await registry.join_room("c1", "room-ab")
        assert registry.members("room-ab") == set()

    async def test_leave_room(self, registry: ConnectionRegistry, inbox: Inbox) -> None:
        registry.register("c1", "alice", inbox.send)
        await registry.join_room("c1", "room-ab")
        room = await registry.leave_room("c1", "room-ab")
        assert room.member_ids == set()
        # Leaving again is a no-op.
        await registry.leave_room("c1", "room-ab")

    async def test_cannot_leave_personal_room(
        self, registry: ConnectionRegistry, inbox: Inbox
    ) -> None:
        registry.register("c1", "alice", inbox.send)
        with pytest.raises(NotAuthorizedError):
            await registry.leave_room("c1", "user:alice")

    async def test_member_stays_while_any_device_joined(
        self, registry: ConnectionRegistry, inbox: Inbox
    ) -> None:
        registry.register("phone", "alice", inbox.send)
        registry.register("laptop", "alice", inbox.send)
        await registry.join_room("phone", "room-ab")
        await registry.join_room("laptop", "room-ab")

        registry.unregister("phone")
        assert registry.is_member("alice", "room-ab")
        registry.unregister("laptop")
        assert not registry.is_member("alice", "room-ab")

    async def test_recipients_include_every_device_of_members(
        self, registry: ConnectionRegistry, inbox: Inbox
    ) -> None:
        registry.register("a-phone", "alice", inbox.send)
        registry.register("a-laptop", "alice", inbox.send)
        registry.register("b-phone", "bob", inbox.send)
        await registry.join_room("a-phone", "room-ab")
        await registry.join_room("b-phone", "room-ab")

        ids = {c.connection_id for c in registry.recipients("room-ab")}
        assert ids == {"a-phone", "a-laptop", "b-phone"}
