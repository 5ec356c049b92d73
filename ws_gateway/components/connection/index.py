"""
Room Router - membership index of connections by room.

Rooms are derived from a connection's identity:
- branch:<branchId>  (only when the identity carries a branch)
- role:<role>
- user:<id>

Rooms are never created or destroyed explicitly; a room exists while it
has members. join() and leave() contain no suspension point, so on a single
event loop a broadcast snapshot always sees a connection either fully
joined or not joined at all.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import TYPE_CHECKING

from shared.config.logging import get_logger
from ws_gateway.components.core.constants import ROOM_BRANCH, ROOM_ROLE, ROOM_USER

if TYPE_CHECKING:
    from shared.security.auth import Identity
    from ws_gateway.components.connection.connection import Connection

logger = get_logger(__name__)


def branch_room(branch_id: str) -> str:
    return f"{ROOM_BRANCH}:{branch_id}"


def role_room(role: str) -> str:
    return f"{ROOM_ROLE}:{role}"


def user_room(user_id: str) -> str:
    return f"{ROOM_USER}:{user_id}"


def rooms_for(identity: "Identity") -> tuple[str, ...]:
    """
    Room names an identity belongs to.

    At most one branch room, exactly one role room, exactly one user room.
    """
    rooms = [role_room(identity.role), user_room(identity.id)]
    if identity.branch_id:
        rooms.insert(0, branch_room(identity.branch_id))
    return tuple(rooms)


class RoomRouter:
    """
    Manages room membership.

    Indices maintained:
    - by_room: room -> set[Connection]
    - conn_to_rooms: Connection -> tuple[room] (reverse mapping for leave)

    Only the gateway server calls join()/leave(); everything else reads
    snapshots.
    """

    def __init__(self) -> None:
        self._by_room: dict[str, set[Connection]] = {}
        self._conn_to_rooms: dict[Connection, tuple[str, ...]] = {}

    # =========================================================================
    # Immutable views
    # =========================================================================

    @property
    def by_room(self) -> MappingProxyType[str, set["Connection"]]:
        """Connections indexed by room (immutable view)."""
        return MappingProxyType(self._by_room)

    @property
    def room_count(self) -> int:
        return len(self._by_room)

    @property
    def connection_count(self) -> int:
        return len(self._conn_to_rooms)

    # =========================================================================
    # Mutations (synchronous by construction)
    # =========================================================================

    def join(self, connection: "Connection") -> tuple[str, ...]:
        """
        Add a connection to all of its rooms in one step.

        Joining an already joined connection is a no-op. Returns the rooms
        the connection is a member of.
        """
        existing = self._conn_to_rooms.get(connection)
        if existing is not None:
            return existing

        rooms = rooms_for(connection.identity)
        for room in rooms:
            self._by_room.setdefault(room, set()).add(connection)
        self._conn_to_rooms[connection] = rooms
        connection.rooms = frozenset(rooms)

        logger.debug("Connection joined rooms", connection=connection.id[:8], rooms=list(rooms))
        return rooms

    def leave(self, connection: "Connection") -> tuple[str, ...]:
        """
        Remove a connection from every room in one step. Idempotent.

        Returns the rooms it left (empty if it was not joined).
        """
        rooms = self._conn_to_rooms.pop(connection, ())
        for room in rooms:
            members = self._by_room.get(room)
            if members is None:
                continue
            members.discard(connection)
            # Rooms vanish when empty
            if not members:
                del self._by_room[room]
        connection.rooms = frozenset()

        if rooms:
            logger.debug("Connection left rooms", connection=connection.id[:8], rooms=list(rooms))
        return rooms

    # =========================================================================
    # Queries
    # =========================================================================

    def members(self, room: str) -> tuple["Connection", ...]:
        """Snapshot of a room's members at call time."""
        return tuple(self._by_room.get(room, ()))

    def rooms_of(self, connection: "Connection") -> tuple[str, ...]:
        return self._conn_to_rooms.get(connection, ())

    def is_joined(self, connection: "Connection") -> bool:
        return connection in self._conn_to_rooms

    def connections(self) -> tuple["Connection", ...]:
        """Snapshot of every joined connection."""
        return tuple(self._conn_to_rooms)

    def snapshot(self) -> dict[str, list[str]]:
        """Room -> sorted member connection ids."""
        return {room: sorted(c.id for c in members) for room, members in self._by_room.items()}

    def get_stats(self) -> dict[str, int]:
        return {
            "rooms": self.room_count,
            "connections": self.connection_count,
            "branch_rooms": sum(1 for r in self._by_room if r.startswith(f"{ROOM_BRANCH}:")),
        }
