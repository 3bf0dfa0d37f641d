"""Room registry — which connection is in which room.

Learn: Rooms are a fixed set derived from their kind: the global room,
the order-updates room, the admin room, and one room per OrderStatus.
No other room can be created.

The registry keeps two indexes (room → members, connection → rooms) and
every mutation updates both, so membership is always symmetric. Mutations
never await, so each one is atomic on the event loop and needs no lock.
A multi-threaded port would need a mutex around _members/_rooms.
"""

import enum
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from pizzatrack.db.models import OrderStatus

logger = structlog.get_logger()


class RoomKind(str, enum.Enum):
    GLOBAL = "global"
    ORDER_UPDATES = "order-updates"
    ADMIN = "admin"
    STATUS = "status"


@dataclass(frozen=True)
class Room:
    """A broadcast group. Identity is (kind, status)."""

    kind: RoomKind
    status: Optional[OrderStatus] = None

    def __post_init__(self):
        if (self.kind == RoomKind.STATUS) != (self.status is not None):
            raise ValueError("status rooms need a status, other rooms must not have one")

    @classmethod
    def global_(cls) -> "Room":
        return cls(RoomKind.GLOBAL)

    @classmethod
    def order_updates(cls) -> "Room":
        return cls(RoomKind.ORDER_UPDATES)

    @classmethod
    def admin(cls) -> "Room":
        return cls(RoomKind.ADMIN)

    @classmethod
    def for_status(cls, status: OrderStatus) -> "Room":
        return cls(RoomKind.STATUS, OrderStatus(status))

    @property
    def name(self) -> str:
        """Wire name, e.g. 'status-En-Route' or 'admin-updates'."""
        if self.kind == RoomKind.STATUS:
            return f"status-{self.status.value}"
        if self.kind == RoomKind.ADMIN:
            return "admin-updates"
        return self.kind.value

    def __str__(self) -> str:
        return self.name


def all_rooms() -> list[Room]:
    """Every room that can exist."""
    return [
        Room.global_(),
        Room.order_updates(),
        Room.admin(),
        *(Room.for_status(s) for s in OrderStatus),
    ]


@dataclass(frozen=True)
class Connection:
    """One open client channel.

    `socket` is anything with an async send_json(dict); it is excluded
    from equality so connections hash by (id, identity) only.
    """

    id: str
    identity: Any  # gatekeeper.ConnectionIdentity
    socket: Any = field(default=None, compare=False, repr=False)

    async def send(self, message: dict) -> None:
        await self.socket.send_json(message)


class RoomRegistry:
    """Membership tables for the process. One instance per app."""

    def __init__(self):
        self._members: dict[Room, set[Connection]] = {}
        self._rooms: dict[Connection, set[Room]] = {}
        self._connections: dict[str, Connection] = {}

    # ─── Lifecycle ───────────────────────────────────────

    def register(self, connection: Connection) -> None:
        """Track a new connection and put it in the global room."""
        self._connections[connection.id] = connection
        self._rooms.setdefault(connection, set())
        self.join(connection, Room.global_())

    def on_disconnect(self, connection: Connection) -> set[Room]:
        """Drop the connection from every room. Returns the rooms it left.

        A second call, or a call for a connection that never registered,
        is a no-op.
        """
        rooms = self._rooms.pop(connection, set())
        for room in rooms:
            members = self._members.get(room)
            if members is not None:
                members.discard(connection)
                if not members:
                    del self._members[room]
        self._connections.pop(connection.id, None)
        return rooms

    # ─── Membership ──────────────────────────────────────

    def join(self, connection: Connection, room: Room) -> None:
        """Add connection to room. Joining twice is a no-op."""
        self._members.setdefault(room, set()).add(connection)
        self._rooms.setdefault(connection, set()).add(room)
        if connection.id not in self._connections:
            self._connections[connection.id] = connection

    def leave(self, connection: Connection, room: Room) -> None:
        """Remove connection from room. Leaving a room you're not in is a no-op."""
        members = self._members.get(room)
        if members is not None:
            members.discard(connection)
            if not members:
                del self._members[room]
        rooms = self._rooms.get(connection)
        if rooms is not None:
            rooms.discard(room)

    # ─── Queries ─────────────────────────────────────────

    def members_of(self, room: Room) -> set[Connection]:
        """Snapshot of the room's members (empty set if nobody is in it)."""
        return set(self._members.get(room, ()))

    def rooms_of(self, connection: Connection) -> set[Room]:
        return set(self._rooms.get(connection, ()))

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def connection_count(self) -> int:
        return len(self._connections)

    def room_statistics(self) -> dict[str, int]:
        """Member count per room, every known room included."""
        return {room.name: len(self._members.get(room, ())) for room in all_rooms()}
