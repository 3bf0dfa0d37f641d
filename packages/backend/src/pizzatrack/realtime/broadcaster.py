"""Event broadcaster — fan a DomainEvent out to the right rooms.

Learn: Broadcasting is telemetry, not part of the write. By the time
publish() is called the order is committed; if a room can't be
enumerated or a socket write fails we log it and move on. publish()
never raises, so it can't fail an API call or roll anything back.

Fan-out table:

    OrderCreated        global: order:created
                        status(order.status): new-order
    OrderUpdated        global: order:updated
                        order-updates: order-updated
    OrderStatusChanged  global: order:status-changed (+ oldStatus)
                        status(old): order-left-status
                        status(new): order-joined-status
    OrderDeleted        global: order:deleted
                        order-updates: order-deleted

Rooms are delivered one after another, in table order. For a status
change the "left" frames are fully written before any "joined" frame,
so occupancy counters on the client never double-count an order.

Each frame is {"type": <event>, "payload": {"success", "data",
"timestamp"}} with the timestamp taken when that room is delivered.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import structlog

from pizzatrack.db.models import OrderStatus
from pizzatrack.realtime import events
from pizzatrack.realtime.events import (
    DomainEvent,
    OrderCreated,
    OrderDeleted,
    OrderStatusChanged,
    OrderUpdated,
)
from pizzatrack.realtime.rooms import Connection, Room, RoomRegistry
from pizzatrack.schemas.order import OrderRead, OrderStatistics

logger = structlog.get_logger()


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _order_data(order: OrderRead) -> dict[str, Any]:
    return order.model_dump(mode="json", by_alias=True, exclude_none=True)


class EventBroadcaster:
    """Delivers domain events to room members. One instance per app.

    Created in create_app() next to the RoomRegistry it reads from and
    handed to route handlers through app.state.
    """

    def __init__(
        self,
        registry: RoomRegistry,
        clock: Optional[Callable[[], str]] = None,
    ):
        self.registry = registry
        self._clock = clock or utc_timestamp

    # ─── Fan-out plan ────────────────────────────────────

    def plan(self, event: DomainEvent) -> list[tuple[Room, str, dict[str, Any]]]:
        """Ordered (room, event name, payload body) targets for an event.

        The body has no timestamp yet; it is stamped at delivery time.
        """
        if isinstance(event, OrderCreated):
            data = _order_data(event.order)
            return [
                (Room.global_(), events.ORDER_CREATED, {"data": data}),
                (Room.for_status(event.order.status), events.NEW_ORDER, {"data": data}),
            ]

        if isinstance(event, OrderUpdated):
            data = _order_data(event.order)
            return [
                (Room.global_(), events.ORDER_UPDATED, {"data": data}),
                (Room.order_updates(), events.UPDATES_ORDER_UPDATED, {"data": data}),
            ]

        if isinstance(event, OrderStatusChanged):
            data = _order_data(event.order)
            targets = [
                (
                    Room.global_(),
                    events.ORDER_STATUS_CHANGED,
                    {"data": data, "oldStatus": OrderStatus(event.old_status).value},
                ),
            ]
            # Same status in and out: nothing entered or left a status room.
            if event.old_status != event.new_status:
                targets.append(
                    (Room.for_status(event.old_status), events.ORDER_LEFT_STATUS, {"data": data})
                )
                targets.append(
                    (Room.for_status(event.new_status), events.ORDER_JOINED_STATUS, {"data": data})
                )
            return targets

        if isinstance(event, OrderDeleted):
            data = {"id": str(event.order_id)}
            return [
                (Room.global_(), events.ORDER_DELETED, {"data": data}),
                (Room.order_updates(), events.UPDATES_ORDER_DELETED, {"data": data}),
            ]

        raise TypeError(f"Unknown domain event: {type(event).__name__}")

    # ─── Publishing ──────────────────────────────────────

    async def publish(self, event: DomainEvent) -> None:
        """Fan an event out. Logs and swallows every delivery error."""
        try:
            targets = self.plan(event)
        except Exception:
            logger.exception("realtime.plan_failed", event=type(event).__name__)
            return

        delivered = 0
        for room, name, body in targets:
            delivered += await self.broadcast_to_room(
                room, name, {"success": True, **body}
            )

        logger.info(
            "realtime.published",
            event=type(event).__name__,
            rooms=[room.name for room, _, _ in targets],
            frames=delivered,
        )

    async def publish_admin_message(self, message: str, type: str = "info") -> None:
        """Push an operator message to the admin room only."""
        await self.broadcast_to_room(
            Room.admin(),
            events.ADMIN_MESSAGE,
            {"message": message, "type": type},
        )

    async def publish_statistics(self, statistics: OrderStatistics) -> None:
        """Push fresh order statistics to the admin room only."""
        await self.broadcast_to_room(
            Room.admin(),
            events.STATISTICS_UPDATE,
            {
                "success": True,
                "data": statistics.model_dump(mode="json", by_alias=True),
            },
        )

    def has_audience(self, room: Room) -> bool:
        try:
            return bool(self.registry.members_of(room))
        except Exception:
            return False

    # ─── Delivery ────────────────────────────────────────

    async def broadcast_to_room(
        self, room: Room, name: str, body: dict[str, Any]
    ) -> int:
        """Send one frame to every current member. Returns frames delivered."""
        try:
            members = list(self.registry.members_of(room))
        except Exception:
            logger.exception("realtime.room_enumeration_failed", room=room.name)
            return 0

        if not members:
            return 0

        frame = {"type": name, "payload": {**body, "timestamp": self._clock()}}
        results = await asyncio.gather(
            *(member.send(frame) for member in members),
            return_exceptions=True,
        )

        delivered = 0
        for member, result in zip(members, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "realtime.delivery_failed",
                    room=room.name,
                    event=name,
                    connection_id=member.id,
                    error=repr(result),
                )
            else:
                delivered += 1
        return delivered

    async def send_to(
        self, connection: Connection, name: str, payload: dict[str, Any]
    ) -> bool:
        """Reply to a single connection. False if the write failed."""
        frame = {"type": name, "payload": {**payload, "timestamp": self._clock()}}
        try:
            await connection.send(frame)
            return True
        except Exception as e:
            logger.warning(
                "realtime.reply_failed",
                event=name,
                connection_id=connection.id,
                error=repr(e),
            )
            return False
