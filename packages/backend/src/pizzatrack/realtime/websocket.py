"""WebSocket endpoint — live order feed for dashboards.

Learn: Each client connects to /ws (optionally ?token=...). The handler:
1. Classifies the handshake into guest/user/admin (never rejects)
2. Registers the connection: global + order-updates rooms, admin room
   for admins
3. Reads {"type", "payload"} frames and dispatches them
4. Removes every membership on disconnect

Broadcast frames are written into the socket by EventBroadcaster from
whatever handler committed the change; this loop only serves requests
coming from this client.
"""

import json
import uuid
from typing import Any, Awaitable, Callable

import structlog
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import async_sessionmaker
from starlette.websockets import WebSocketState

from pizzatrack.config import settings
from pizzatrack.db.engine import get_session_factory
from pizzatrack.db.models import OrderStatus
from pizzatrack.realtime import events
from pizzatrack.realtime.broadcaster import EventBroadcaster
from pizzatrack.realtime.events import OrderStatusChanged
from pizzatrack.realtime.gatekeeper import classify_connection
from pizzatrack.realtime.rooms import Connection, Room, RoomRegistry
from pizzatrack.schemas.order import order_to_read
from pizzatrack.services.order_service import OrderNotFoundError, OrderService

logger = structlog.get_logger()
router = APIRouter()


class InboundError(Exception):
    """A client command that can't be served; becomes an error frame."""


def _parse_status(value: Any) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise InboundError(f"Invalid order status: {value!r}")


def _parse_uuid(value: Any) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise InboundError(f"Invalid order id: {value!r}")


def _clamp(value: Any, default: int, low: int, high: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return max(low, min(number, high))


class ConnectionHandler:
    """Serves inbound frames for one connection."""

    def __init__(
        self,
        connection: Connection,
        registry: RoomRegistry,
        broadcaster: EventBroadcaster,
        session_factory: async_sessionmaker,
    ):
        self.connection = connection
        self.registry = registry
        self.broadcaster = broadcaster
        self.session_factory = session_factory
        self._routes: dict[str, Callable[[Any], Awaitable[None]]] = {
            events.JOIN_STATUS_ROOM: self.join_status_room,
            events.LEAVE_STATUS_ROOM: self.leave_status_room,
            events.GET_ORDERS: self.get_orders,
            events.GET_ORDER: self.get_order,
            events.UPDATE_ORDER_STATUS: self.update_order_status,
            events.GET_STATISTICS: self.get_statistics,
            events.BROADCAST_MESSAGE: self.broadcast_message,
            events.PING: self.ping,
        }

    async def reply(self, name: str, payload: dict[str, Any]) -> None:
        await self.broadcaster.send_to(self.connection, name, payload)

    async def fail(self, name: str, error: str) -> None:
        await self.reply(name, {"success": False, "error": error})

    async def handle_text(self, text: str) -> None:
        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            await self.fail(events.ERROR, "Frames must be JSON")
            return
        if not isinstance(message, dict) or not isinstance(message.get("type"), str):
            await self.fail(events.ERROR, "Frames must be objects with a 'type'")
            return

        route = self._routes.get(message["type"])
        if route is None:
            await self.fail(events.ERROR, f"Unknown event: {message['type']}")
            return
        await route(message.get("payload"))

    # ─── Rooms ───────────────────────────────────────────

    async def join_status_room(self, payload: Any) -> None:
        """Subscribe to one status room. Unknown statuses are ignored."""
        try:
            room = Room.for_status(OrderStatus(payload))
        except ValueError:
            logger.debug(
                "realtime.join_ignored",
                connection_id=self.connection.id,
                status=payload,
            )
            return
        self.registry.join(self.connection, room)
        logger.info("realtime.room_joined", connection_id=self.connection.id, room=room.name)
        await self.reply(events.ROOM_JOINED, {"success": True, "room": room.name})

    async def leave_status_room(self, payload: Any) -> None:
        try:
            room = Room.for_status(OrderStatus(payload))
        except ValueError:
            return
        self.registry.leave(self.connection, room)
        logger.info("realtime.room_left", connection_id=self.connection.id, room=room.name)
        await self.reply(events.ROOM_LEFT, {"success": True, "room": room.name})

    # ─── Orders ──────────────────────────────────────────

    async def get_orders(self, payload: Any) -> None:
        filters = payload if isinstance(payload, dict) else {}
        try:
            status = filters.get("status")
            status = _parse_status(status) if status else None
            include_sub_items = filters.get("includeSubItems") is True
            async with self.session_factory() as db:
                orders = await OrderService(db).list_orders(
                    status=status,
                    limit=_clamp(filters.get("limit"), settings.default_page_size, 1, settings.max_page_size),
                    offset=_clamp(filters.get("offset"), 0, 0, 2**31 - 1),
                    include_sub_items=include_sub_items,
                )
                data = [
                    order_to_read(o, include_sub_items).model_dump(
                        mode="json", by_alias=True, exclude_none=True
                    )
                    for o in orders
                ]
        except InboundError as e:
            await self.fail(events.ORDERS_ERROR, str(e))
            return
        except Exception as e:
            logger.exception("realtime.get_orders_failed", connection_id=self.connection.id)
            await self.fail(events.ORDERS_ERROR, str(e))
            return

        await self.reply(events.ORDERS_DATA, {"success": True, "data": data})

    async def get_order(self, payload: Any) -> None:
        try:
            raw_id = payload.get("id") if isinstance(payload, dict) else payload
            order_id = _parse_uuid(raw_id)
            async with self.session_factory() as db:
                order = await OrderService(db).get_order(order_id, include_sub_items=True)
                data = (
                    order_to_read(order, include_sub_items=True).model_dump(
                        mode="json", by_alias=True, exclude_none=True
                    )
                    if order
                    else None
                )
        except InboundError as e:
            await self.fail(events.ORDER_ERROR, str(e))
            return
        except Exception as e:
            logger.exception("realtime.get_order_failed", connection_id=self.connection.id)
            await self.fail(events.ORDER_ERROR, str(e))
            return

        if data is None:
            await self.fail(events.ORDER_ERROR, "Order not found")
            return
        await self.reply(events.ORDER_DATA, {"success": True, "data": data})

    async def update_order_status(self, payload: Any) -> None:
        """Change an order's status, then broadcast the change to everyone.

        Open to every role, guests included.
        """
        try:
            if not isinstance(payload, dict):
                raise InboundError("Payload must be {id, status}")
            order_id = _parse_uuid(payload.get("id"))
            status = _parse_status(payload.get("status"))
            async with self.session_factory() as db:
                svc = OrderService(db)
                order, previous = await svc.update_status(order_id, status)
                order_read = order_to_read(order)
                statistics = (
                    await svc.get_statistics()
                    if self.broadcaster.has_audience(Room.admin())
                    else None
                )
        except (InboundError, OrderNotFoundError) as e:
            await self.fail(events.STATUS_UPDATE_ERROR, str(e))
            return
        except Exception as e:
            logger.exception("realtime.update_status_failed", connection_id=self.connection.id)
            await self.fail(events.STATUS_UPDATE_ERROR, str(e))
            return

        logger.info(
            "orders.status_changed",
            order_id=str(order_read.id),
            old_status=previous.value,
            new_status=status.value,
            via="websocket",
        )
        await self.reply(
            events.STATUS_UPDATE_SUCCESS,
            {
                "success": True,
                "message": "Order status updated successfully",
                "data": order_read.model_dump(mode="json", by_alias=True, exclude_none=True),
            },
        )
        await self.broadcaster.publish(OrderStatusChanged(order=order_read, old_status=previous))
        if statistics is not None:
            await self.broadcaster.publish_statistics(statistics)

    # ─── Admin ───────────────────────────────────────────

    async def get_statistics(self, payload: Any) -> None:
        if not self.connection.identity.is_admin:
            await self.fail(events.STATISTICS_ERROR, "Admin role required")
            return
        try:
            async with self.session_factory() as db:
                statistics = await OrderService(db).get_statistics()
        except Exception as e:
            logger.exception("realtime.statistics_failed", connection_id=self.connection.id)
            await self.fail(events.STATISTICS_ERROR, str(e))
            return
        await self.reply(
            events.STATISTICS_DATA,
            {"success": True, "data": statistics.model_dump(mode="json", by_alias=True)},
        )

    async def broadcast_message(self, payload: Any) -> None:
        if not self.connection.identity.is_admin:
            await self.fail(events.ERROR, "Admin role required")
            return
        if not isinstance(payload, dict) or not payload.get("message"):
            await self.fail(events.ERROR, "Payload must be {message, type}")
            return
        await self.broadcaster.publish_admin_message(
            str(payload["message"]), str(payload.get("type") or "info")
        )

    async def ping(self, payload: Any) -> None:
        await self.reply(events.PONG, {"success": True})


@router.websocket("/ws")
async def orders_websocket(
    websocket: WebSocket,
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Real-time order feed.

    Every connection is accepted; the token only decides the role.
    """
    identity = classify_connection(
        websocket.query_params, websocket.headers, websocket.cookies
    )
    await websocket.accept()

    registry: RoomRegistry = websocket.app.state.registry
    broadcaster: EventBroadcaster = websocket.app.state.broadcaster

    connection = Connection(id=uuid.uuid4().hex, identity=identity, socket=websocket)
    registry.register(connection)
    registry.join(connection, Room.order_updates())
    if identity.is_admin:
        registry.join(connection, Room.admin())

    log = logger.bind(connection_id=connection.id, role=identity.role.value)
    log.info("realtime.connected", client=str(websocket.client))

    handler = ConnectionHandler(connection, registry, broadcaster, session_factory)
    await handler.reply(
        events.CONNECTED,
        {
            "success": True,
            "connectionId": connection.id,
            "role": identity.role.value,
            "rooms": sorted(room.name for room in registry.rooms_of(connection)),
        },
    )

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
            if message.get("text") is not None:
                await handler.handle_text(message["text"])
            else:
                await handler.fail(events.ERROR, "Frames must be JSON text")
    except WebSocketDisconnect as e:
        log.info("realtime.disconnected", code=e.code)
    finally:
        registry.on_disconnect(connection)
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
