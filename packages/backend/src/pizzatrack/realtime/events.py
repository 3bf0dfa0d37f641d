"""Domain events and wire event names.

Learn: A DomainEvent describes one committed change to an order. It is
never stored: the broadcaster turns it into frames and drops it.
Each kind is its own frozen dataclass so the fan-out table in
broadcaster.py can dispatch on type and fail loudly on anything else.
"""

import uuid
from dataclasses import dataclass
from typing import Union

from pizzatrack.db.models import OrderStatus
from pizzatrack.schemas.order import OrderRead

# ─── Global room ─────────────────────────────────────────

ORDER_CREATED = "order:created"
ORDER_UPDATED = "order:updated"
ORDER_STATUS_CHANGED = "order:status-changed"
ORDER_DELETED = "order:deleted"

# ─── Order-updates room ──────────────────────────────────

UPDATES_ORDER_UPDATED = "order-updated"
UPDATES_ORDER_DELETED = "order-deleted"

# ─── Status rooms ────────────────────────────────────────

NEW_ORDER = "new-order"
ORDER_JOINED_STATUS = "order-joined-status"
ORDER_LEFT_STATUS = "order-left-status"

# ─── Admin room ──────────────────────────────────────────

ADMIN_MESSAGE = "admin-message"
STATISTICS_UPDATE = "statistics-update"

# ─── Direct replies (sender only) ────────────────────────

CONNECTED = "connected"
ROOM_JOINED = "room-joined"
ROOM_LEFT = "room-left"
ORDERS_DATA = "orders-data"
ORDERS_ERROR = "orders-error"
ORDER_DATA = "order-data"
ORDER_ERROR = "order-error"
STATUS_UPDATE_SUCCESS = "status-update-success"
STATUS_UPDATE_ERROR = "status-update-error"
STATISTICS_DATA = "statistics-data"
STATISTICS_ERROR = "statistics-error"
ERROR = "error"
PONG = "pong"

# ─── Inbound (client → server) ───────────────────────────

JOIN_STATUS_ROOM = "join-status-room"
LEAVE_STATUS_ROOM = "leave-status-room"
GET_ORDERS = "get-orders"
GET_ORDER = "get-order"
UPDATE_ORDER_STATUS = "update-order-status"
GET_STATISTICS = "get-statistics"
BROADCAST_MESSAGE = "broadcast-message"
PING = "ping"


@dataclass(frozen=True)
class OrderCreated:
    order: OrderRead


@dataclass(frozen=True)
class OrderUpdated:
    order: OrderRead


@dataclass(frozen=True)
class OrderStatusChanged:
    order: OrderRead
    old_status: OrderStatus

    @property
    def new_status(self) -> OrderStatus:
        return self.order.status


@dataclass(frozen=True)
class OrderDeleted:
    order_id: uuid.UUID


DomainEvent = Union[OrderCreated, OrderUpdated, OrderStatusChanged, OrderDeleted]

