"""Event broadcaster tests — fan-out table, ordering, failure isolation.

Learn: No database here. Orders are plain OrderRead values and sockets
are RecordingSockets, so each test reads exactly which frames reached
which connection and in what order.
"""

import uuid
from datetime import datetime, timezone

import pytest

from pizzatrack.db.models import OrderStatus
from pizzatrack.realtime import events
from pizzatrack.realtime.broadcaster import EventBroadcaster
from pizzatrack.realtime.events import (
    OrderCreated,
    OrderDeleted,
    OrderStatusChanged,
    OrderUpdated,
)
from pizzatrack.realtime.gatekeeper import ADMIN
from pizzatrack.realtime.rooms import Room, RoomRegistry
from pizzatrack.schemas.order import OrderStatistics, OrderRead

from conftest import BrokenSocket, RecordingSocket

FIXED_TS = "2024-05-01T12:00:00+00:00"


def make_order(status: OrderStatus = OrderStatus.RECEIVED) -> OrderRead:
    now = datetime(2024, 5, 1, 11, 30, tzinfo=timezone.utc)
    return OrderRead(
        id=uuid.uuid4(),
        title="Office Lunch Order",
        latitude=40.7128,
        longitude=-74.006,
        order_time=now,
        status=status,
        created_at=now,
        updated_at=now,
    )


@pytest.fixture
def fixed_broadcaster(registry):
    return EventBroadcaster(registry, clock=lambda: FIXED_TS)


def in_room(registry, make_connection, *rooms):
    conn = make_connection()
    for room in rooms:
        registry.join(conn, room)
    return conn


# ═══════════════════════════════════════════════════════════
# Fan-out plan
# ═══════════════════════════════════════════════════════════


def test_plan_created(fixed_broadcaster):
    order = make_order(OrderStatus.RECEIVED)
    plan = fixed_broadcaster.plan(OrderCreated(order))
    assert [(room, name) for room, name, _ in plan] == [
        (Room.global_(), events.ORDER_CREATED),
        (Room.for_status(OrderStatus.RECEIVED), events.NEW_ORDER),
    ]


def test_plan_updated(fixed_broadcaster):
    plan = fixed_broadcaster.plan(OrderUpdated(make_order()))
    assert [(room, name) for room, name, _ in plan] == [
        (Room.global_(), events.ORDER_UPDATED),
        (Room.order_updates(), events.UPDATES_ORDER_UPDATED),
    ]


def test_plan_status_changed_left_before_joined(fixed_broadcaster):
    order = make_order(OrderStatus.READY)
    plan = fixed_broadcaster.plan(OrderStatusChanged(order, old_status=OrderStatus.PREPARING))
    assert [(room, name) for room, name, _ in plan] == [
        (Room.global_(), events.ORDER_STATUS_CHANGED),
        (Room.for_status(OrderStatus.PREPARING), events.ORDER_LEFT_STATUS),
        (Room.for_status(OrderStatus.READY), events.ORDER_JOINED_STATUS),
    ]
    assert plan[0][2]["oldStatus"] == "Preparing"


def test_plan_same_status_skips_status_rooms(fixed_broadcaster):
    order = make_order(OrderStatus.READY)
    plan = fixed_broadcaster.plan(OrderStatusChanged(order, old_status=OrderStatus.READY))
    assert [room for room, _, _ in plan] == [Room.global_()]


def test_plan_deleted(fixed_broadcaster):
    order_id = uuid.uuid4()
    plan = fixed_broadcaster.plan(OrderDeleted(order_id))
    assert [(room, name) for room, name, _ in plan] == [
        (Room.global_(), events.ORDER_DELETED),
        (Room.order_updates(), events.UPDATES_ORDER_DELETED),
    ]
    assert all(body["data"] == {"id": str(order_id)} for _, _, body in plan)


def test_plan_rejects_unknown_event(fixed_broadcaster):
    with pytest.raises(TypeError):
        fixed_broadcaster.plan(object())


# ═══════════════════════════════════════════════════════════
# Delivery
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_created_reaches_global_and_status_room(registry, make_connection, fixed_broadcaster):
    everyone = make_connection()
    watcher = in_room(registry, make_connection, Room.for_status(OrderStatus.RECEIVED))
    other_status = in_room(registry, make_connection, Room.for_status(OrderStatus.READY))

    order = make_order(OrderStatus.RECEIVED)
    await fixed_broadcaster.publish(OrderCreated(order))

    assert everyone.socket.types() == [events.ORDER_CREATED]
    assert watcher.socket.types() == [events.ORDER_CREATED, events.NEW_ORDER]
    assert other_status.socket.types() == [events.ORDER_CREATED]

    frame = watcher.socket.of_type(events.NEW_ORDER)[0]
    assert frame["payload"]["success"] is True
    assert frame["payload"]["timestamp"] == FIXED_TS
    assert frame["payload"]["data"]["id"] == str(order.id)
    assert frame["payload"]["data"]["orderTime"].startswith("2024-05-01T11:30:00")


@pytest.mark.asyncio
async def test_status_change_frames_in_order(registry, make_connection, fixed_broadcaster):
    """A client in both status rooms sees left before joined."""
    both = in_room(
        registry,
        make_connection,
        Room.for_status(OrderStatus.RECEIVED),
        Room.for_status(OrderStatus.PREPARING),
    )

    order = make_order(OrderStatus.PREPARING)
    await fixed_broadcaster.publish(OrderStatusChanged(order, old_status=OrderStatus.RECEIVED))

    assert both.socket.types() == [
        events.ORDER_STATUS_CHANGED,
        events.ORDER_LEFT_STATUS,
        events.ORDER_JOINED_STATUS,
    ]
    changed = both.socket.of_type(events.ORDER_STATUS_CHANGED)[0]["payload"]
    assert changed["oldStatus"] == "Received"
    assert changed["data"]["status"] == "Preparing"


@pytest.mark.asyncio
async def test_same_status_change_only_global(registry, make_connection, fixed_broadcaster):
    watcher = in_room(registry, make_connection, Room.for_status(OrderStatus.READY))
    order = make_order(OrderStatus.READY)
    await fixed_broadcaster.publish(OrderStatusChanged(order, old_status=OrderStatus.READY))
    assert watcher.socket.types() == [events.ORDER_STATUS_CHANGED]


@pytest.mark.asyncio
async def test_deleted_carries_only_id(registry, make_connection, fixed_broadcaster):
    subscriber = in_room(registry, make_connection, Room.order_updates())
    status_watcher = in_room(
        registry, make_connection, *(Room.for_status(s) for s in OrderStatus)
    )
    order_id = uuid.uuid4()

    await fixed_broadcaster.publish(OrderDeleted(order_id))

    assert subscriber.socket.types() == [events.ORDER_DELETED, events.UPDATES_ORDER_DELETED]
    assert subscriber.socket.frames[1]["payload"]["data"] == {"id": str(order_id)}
    # Status rooms hear nothing about deletions
    assert status_watcher.socket.types() == [events.ORDER_DELETED]


@pytest.mark.asyncio
async def test_empty_rooms_are_fine(fixed_broadcaster):
    await fixed_broadcaster.publish(OrderCreated(make_order()))
    await fixed_broadcaster.publish(OrderDeleted(uuid.uuid4()))


@pytest.mark.asyncio
async def test_failing_socket_does_not_block_others(registry, make_connection, fixed_broadcaster):
    broken = make_connection(socket=BrokenSocket())
    healthy = make_connection()

    await fixed_broadcaster.publish(OrderUpdated(make_order()))

    assert healthy.socket.types() == [events.ORDER_UPDATED]
    # The broken peer stays registered until its own disconnect fires
    assert registry.get(broken.id) is broken


@pytest.mark.asyncio
async def test_publish_swallows_registry_failure():
    class BrokenRegistry(RoomRegistry):
        def members_of(self, room):
            raise RuntimeError("registry unavailable")

    broadcaster = EventBroadcaster(BrokenRegistry(), clock=lambda: FIXED_TS)
    await broadcaster.publish(OrderCreated(make_order()))
    assert broadcaster.has_audience(Room.admin()) is False


@pytest.mark.asyncio
async def test_publish_ignores_unknown_event(fixed_broadcaster):
    await fixed_broadcaster.publish(object())


@pytest.mark.asyncio
async def test_default_clock_stamps_each_frame(registry, make_connection, broadcaster):
    conn = make_connection()
    await broadcaster.publish(OrderUpdated(make_order()))
    stamp = conn.socket.frames[0]["payload"]["timestamp"]
    assert datetime.fromisoformat(stamp).tzinfo is not None


# ═══════════════════════════════════════════════════════════
# Admin room
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_admin_message_only_to_admins(registry, make_connection, fixed_broadcaster):
    admin = in_room(registry, make_connection, Room.admin())
    guest = make_connection()

    await fixed_broadcaster.publish_admin_message("Oven 2 is down", "warning")

    assert guest.socket.frames == []
    payload = admin.socket.of_type(events.ADMIN_MESSAGE)[0]["payload"]
    assert payload["message"] == "Oven 2 is down"
    assert payload["type"] == "warning"


@pytest.mark.asyncio
async def test_statistics_push(registry, make_connection, fixed_broadcaster):
    admin = make_connection(ADMIN)
    registry.join(admin, Room.admin())
    assert fixed_broadcaster.has_audience(Room.admin())

    stats = OrderStatistics(
        total_orders=3,
        active_orders=2,
        delivered_orders=1,
        average_order_time=31.5,
        by_status={"Received": 2, "Delivered": 1},
    )
    await fixed_broadcaster.publish_statistics(stats)

    data = admin.socket.of_type(events.STATISTICS_UPDATE)[0]["payload"]["data"]
    assert data["totalOrders"] == 3
    assert data["averageOrderTime"] == 31.5


@pytest.mark.asyncio
async def test_send_to_reports_failure(make_connection, fixed_broadcaster):
    broken = make_connection(socket=BrokenSocket())
    ok = make_connection(socket=RecordingSocket())
    assert await fixed_broadcaster.send_to(broken, events.PONG, {"success": True}) is False
    assert await fixed_broadcaster.send_to(ok, events.PONG, {"success": True}) is True
    assert ok.socket.frames[0] == {
        "type": "pong",
        "payload": {"success": True, "timestamp": FIXED_TS},
    }
