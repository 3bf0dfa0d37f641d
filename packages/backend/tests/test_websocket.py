"""WebSocket endpoint tests — handshake, rooms, commands, cleanup.

Learn: Starlette's TestClient drives the socket synchronously. Each
websocket_connect() runs the app on its own event loop thread, so the
database here is a SQLite file: tables and fixtures are written with a
plain sync engine, and the handler opens aiosqlite sessions (NullPool)
on whatever loop it runs in.
"""

import uuid

import pytest
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool
from starlette.testclient import TestClient

from pizzatrack.config import settings
from pizzatrack.db.engine import get_session_factory
from pizzatrack.db.models import Base, Order, OrderStatus, SubItem, SubItemType
from pizzatrack.main import app
from pizzatrack.realtime import events
from pizzatrack.realtime.rooms import Room


@pytest.fixture
def sync_engine(tmp_path):
    path = tmp_path / "ws.db"
    engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def ws_client(registry, sync_engine):
    async_engine = create_async_engine(
        sync_engine.url.set(drivername="sqlite+aiosqlite"), poolclass=NullPool
    )
    factory = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)
    app.dependency_overrides[get_session_factory] = lambda: factory
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def stored_order(sync_engine) -> uuid.UUID:
    with Session(sync_engine) as session:
        order = Order(
            title="Game Night",
            latitude=40.6892,
            longitude=-73.9442,
            status=OrderStatus.RECEIVED,
            sub_items=[SubItem(title="Pepperoni", amount=1, type=SubItemType.PIZZA)],
        )
        session.add(order)
        session.commit()
        return order.id


def connect(client, token=None):
    url = f"/ws?token={token}" if token else "/ws"
    return client.websocket_connect(url)


# ═══════════════════════════════════════════════════════════
# Handshake
# ═══════════════════════════════════════════════════════════


def test_guest_connect(ws_client, registry):
    with connect(ws_client) as ws:
        hello = ws.receive_json()
        assert hello["type"] == events.CONNECTED
        payload = hello["payload"]
        assert payload["role"] == "guest"
        assert payload["rooms"] == ["global", "order-updates"]
        assert "timestamp" in payload
        assert registry.get(payload["connectionId"]) is not None


def test_admin_connect_joins_admin_room(ws_client, registry):
    with connect(ws_client, settings.ws_admin_token) as ws:
        payload = ws.receive_json()["payload"]
        assert payload["role"] == "admin"
        assert "admin-updates" in payload["rooms"]
        assert len(registry.members_of(Room.admin())) == 1


def test_bad_token_still_connects_as_guest(ws_client):
    with connect(ws_client, "forged") as ws:
        assert ws.receive_json()["payload"]["role"] == "guest"


def test_bearer_header_token(ws_client):
    headers = {"Authorization": f"Bearer {settings.ws_user_token}"}
    with ws_client.websocket_connect("/ws", headers=headers) as ws:
        assert ws.receive_json()["payload"]["role"] == "user"


def test_disconnect_cleans_registry(ws_client, registry):
    with connect(ws_client, settings.ws_admin_token) as ws:
        ws.receive_json()
        ws.send_json({"type": "join-status-room", "payload": "Ready"})
        ws.receive_json()
        assert registry.connection_count() == 1

    assert registry.connection_count() == 0
    assert all(count == 0 for count in registry.room_statistics().values())


# ═══════════════════════════════════════════════════════════
# Rooms
# ═══════════════════════════════════════════════════════════


def test_join_and_leave_status_room(ws_client, registry):
    with connect(ws_client) as ws:
        ws.receive_json()

        ws.send_json({"type": "join-status-room", "payload": "En-Route"})
        ack = ws.receive_json()
        assert ack["type"] == events.ROOM_JOINED
        assert ack["payload"]["room"] == "status-En-Route"
        assert len(registry.members_of(Room.for_status(OrderStatus.EN_ROUTE))) == 1

        ws.send_json({"type": "leave-status-room", "payload": "En-Route"})
        assert ws.receive_json()["type"] == events.ROOM_LEFT
        assert registry.members_of(Room.for_status(OrderStatus.EN_ROUTE)) == set()


def test_join_unknown_status_is_ignored(ws_client, registry):
    with connect(ws_client) as ws:
        ws.receive_json()
        ws.send_json({"type": "join-status-room", "payload": "Burnt"})
        # No ack for the bad join; the next reply is the pong
        ws.send_json({"type": "ping"})
        assert ws.receive_json()["type"] == events.PONG
        assert sum(registry.room_statistics().values()) == 2


# ═══════════════════════════════════════════════════════════
# Malformed frames
# ═══════════════════════════════════════════════════════════


def test_non_json_frame(ws_client):
    with connect(ws_client) as ws:
        ws.receive_json()
        ws.send_text("not json")
        reply = ws.receive_json()
        assert reply["type"] == events.ERROR
        assert reply["payload"]["success"] is False


def test_binary_frame_is_answered_not_fatal(ws_client, registry):
    with connect(ws_client) as ws:
        ws.receive_json()
        ws.send_bytes(b"\x00\x01")
        reply = ws.receive_json()
        assert reply["type"] == events.ERROR
        assert reply["payload"]["error"] == "Frames must be JSON text"

        ws.send_json({"type": "ping"})
        assert ws.receive_json()["type"] == events.PONG
        assert registry.connection_count() == 1


def test_unknown_event(ws_client):
    with connect(ws_client) as ws:
        ws.receive_json()
        ws.send_json({"type": "order:explode"})
        reply = ws.receive_json()
        assert reply["type"] == events.ERROR
        assert "order:explode" in reply["payload"]["error"]


# ═══════════════════════════════════════════════════════════
# Order commands
# ═══════════════════════════════════════════════════════════


def test_get_orders(ws_client, stored_order):
    with connect(ws_client) as ws:
        ws.receive_json()
        ws.send_json({"type": "get-orders", "payload": {"status": "Received"}})
        reply = ws.receive_json()
        assert reply["type"] == events.ORDERS_DATA
        assert [o["id"] for o in reply["payload"]["data"]] == [str(stored_order)]


def test_get_orders_include_sub_items_needs_real_boolean(ws_client, stored_order):
    with connect(ws_client) as ws:
        ws.receive_json()
        ws.send_json({"type": "get-orders", "payload": {"includeSubItems": "false"}})
        assert "subItems" not in ws.receive_json()["payload"]["data"][0]

        ws.send_json({"type": "get-orders", "payload": {"includeSubItems": True}})
        order = ws.receive_json()["payload"]["data"][0]
        assert order["subItems"][0]["title"] == "Pepperoni"


def test_get_orders_bad_status(ws_client):
    with connect(ws_client) as ws:
        ws.receive_json()
        ws.send_json({"type": "get-orders", "payload": {"status": "Burnt"}})
        assert ws.receive_json()["type"] == events.ORDERS_ERROR


def test_get_order(ws_client, stored_order):
    with connect(ws_client) as ws:
        ws.receive_json()
        ws.send_json({"type": "get-order", "payload": {"id": str(stored_order)}})
        reply = ws.receive_json()
        assert reply["type"] == events.ORDER_DATA
        assert reply["payload"]["data"]["subItems"][0]["title"] == "Pepperoni"

        ws.send_json({"type": "get-order", "payload": {"id": str(uuid.uuid4())}})
        reply = ws.receive_json()
        assert reply["type"] == events.ORDER_ERROR
        assert reply["payload"]["error"] == "Order not found"


def test_guest_can_update_status(ws_client, registry, make_connection, stored_order):
    watcher = make_connection()

    with connect(ws_client) as guest:
        assert guest.receive_json()["payload"]["role"] == "guest"
        guest.send_json({
            "type": "update-order-status",
            "payload": {"id": str(stored_order), "status": "Preparing"},
        })
        reply = guest.receive_json()
        assert reply["type"] == events.STATUS_UPDATE_SUCCESS
        assert reply["payload"]["data"]["status"] == "Preparing"
        assert guest.receive_json()["type"] == events.ORDER_STATUS_CHANGED
        guest.send_json({"type": "ping"})
        assert guest.receive_json()["type"] == events.PONG

    assert watcher.socket.types() == [events.ORDER_STATUS_CHANGED]


def test_user_status_update_reaches_watchers(ws_client, registry, make_connection, stored_order):
    # Each TestClient socket has its own loop, so the watcher is a
    # recording connection living directly in the registry.
    watcher = make_connection()
    registry.join(watcher, Room.for_status(OrderStatus.PREPARING))
    leaver = make_connection()
    registry.join(leaver, Room.for_status(OrderStatus.RECEIVED))

    with connect(ws_client, settings.ws_user_token) as user:
        user.receive_json()
        user.send_json({
            "type": "update-order-status",
            "payload": {"id": str(stored_order), "status": "Preparing"},
        })
        reply = user.receive_json()
        assert reply["type"] == events.STATUS_UPDATE_SUCCESS
        assert reply["payload"]["data"]["status"] == "Preparing"
        assert user.receive_json()["type"] == events.ORDER_STATUS_CHANGED
        # Commands are served in order, so the pong means the fan-out finished
        user.send_json({"type": "ping"})
        assert user.receive_json()["type"] == events.PONG

    assert watcher.socket.types() == [events.ORDER_STATUS_CHANGED, events.ORDER_JOINED_STATUS]
    assert leaver.socket.types() == [events.ORDER_STATUS_CHANGED, events.ORDER_LEFT_STATUS]
    changed = watcher.socket.frames[0]["payload"]
    assert changed["oldStatus"] == "Received"
    assert changed["data"]["id"] == str(stored_order)


def test_update_unknown_order(ws_client):
    with connect(ws_client, settings.ws_user_token) as ws:
        ws.receive_json()
        ws.send_json({
            "type": "update-order-status",
            "payload": {"id": str(uuid.uuid4()), "status": "Ready"},
        })
        assert ws.receive_json()["type"] == events.STATUS_UPDATE_ERROR


# ═══════════════════════════════════════════════════════════
# Admin commands
# ═══════════════════════════════════════════════════════════


def test_statistics_admin_only(ws_client, stored_order):
    with connect(ws_client) as guest:
        guest.receive_json()
        guest.send_json({"type": "get-statistics"})
        assert guest.receive_json()["type"] == events.STATISTICS_ERROR

    with connect(ws_client, settings.ws_admin_token) as admin:
        admin.receive_json()
        admin.send_json({"type": "get-statistics"})
        reply = admin.receive_json()
        assert reply["type"] == events.STATISTICS_DATA
        assert reply["payload"]["data"]["totalOrders"] == 1


def test_admin_broadcast_message(ws_client):
    with connect(ws_client, settings.ws_admin_token) as admin:
        admin.receive_json()
        admin.send_json({
            "type": "broadcast-message",
            "payload": {"message": "Closing in 10 minutes", "type": "warning"},
        })
        frame = admin.receive_json()
        assert frame["type"] == events.ADMIN_MESSAGE
        assert frame["payload"]["message"] == "Closing in 10 minutes"
        assert frame["payload"]["type"] == "warning"


def test_guest_broadcast_refused(ws_client):
    with connect(ws_client) as ws:
        ws.receive_json()
        ws.send_json({"type": "broadcast-message", "payload": {"message": "hi"}})
        reply = ws.receive_json()
        assert reply["type"] == events.ERROR
        assert reply["payload"]["error"] == "Admin role required"
