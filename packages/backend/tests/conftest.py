"""Test fixtures — an in-memory database and a fresh realtime stack per test.

Learn: Testing pattern for async SQLAlchemy + FastAPI without a server:

1. Each test gets its own in-memory SQLite engine (aiosqlite). StaticPool
   keeps a single connection open, so every session sees the same data.
2. The app's get_db dependency is overridden to open sessions on that
   engine; get_session_factory is overridden for the WebSocket handler.
3. app.state.registry / app.state.broadcaster are swapped for fresh ones,
   so connections registered by one test never leak into the next.

Recording sockets stand in for real WebSockets: anything with an async
send_json() can sit inside a Connection.
"""

import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from pizzatrack.db.engine import get_db, get_session_factory
from pizzatrack.db.models import Base
from pizzatrack.main import app
from pizzatrack.realtime.broadcaster import EventBroadcaster
from pizzatrack.realtime.gatekeeper import GUEST
from pizzatrack.realtime.rooms import Connection, RoomRegistry

TEST_DB_URL = "sqlite+aiosqlite://"


class RecordingSocket:
    """Collects every frame written to it."""

    def __init__(self):
        self.frames: list[dict] = []

    async def send_json(self, message: dict) -> None:
        self.frames.append(message)

    def types(self) -> list[str]:
        return [f["type"] for f in self.frames]

    def of_type(self, name: str) -> list[dict]:
        return [f for f in self.frames if f["type"] == name]


class BrokenSocket:
    """A peer that went away without a close frame."""

    async def send_json(self, message: dict) -> None:
        raise ConnectionResetError("peer gone")


@pytest_asyncio.fixture()
async def db_engine():
    engine = create_async_engine(
        TEST_DB_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture()
def registry():
    """A fresh registry + broadcaster installed on the app for this test."""
    previous = (app.state.registry, app.state.broadcaster)
    fresh = RoomRegistry()
    app.state.registry = fresh
    app.state.broadcaster = EventBroadcaster(fresh)
    yield fresh
    app.state.registry, app.state.broadcaster = previous


@pytest.fixture()
def broadcaster(registry):
    return app.state.broadcaster


@pytest.fixture()
def make_connection(registry):
    """Build and register a Connection backed by a RecordingSocket."""

    def _make(identity=GUEST, socket=None, register=True) -> Connection:
        conn = Connection(
            id=uuid.uuid4().hex,
            identity=identity,
            socket=socket if socket is not None else RecordingSocket(),
        )
        if register:
            registry.register(conn)
        return conn

    return _make


@pytest_asyncio.fixture()
async def client(session_factory, registry):
    """HTTP client with the app's database dependencies overridden.

    Learn: ASGITransport does not run the lifespan, so Redis is never
    initialized and rate limiting stays off. Background tasks finish
    before the response is handed back, so broadcasts are already
    delivered when a test inspects its recording sockets.
    """

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
