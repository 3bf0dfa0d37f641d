"""Shared route dependencies."""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from pizzatrack.db.engine import get_db
from pizzatrack.realtime.broadcaster import EventBroadcaster
from pizzatrack.realtime.rooms import RoomRegistry
from pizzatrack.services.order_service import OrderService


def get_order_service(db: AsyncSession = Depends(get_db)) -> OrderService:
    return OrderService(db)


def get_broadcaster(request: Request) -> EventBroadcaster:
    """The app's broadcaster, built once in create_app()."""
    return request.app.state.broadcaster


def get_registry(request: Request) -> RoomRegistry:
    return request.app.state.registry
