"""API route aggregation.

All routers registered here get mounted in main.py under /api/v1.
There is no HTTP auth; the only roles in the system belong to
WebSocket connections (see realtime.gatekeeper).
"""

from fastapi import APIRouter

from pizzatrack.api.health import router as health_router
from pizzatrack.api.orders import router as orders_router
from pizzatrack.api.realtime import router as realtime_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(orders_router, tags=["orders"])
api_router.include_router(realtime_router, tags=["realtime"])
