"""Real-time diagnostics.

Read-only view of the room registry: how many sockets are open and how
many sit in each room. Useful when a dashboard says it isn't getting
updates.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from pizzatrack.api.deps import get_registry
from pizzatrack.realtime.rooms import RoomRegistry

router = APIRouter()


@router.get("/realtime/stats")
async def realtime_stats(registry: RoomRegistry = Depends(get_registry)):
    return {
        "success": True,
        "data": {
            "totalConnections": registry.connection_count(),
            "rooms": registry.room_statistics(),
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
