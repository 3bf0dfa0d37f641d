"""Order API routes.

Learn: Routes translate HTTP to OrderService calls and map service
exceptions to status codes. Every successful write schedules the matching
DomainEvent as a background task: it runs after the commit, and the
response never waits on (or fails because of) socket delivery.

Key patterns:
- POST for creation, PUT for full/field updates, PATCH for item edits
- camelCase query params (includeSubItems, sortBy) to match the dashboard
- Envelope responses: {success, data, message?, timestamp}
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query

from pizzatrack.api.deps import get_broadcaster, get_order_service
from pizzatrack.config import settings
from pizzatrack.db.models import OrderStatus
from pizzatrack.realtime.broadcaster import EventBroadcaster
from pizzatrack.realtime.events import (
    OrderCreated,
    OrderDeleted,
    OrderStatusChanged,
    OrderUpdated,
)
from pizzatrack.realtime.rooms import Room
from pizzatrack.schemas.order import (
    Envelope,
    OrderCreate,
    OrderEnvelope,
    OrderListEnvelope,
    OrderUpdate,
    Pagination,
    StatisticsEnvelope,
    StatusChange,
    SubItemCreate,
    SubItemEnvelope,
    SubItemRead,
    SubItemUpdate,
    order_to_read,
)
from pizzatrack.services.order_service import (
    OrderLockedError,
    OrderNotFoundError,
    OrderService,
)

logger = structlog.get_logger()
router = APIRouter()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_status(value: Optional[str]) -> Optional[OrderStatus]:
    if value is None:
        return None
    try:
        return OrderStatus(value)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid order status")


def _page(limit: Optional[int], offset: Optional[int]) -> tuple[int, int]:
    limit = settings.default_page_size if limit is None else limit
    return max(1, min(limit, settings.max_page_size)), max(offset or 0, 0)


async def _schedule_statistics(
    svc: OrderService,
    broadcaster: EventBroadcaster,
    background: BackgroundTasks,
) -> None:
    """Queue a statistics push if any admin is listening."""
    if broadcaster.has_audience(Room.admin()):
        statistics = await svc.get_statistics()
        background.add_task(broadcaster.publish_statistics, statistics)


# ═══════════════════════════════════════════════════════════
# Queries
# ═══════════════════════════════════════════════════════════


@router.get("/orders", response_model=OrderListEnvelope)
async def list_orders(
    status: Optional[str] = Query(None, description="Filter by status"),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    include_sub_items: bool = Query(True, alias="includeSubItems"),
    sort_by: str = Query("orderTime", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder", pattern=r"^(asc|desc)$"),
    svc: OrderService = Depends(get_order_service),
):
    """List orders with filtering, sorting and pagination."""
    parsed_status = _parse_status(status)
    limit, offset = _page(limit, offset)

    orders = await svc.list_orders(
        status=parsed_status,
        limit=limit,
        offset=offset,
        include_sub_items=include_sub_items,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    total = await svc.count_orders(status=parsed_status)

    return OrderListEnvelope(
        data=[order_to_read(o, include_sub_items) for o in orders],
        pagination=Pagination(
            limit=limit,
            offset=offset,
            total=total,
            has_more=offset + limit < total,
        ),
        filters={"status": status, "sortBy": sort_by, "sortOrder": sort_order},
        timestamp=_now(),
    )


@router.get("/orders/statistics", response_model=StatisticsEnvelope)
async def order_statistics(svc: OrderService = Depends(get_order_service)):
    return StatisticsEnvelope(data=await svc.get_statistics(), timestamp=_now())


@router.get("/orders/active", response_model=OrderListEnvelope)
async def list_active_orders(
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    svc: OrderService = Depends(get_order_service),
):
    """Orders that are not delivered yet."""
    limit, offset = _page(limit, offset)
    orders = await svc.list_active(limit=limit, offset=offset)
    return OrderListEnvelope(
        data=[order_to_read(o) for o in orders],
        pagination=Pagination(
            limit=limit, offset=offset, total=len(orders), has_more=len(orders) == limit
        ),
        filters={"active": True},
        timestamp=_now(),
    )


@router.get("/orders/location", response_model=OrderListEnvelope)
async def list_orders_by_location(
    min_lat: float = Query(..., alias="minLat", ge=-90, le=90),
    max_lat: float = Query(..., alias="maxLat", ge=-90, le=90),
    min_lng: float = Query(..., alias="minLng", ge=-180, le=180),
    max_lng: float = Query(..., alias="maxLng", ge=-180, le=180),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    svc: OrderService = Depends(get_order_service),
):
    """Orders inside a bounding box (for the map view)."""
    limit, offset = _page(limit, offset)
    orders = await svc.list_by_location(
        min_lat, max_lat, min_lng, max_lng, limit=limit, offset=offset
    )
    return OrderListEnvelope(
        data=[order_to_read(o) for o in orders],
        pagination=Pagination(
            limit=limit, offset=offset, total=len(orders), has_more=len(orders) == limit
        ),
        filters={"minLat": min_lat, "maxLat": max_lat, "minLng": min_lng, "maxLng": max_lng},
        timestamp=_now(),
    )


@router.get("/orders/status/{status}", response_model=OrderListEnvelope)
async def list_orders_by_status(
    status: str,
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    svc: OrderService = Depends(get_order_service),
):
    parsed_status = _parse_status(status)
    limit, offset = _page(limit, offset)
    orders = await svc.list_by_status(parsed_status, limit=limit, offset=offset)
    total = await svc.count_orders(status=parsed_status)
    return OrderListEnvelope(
        data=[order_to_read(o) for o in orders],
        pagination=Pagination(
            limit=limit, offset=offset, total=total, has_more=offset + limit < total
        ),
        filters={"status": status},
        timestamp=_now(),
    )


@router.get("/orders/{order_id}", response_model=OrderEnvelope)
async def get_order(
    order_id: uuid.UUID,
    include_sub_items: bool = Query(True, alias="includeSubItems"),
    svc: OrderService = Depends(get_order_service),
):
    order = await svc.get_order(order_id, include_sub_items=include_sub_items)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return OrderEnvelope(data=order_to_read(order, include_sub_items), timestamp=_now())


# ═══════════════════════════════════════════════════════════
# Mutations — each one publishes a DomainEvent after commit
# ═══════════════════════════════════════════════════════════


@router.post("/orders", response_model=OrderEnvelope, status_code=201)
async def create_order(
    body: OrderCreate,
    background: BackgroundTasks,
    svc: OrderService = Depends(get_order_service),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
):
    """Create a new order in 'Received' status."""
    order = await svc.create_order(
        title=body.title,
        latitude=body.latitude,
        longitude=body.longitude,
        sub_items=[item.model_dump() for item in body.sub_items],
    )
    data = order_to_read(order, include_sub_items=True)
    logger.info("orders.created", order_id=str(order.id), items=len(body.sub_items))

    background.add_task(broadcaster.publish, OrderCreated(order=data))
    await _schedule_statistics(svc, broadcaster, background)

    return OrderEnvelope(data=data, message="Order created successfully", timestamp=_now())


@router.put("/orders/{order_id}", response_model=OrderEnvelope)
async def update_order(
    order_id: uuid.UUID,
    body: OrderUpdate,
    background: BackgroundTasks,
    svc: OrderService = Depends(get_order_service),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
):
    """Update title/location, and optionally status, of an order."""
    try:
        order, previous = await svc.update_order(
            order_id,
            title=body.title,
            latitude=body.latitude,
            longitude=body.longitude,
            status=body.status,
        )
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")

    data = order_to_read(order)
    logger.info("orders.updated", order_id=str(order_id))

    background.add_task(broadcaster.publish, OrderUpdated(order=data))
    if body.status is not None and body.status != previous:
        background.add_task(
            broadcaster.publish, OrderStatusChanged(order=data, old_status=previous)
        )
    await _schedule_statistics(svc, broadcaster, background)

    return OrderEnvelope(data=data, message="Order updated successfully", timestamp=_now())


@router.put("/orders/{order_id}/status", response_model=OrderEnvelope)
async def update_order_status(
    order_id: uuid.UUID,
    body: StatusChange,
    background: BackgroundTasks,
    svc: OrderService = Depends(get_order_service),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
):
    """Set the order status. Any status may follow any other."""
    try:
        order, previous = await svc.update_status(order_id, body.status)
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")

    data = order_to_read(order)
    logger.info(
        "orders.status_changed",
        order_id=str(order_id),
        old_status=previous.value,
        new_status=body.status.value,
    )

    background.add_task(
        broadcaster.publish, OrderStatusChanged(order=data, old_status=previous)
    )
    await _schedule_statistics(svc, broadcaster, background)

    return OrderEnvelope(
        data=data, message="Order status updated successfully", timestamp=_now()
    )


@router.delete("/orders/{order_id}", response_model=Envelope)
async def delete_order(
    order_id: uuid.UUID,
    background: BackgroundTasks,
    svc: OrderService = Depends(get_order_service),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
):
    if not await svc.delete_order(order_id):
        raise HTTPException(status_code=404, detail="Order not found")

    logger.info("orders.deleted", order_id=str(order_id))
    background.add_task(broadcaster.publish, OrderDeleted(order_id=order_id))
    await _schedule_statistics(svc, broadcaster, background)

    return Envelope(message="Order deleted successfully", timestamp=_now())


# ═══════════════════════════════════════════════════════════
# Sub-items — locked once the order is Delivered
# ═══════════════════════════════════════════════════════════


@router.post("/orders/{order_id}/items", response_model=SubItemEnvelope, status_code=201)
async def add_sub_item(
    order_id: uuid.UUID,
    body: SubItemCreate,
    background: BackgroundTasks,
    svc: OrderService = Depends(get_order_service),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
):
    try:
        order, item = await svc.add_sub_item(
            order_id, title=body.title, amount=body.amount, type=body.type
        )
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")
    except OrderLockedError as e:
        raise HTTPException(status_code=409, detail=str(e))

    background.add_task(
        broadcaster.publish, OrderUpdated(order=order_to_read(order, include_sub_items=True))
    )
    return SubItemEnvelope(
        data=SubItemRead.model_validate(item), message="Item added", timestamp=_now()
    )


@router.put("/orders/{order_id}/items", response_model=OrderEnvelope)
async def replace_sub_items(
    order_id: uuid.UUID,
    body: list[SubItemCreate],
    background: BackgroundTasks,
    svc: OrderService = Depends(get_order_service),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
):
    """Replace every item on the order."""
    try:
        order = await svc.replace_sub_items(order_id, [i.model_dump() for i in body])
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")
    except OrderLockedError as e:
        raise HTTPException(status_code=409, detail=str(e))

    data = order_to_read(order, include_sub_items=True)
    background.add_task(broadcaster.publish, OrderUpdated(order=data))
    return OrderEnvelope(data=data, message="Items replaced", timestamp=_now())


@router.patch("/orders/{order_id}/items/{item_id}", response_model=SubItemEnvelope)
async def update_sub_item(
    order_id: uuid.UUID,
    item_id: uuid.UUID,
    body: SubItemUpdate,
    background: BackgroundTasks,
    svc: OrderService = Depends(get_order_service),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
):
    try:
        order, item = await svc.update_sub_item(
            order_id, item_id, title=body.title, amount=body.amount, type=body.type
        )
    except OrderNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except OrderLockedError as e:
        raise HTTPException(status_code=409, detail=str(e))

    background.add_task(
        broadcaster.publish, OrderUpdated(order=order_to_read(order, include_sub_items=True))
    )
    return SubItemEnvelope(
        data=SubItemRead.model_validate(item), message="Item updated", timestamp=_now()
    )


@router.delete("/orders/{order_id}/items/{item_id}", response_model=OrderEnvelope)
async def delete_sub_item(
    order_id: uuid.UUID,
    item_id: uuid.UUID,
    background: BackgroundTasks,
    svc: OrderService = Depends(get_order_service),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
):
    try:
        order = await svc.delete_sub_item(order_id, item_id)
    except OrderNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except OrderLockedError as e:
        raise HTTPException(status_code=409, detail=str(e))

    data = order_to_read(order, include_sub_items=True)
    background.add_task(broadcaster.publish, OrderUpdated(order=data))
    return OrderEnvelope(data=data, message="Item removed", timestamp=_now())
