"""Order service — business logic for orders and their sub-items.

Routes and the WebSocket handler call into this layer; it owns every
database write. Broadcasting is NOT done here: callers publish domain
events only after a method returns, i.e. after the commit succeeded.

Status changes are permissive: any status can be set to any
other (Delivered → Received is accepted for manual corrections). The only
lock is on sub-items: a Delivered order's items cannot be changed.
"""

import uuid
from typing import Optional

from sqlalchemy import asc, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from pizzatrack.db.models import Order, OrderStatus, SubItem, SubItemType, utcnow
from pizzatrack.schemas.order import OrderStatistics


class OrderNotFoundError(Exception):
    """Raised when an order (or one of its sub-items) does not exist."""


class OrderLockedError(Exception):
    """Raised when modifying the items of a delivered order."""


SORT_COLUMNS = {
    "orderTime": Order.order_time,
    "createdAt": Order.created_at,
    "updatedAt": Order.updated_at,
    "status": Order.status,
    "title": Order.title,
}


class OrderService:
    """CRUD and query operations over orders and sub-items."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Create ──────────────────────────────────────────

    async def create_order(
        self,
        title: str,
        latitude: float,
        longitude: float,
        sub_items: Optional[list[dict]] = None,
    ) -> Order:
        """Create a new order in 'Received' status with its sub-items."""
        order = Order(
            title=title,
            latitude=latitude,
            longitude=longitude,
            status=OrderStatus.RECEIVED,
            sub_items=[
                SubItem(
                    title=item["title"],
                    amount=item["amount"],
                    type=item.get("type", SubItemType.OTHER),
                )
                for item in sub_items or []
            ],
        )
        self.db.add(order)
        await self.db.commit()
        return order

    # ─── Read ────────────────────────────────────────────

    async def get_order(
        self, order_id: uuid.UUID, include_sub_items: bool = True
    ) -> Optional[Order]:
        query = select(Order).where(Order.id == order_id)
        if include_sub_items:
            query = query.options(selectinload(Order.sub_items))
        result = await self.db.execute(query)
        return result.scalars().first()

    async def _require_order(
        self, order_id: uuid.UUID, include_sub_items: bool = False
    ) -> Order:
        order = await self.get_order(order_id, include_sub_items=include_sub_items)
        if not order:
            raise OrderNotFoundError(f"Order {order_id} not found")
        return order

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        limit: int = 20,
        offset: int = 0,
        include_sub_items: bool = False,
        sort_by: str = "orderTime",
        sort_order: str = "desc",
    ) -> list[Order]:
        """List orders with optional status filter and sorting.

        Unknown sort_by values fall back to orderTime.
        """
        column = SORT_COLUMNS.get(sort_by, Order.order_time)
        direction = asc if sort_order == "asc" else desc

        query = (
            select(Order)
            .order_by(direction(column), Order.id)
            .limit(limit)
            .offset(offset)
        )
        if status:
            query = query.where(Order.status == status)
        if include_sub_items:
            query = query.options(selectinload(Order.sub_items))

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def count_orders(self, status: Optional[OrderStatus] = None) -> int:
        query = select(func.count()).select_from(Order)
        if status:
            query = query.where(Order.status == status)
        result = await self.db.execute(query)
        return result.scalar_one()

    async def list_by_status(
        self, status: OrderStatus, limit: int = 50, offset: int = 0
    ) -> list[Order]:
        return await self.list_orders(status=status, limit=limit, offset=offset)

    async def list_by_location(
        self,
        min_lat: float,
        max_lat: float,
        min_lng: float,
        max_lng: float,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Order]:
        """Orders inside a lat/lng bounding box, newest first."""
        result = await self.db.execute(
            select(Order)
            .where(
                Order.latitude.between(min_lat, max_lat),
                Order.longitude.between(min_lng, max_lng),
            )
            .order_by(Order.order_time.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def list_active(self, limit: int = 50, offset: int = 0) -> list[Order]:
        """Orders that are not yet delivered."""
        result = await self.db.execute(
            select(Order)
            .where(Order.status != OrderStatus.DELIVERED)
            .order_by(Order.order_time.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def get_statistics(self) -> OrderStatistics:
        """Order counts per status plus average minutes to delivery."""
        result = await self.db.execute(
            select(Order.status, func.count()).group_by(Order.status)
        )
        by_status = {s.value: 0 for s in OrderStatus}
        for status, count in result.all():
            by_status[OrderStatus(status).value] = count

        total = sum(by_status.values())
        delivered = by_status[OrderStatus.DELIVERED.value]

        # Delivery time = last update of a delivered order minus order_time.
        # Computed in Python so it works the same on every backend.
        delivered_rows = await self.db.execute(
            select(Order.order_time, Order.updated_at).where(
                Order.status == OrderStatus.DELIVERED
            )
        )
        durations = [
            (updated - ordered).total_seconds() / 60
            for ordered, updated in delivered_rows.all()
            if ordered and updated
        ]
        average = round(sum(durations) / len(durations), 2) if durations else 0.0

        return OrderStatistics(
            total_orders=total,
            active_orders=total - delivered,
            delivered_orders=delivered,
            average_order_time=average,
            by_status=by_status,
        )

    # ─── Update ──────────────────────────────────────────

    async def update_order(
        self,
        order_id: uuid.UUID,
        title: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        status: Optional[OrderStatus] = None,
    ) -> tuple[Order, OrderStatus]:
        """Update order fields. Returns (order, status before the update)."""
        order = await self._require_order(order_id)
        previous = order.status

        if title is not None:
            order.title = title
        if latitude is not None:
            order.latitude = latitude
        if longitude is not None:
            order.longitude = longitude
        if status is not None:
            order.status = status

        await self.db.commit()
        return order, previous

    async def update_status(
        self, order_id: uuid.UUID, status: OrderStatus
    ) -> tuple[Order, OrderStatus]:
        """Set the order status. Returns (order, previous status).

        No transition table: every status is reachable from every other.
        """
        order = await self._require_order(order_id)
        previous = order.status
        order.status = status
        await self.db.commit()
        return order, previous

    # ─── Delete ──────────────────────────────────────────

    async def delete_order(self, order_id: uuid.UUID) -> bool:
        """Delete an order and its sub-items. False if it didn't exist."""
        order = await self.get_order(order_id, include_sub_items=True)
        if not order:
            return False
        await self.db.delete(order)
        await self.db.commit()
        return True

    # ─── Sub-items ───────────────────────────────────────

    async def _lockable_order(self, order_id: uuid.UUID) -> Order:
        order = await self._require_order(order_id, include_sub_items=True)
        if not order.can_be_updated:
            raise OrderLockedError("Cannot modify items of a delivered order")
        return order

    async def add_sub_item(
        self,
        order_id: uuid.UUID,
        title: str,
        amount: int,
        type: SubItemType = SubItemType.OTHER,
    ) -> tuple[Order, SubItem]:
        order = await self._lockable_order(order_id)
        item = SubItem(title=title, amount=amount, type=type)
        order.sub_items.append(item)
        order.updated_at = utcnow()
        await self.db.commit()
        return order, item

    async def update_sub_item(
        self,
        order_id: uuid.UUID,
        item_id: uuid.UUID,
        title: Optional[str] = None,
        amount: Optional[int] = None,
        type: Optional[SubItemType] = None,
    ) -> tuple[Order, SubItem]:
        order = await self._lockable_order(order_id)
        item = next((i for i in order.sub_items if i.id == item_id), None)
        if not item:
            raise OrderNotFoundError(f"Item {item_id} not found on order {order_id}")

        if title is not None:
            item.title = title
        if amount is not None:
            item.amount = amount
        if type is not None:
            item.type = type

        order.updated_at = utcnow()
        await self.db.commit()
        return order, item

    async def delete_sub_item(
        self, order_id: uuid.UUID, item_id: uuid.UUID
    ) -> Order:
        order = await self._lockable_order(order_id)
        item = next((i for i in order.sub_items if i.id == item_id), None)
        if not item:
            raise OrderNotFoundError(f"Item {item_id} not found on order {order_id}")

        order.sub_items.remove(item)
        order.updated_at = utcnow()
        await self.db.commit()
        return order

    async def replace_sub_items(
        self, order_id: uuid.UUID, sub_items: list[dict]
    ) -> Order:
        """Replace every sub-item of an order in one write."""
        order = await self._lockable_order(order_id)
        # delete-orphan removes the previous items on flush
        order.sub_items = [
            SubItem(
                title=item["title"],
                amount=item["amount"],
                type=item.get("type", SubItemType.OTHER),
            )
            for item in sub_items
        ]
        order.updated_at = utcnow()
        await self.db.commit()
        return order
