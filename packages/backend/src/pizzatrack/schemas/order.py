"""Pydantic schemas for orders and sub-items.

Separate schemas for create/update/read keep the API clean. Everything on
the wire is camelCase (orderTime, subItems, includeSubItems) to match the
dashboard; Python code keeps snake_case and populate_by_name lets callers
send either.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from pizzatrack.db.models import Order, OrderStatus, SubItemType


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ─── Sub-items ───────────────────────────────────────────

class SubItemCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=255)
    amount: int = Field(..., ge=1)
    type: SubItemType = SubItemType.OTHER


class SubItemUpdate(CamelModel):
    """Partial update — only non-None fields are applied."""
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    amount: Optional[int] = Field(None, ge=1)
    type: Optional[SubItemType] = None


class SubItemRead(CamelModel):
    id: uuid.UUID
    order_id: uuid.UUID
    title: str
    amount: int
    type: SubItemType
    total_price: int
    created_at: datetime
    updated_at: datetime


# ─── Orders ──────────────────────────────────────────────

class OrderCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=255)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    sub_items: list[SubItemCreate] = Field(default_factory=list)


class OrderUpdate(CamelModel):
    """Partial update — only non-None fields are applied."""
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    status: Optional[OrderStatus] = None


class StatusChange(CamelModel):
    """Any status may follow any other; only the enum value is checked."""
    status: OrderStatus


class OrderRead(CamelModel):
    id: uuid.UUID
    title: str
    latitude: float
    longitude: float
    order_time: datetime
    status: OrderStatus
    created_at: datetime
    updated_at: datetime
    sub_items: Optional[list[SubItemRead]] = None


def order_to_read(order: Order, include_sub_items: bool = False) -> OrderRead:
    """Build an OrderRead without touching unloaded relationships.

    Async sessions cannot lazy-load, so sub_items is only read when the
    caller loaded it (selectinload or a fresh create).
    """
    data = OrderRead(
        id=order.id,
        title=order.title,
        latitude=order.latitude,
        longitude=order.longitude,
        order_time=order.order_time,
        status=order.status,
        created_at=order.created_at,
        updated_at=order.updated_at,
    )
    if include_sub_items:
        data.sub_items = [SubItemRead.model_validate(i) for i in order.sub_items]
    return data


# ─── Statistics ──────────────────────────────────────────

class OrderStatistics(CamelModel):
    total_orders: int
    active_orders: int
    delivered_orders: int
    average_order_time: float  # minutes from order to delivery
    by_status: dict[str, int]


# ─── Response envelopes ──────────────────────────────────

class Pagination(CamelModel):
    limit: int
    offset: int
    total: int
    has_more: bool


class Envelope(CamelModel):
    success: bool = True
    message: Optional[str] = None
    timestamp: datetime


class OrderEnvelope(Envelope):
    data: OrderRead


class SubItemEnvelope(Envelope):
    data: SubItemRead


class StatisticsEnvelope(Envelope):
    data: OrderStatistics


class OrderListEnvelope(Envelope):
    data: list[OrderRead]
    pagination: Pagination
    filters: dict[str, Any] = Field(default_factory=dict)
