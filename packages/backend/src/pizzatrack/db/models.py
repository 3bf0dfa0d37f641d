"""SQLAlchemy ORM models — single source of truth for the database schema.

Two tables: orders and sub_items. Status and item type are stored as
database enums whose values are the human-facing strings ("En-Route",
"pizza"), not the Python member names.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


class OrderStatus(str, enum.Enum):
    RECEIVED = "Received"
    PREPARING = "Preparing"
    READY = "Ready"
    EN_ROUTE = "En-Route"
    DELIVERED = "Delivered"


class SubItemType(str, enum.Enum):
    PIZZA = "pizza"
    DRINK = "drink"
    SALAD = "salad"
    DESSERT = "dessert"
    APPETIZER = "appetizer"
    OTHER = "other"


# Unit prices in cents.
SUB_ITEM_PRICES: dict[SubItemType, int] = {
    SubItemType.PIZZA: 1500,
    SubItemType.DRINK: 300,
    SubItemType.SALAD: 800,
    SubItemType.DESSERT: 600,
    SubItemType.APPETIZER: 700,
    SubItemType.OTHER: 500,
}


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Order(Base):
    """A customer order. Status moves Received → ... → Delivered.

    Any status may be set to any other; there is no transition table.
    Delivered orders only lock their sub-items.
    """

    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_status", "status"),
        Index("ix_orders_order_time", "order_time"),
        Index("ix_orders_location", "latitude", "longitude"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=new_uuid
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    latitude: Mapped[float] = mapped_column(
        Numeric(10, 8, asdecimal=False), nullable=False
    )
    longitude: Mapped[float] = mapped_column(
        Numeric(11, 8, asdecimal=False), nullable=False
    )
    order_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus, name="order_status", values_callable=_enum_values),
        nullable=False,
        default=OrderStatus.RECEIVED,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    sub_items: Mapped[list["SubItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="SubItem.created_at",
    )

    @property
    def is_active(self) -> bool:
        return self.status != OrderStatus.DELIVERED

    @property
    def can_be_updated(self) -> bool:
        return self.status != OrderStatus.DELIVERED


class SubItem(Base):
    """A line item on an order (a pizza, a drink, ...)."""

    __tablename__ = "sub_items"
    __table_args__ = (
        Index("ix_sub_items_order_id", "order_id"),
        Index("ix_sub_items_type", "type"),
        CheckConstraint("amount >= 1", name="ck_sub_items_amount_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=new_uuid
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[SubItemType] = mapped_column(
        Enum(SubItemType, name="sub_item_type", values_callable=_enum_values),
        nullable=False,
        default=SubItemType.OTHER,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    order: Mapped["Order"] = relationship(back_populates="sub_items")

    @property
    def total_price(self) -> int:
        """Line total in cents."""
        return SUB_ITEM_PRICES.get(self.type, 500) * self.amount
