"""orders and sub_items

Creates the order_status and sub_item_type enums and both tables.
Deleting an order cascades to its sub-items at the database level.

Revision ID: 3f1c2a9d7b10
Revises:
Create Date: 2026-10-12 09:14:02.418311
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c2a9d7b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ORDER_STATUS = sa.Enum(
    "Received", "Preparing", "Ready", "En-Route", "Delivered",
    name="order_status",
)
SUB_ITEM_TYPE = sa.Enum(
    "pizza", "drink", "salad", "dessert", "appetizer", "other",
    name="sub_item_type",
)


def upgrade() -> None:
    op.create_table(
        "orders",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("latitude", sa.Numeric(10, 8), nullable=False),
        sa.Column("longitude", sa.Numeric(11, 8), nullable=False),
        sa.Column(
            "order_time", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        sa.Column(
            "status", ORDER_STATUS,
            server_default="Received", nullable=False,
        ),
        sa.Column(
            "created_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
    )
    op.create_index("ix_orders_status", "orders", ["status"])
    op.create_index("ix_orders_order_time", "orders", ["order_time"])
    op.create_index("ix_orders_location", "orders", ["latitude", "longitude"])

    op.create_table(
        "sub_items",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "order_id", sa.Uuid(),
            sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column(
            "type", SUB_ITEM_TYPE,
            server_default="other", nullable=False,
        ),
        sa.Column(
            "created_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        sa.CheckConstraint("amount >= 1", name="ck_sub_items_amount_positive"),
    )
    op.create_index("ix_sub_items_order_id", "sub_items", ["order_id"])
    op.create_index("ix_sub_items_type", "sub_items", ["type"])


def downgrade() -> None:
    op.drop_index("ix_sub_items_type", table_name="sub_items")
    op.drop_index("ix_sub_items_order_id", table_name="sub_items")
    op.drop_table("sub_items")
    op.drop_index("ix_orders_location", table_name="orders")
    op.drop_index("ix_orders_order_time", table_name="orders")
    op.drop_index("ix_orders_status", table_name="orders")
    op.drop_table("orders")
    ORDER_STATUS.drop(op.get_bind(), checkfirst=True)
    SUB_ITEM_TYPE.drop(op.get_bind(), checkfirst=True)
