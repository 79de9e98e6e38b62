"""inventory_ledger_initial

Revision ID: 3f1c2a9d7b10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3f1c2a9d7b10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=nullable)


def upgrade() -> None:
    # 主档：履约中心 / 仓库 / 商品
    op.create_table(
        "fulfillment_centers",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("city", sa.String(120), nullable=True),
        _ts("created_at"),
        sa.PrimaryKeyConstraint("id", name="pk_fulfillment_centers"),
        sa.UniqueConstraint("code", name="uq_fulfillment_centers_code"),
    )

    op.create_table(
        "warehouses",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("fulfillment_center_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("location", sa.String(120), nullable=True),
        _ts("created_at"),
        sa.PrimaryKeyConstraint("id", name="pk_warehouses"),
        sa.ForeignKeyConstraint(
            ["fulfillment_center_id"],
            ["fulfillment_centers.id"],
            name="fk_warehouses_fulfillment_center_id_fulfillment_centers",
            ondelete="RESTRICT",
        ),
    )
    op.create_index("ix_warehouses_fulfillment_center_id", "warehouses", ["fulfillment_center_id"])

    op.create_table(
        "products",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("sku", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("unit_cost", sa.Numeric(12, 2), nullable=False),
        sa.Column("reorder_point", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("stock_level", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_products"),
        sa.UniqueConstraint("sku", name="uq_products_sku"),
    )

    # 台账：只增不改
    op.create_table(
        "inventory_transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.String(36), nullable=False),
        sa.Column("warehouse_id", sa.String(36), nullable=False),
        sa.Column("reference_id", sa.String(255), nullable=True),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("user_id", sa.String(64), nullable=True),
        _ts("created_at"),
        sa.PrimaryKeyConstraint("id", name="pk_inventory_transactions"),
        sa.ForeignKeyConstraint(
            ["product_id"], ["products.id"],
            name="fk_inventory_transactions_product_id_products", ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["warehouse_id"], ["warehouses.id"],
            name="fk_inventory_transactions_warehouse_id_warehouses", ondelete="RESTRICT",
        ),
        sa.CheckConstraint("quantity <> 0", name="ck_inventory_transactions_quantity_nonzero"),
        sa.CheckConstraint(
            "type IN ('purchase_in','order_out','adjustment','transfer_out','transfer_in','return_restock')",
            name="ck_inventory_transactions_type_known",
        ),
    )
    op.create_index("ix_inv_tx_product_warehouse", "inventory_transactions", ["product_id", "warehouse_id"])
    op.create_index("ix_inv_tx_warehouse_id", "inventory_transactions", ["warehouse_id"])
    op.create_index("ix_inv_tx_reference_id", "inventory_transactions", ["reference_id"])

    # 余额投影
    op.create_table(
        "stock_levels",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("product_id", sa.String(36), nullable=False),
        sa.Column("warehouse_id", sa.String(36), nullable=False),
        sa.Column("current_quantity", sa.Integer(), nullable=False),
        sa.Column("reserved_quantity", sa.Integer(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        _ts("updated_at"),
        sa.PrimaryKeyConstraint("id", name="pk_stock_levels"),
        sa.ForeignKeyConstraint(
            ["product_id"], ["products.id"],
            name="fk_stock_levels_product_id_products", ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["warehouse_id"], ["warehouses.id"],
            name="fk_stock_levels_warehouse_id_warehouses", ondelete="RESTRICT",
        ),
        sa.UniqueConstraint("product_id", "warehouse_id", name="uq_stock_levels_product_warehouse"),
        sa.CheckConstraint("current_quantity >= 0", name="ck_stock_levels_current_non_negative"),
        sa.CheckConstraint("reserved_quantity >= 0", name="ck_stock_levels_reserved_non_negative"),
    )
    op.create_index("ix_stock_levels_warehouse_id", "stock_levels", ["warehouse_id"])

    # 订单预占
    op.create_table(
        "order_reservations",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("order_id", sa.String(64), nullable=False),
        sa.Column("warehouse_id", sa.String(36), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        _ts("created_at"),
        _ts("updated_at"),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_order_reservations"),
        sa.ForeignKeyConstraint(
            ["warehouse_id"], ["warehouses.id"],
            name="fk_order_reservations_warehouse_id_warehouses", ondelete="RESTRICT",
        ),
        sa.UniqueConstraint("order_id", name="uq_order_reservations_order_id"),
    )
    op.create_index("ix_order_reservations_warehouse_id", "order_reservations", ["warehouse_id"])

    op.create_table(
        "order_reservation_lines",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("reservation_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.String(36), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_order_reservation_lines"),
        sa.ForeignKeyConstraint(
            ["reservation_id"], ["order_reservations.id"],
            name="fk_order_reservation_lines_reservation_id_order_reservations", ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["product_id"], ["products.id"],
            name="fk_order_reservation_lines_product_id_products", ondelete="RESTRICT",
        ),
        sa.UniqueConstraint(
            "reservation_id", "product_id", name="uq_reservation_lines_reservation_product"
        ),
        sa.CheckConstraint("quantity > 0", name="ck_order_reservation_lines_quantity_positive"),
    )
    op.create_index(
        "ix_order_reservation_lines_reservation_id", "order_reservation_lines", ["reservation_id"]
    )


def downgrade() -> None:
    op.drop_table("order_reservation_lines")
    op.drop_table("order_reservations")
    op.drop_table("stock_levels")
    op.drop_table("inventory_transactions")
    op.drop_table("products")
    op.drop_table("warehouses")
    op.drop_table("fulfillment_centers")
