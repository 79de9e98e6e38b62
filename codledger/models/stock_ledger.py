# codledger/models/stock_ledger.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from codledger.db.base import Base, utc_now


class InventoryTransaction(Base):
    """
    台账（只增不改，审计用）

    - quantity 带符号：正数入、负数出，禁止 0；
    - reference_id 关联来源单据（订单 / 采购 / 调拨组 / 调整原因）；
    - 调拨以 transfer_out + transfer_in 成对出现，共用同一个 reference_id；
    - id 自增，newest-first 排序以 id DESC 为准。
    """

    __tablename__ = "inventory_transactions"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)

    type: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    quantity: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    product_id: Mapped[str] = mapped_column(
        sa.String(36), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    warehouse_id: Mapped[str] = mapped_column(
        sa.String(36), sa.ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False
    )

    reference_id: Mapped[Optional[str]] = mapped_column(sa.String(255), nullable=True)
    note: Mapped[Optional[str]] = mapped_column(sa.String(255), nullable=True)
    user_id: Mapped[Optional[str]] = mapped_column(sa.String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        sa.CheckConstraint("quantity <> 0", name="quantity_nonzero"),
        sa.CheckConstraint(
            "type IN ('purchase_in','order_out','adjustment','transfer_out','transfer_in','return_restock')",
            name="type_known",
        ),
        sa.Index("ix_inv_tx_product_warehouse", "product_id", "warehouse_id"),
        sa.Index("ix_inv_tx_warehouse_id", "warehouse_id"),
        sa.Index("ix_inv_tx_reference_id", "reference_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<InventoryTransaction #{self.id} {self.type} wh={self.warehouse_id} "
            f"product={self.product_id} qty={self.quantity} ref={self.reference_id}>"
        )
