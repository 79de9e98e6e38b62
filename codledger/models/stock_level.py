# codledger/models/stock_level.py
from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from codledger.db.base import Base, utc_now


class StockLevel(Base):
    """
    库存余额投影，维度 (product_id, warehouse_id)

    - current_quantity  = 该维度台账 quantity 之和（实物在库）
    - reserved_quantity = 该维度 open 预占行之和（已承诺未发货）
    - version：乐观并发版本号，UPDATE 时带 WHERE version=:v
    - 首次动账时惰性创建，永不删除
    """

    __tablename__ = "stock_levels"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)

    product_id: Mapped[str] = mapped_column(
        sa.String(36), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    warehouse_id: Mapped[str] = mapped_column(
        sa.String(36), sa.ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False, index=True
    )

    current_quantity: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    reserved_quantity: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)

    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        sa.UniqueConstraint("product_id", "warehouse_id", name="uq_stock_levels_product_warehouse"),
        sa.CheckConstraint("current_quantity >= 0", name="current_non_negative"),
        sa.CheckConstraint("reserved_quantity >= 0", name="reserved_non_negative"),
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def available_quantity(self) -> int:
        return int(self.current_quantity or 0) - int(self.reserved_quantity or 0)

    @property
    def key(self) -> tuple[str, str]:
        return (self.product_id, self.warehouse_id)

    def __repr__(self) -> str:
        return (
            f"<StockLevel product={self.product_id} wh={self.warehouse_id} "
            f"current={self.current_quantity} reserved={self.reserved_quantity} v={self.version}>"
        )
