# codledger/models/product.py
from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from codledger.db.base import Base
from codledger.models.enums import ProductStatus


class Product(Base):
    """
    商品（外部主档，库存内核只按 id/SKU 引用）

    - stock_level：各仓 current_quantity 之和的只读缓存，只由投影器回写；
    - reorder_point：低库存阈值，为空时取配置默认值；
    - status=Archived 视为已删除，库存操作拒绝引用。
    """

    __tablename__ = "products"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    sku: Mapped[str] = mapped_column(sa.String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(sa.Numeric(12, 2), nullable=False, default=Decimal("0"))
    reorder_point: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)
    status: Mapped[str] = mapped_column(sa.String(16), nullable=False, default=ProductStatus.ACTIVE.value)
    stock_level: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)

    @property
    def is_deleted(self) -> bool:
        return self.status == ProductStatus.ARCHIVED.value

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock_level}>"
