# codledger/models/warehouse.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from codledger.db.base import Base, utc_now


def _uuid() -> str:
    return str(uuid.uuid4())


class FulfillmentCenter(Base):
    """履约中心：仓库的归属方"""

    __tablename__ = "fulfillment_centers"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(sa.String(120), nullable=False)
    code: Mapped[str] = mapped_column(sa.String(64), nullable=False, unique=True)
    city: Mapped[Optional[str]] = mapped_column(sa.String(120), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, server_default=func.now(), nullable=False
    )

    warehouses: Mapped[List["Warehouse"]] = relationship(
        "Warehouse",
        back_populates="fulfillment_center",
        lazy="selectin",
        order_by="Warehouse.created_at",
    )

    def __repr__(self) -> str:
        return f"<FulfillmentCenter id={self.id} code={self.code!r}>"


class Warehouse(Base):
    """
    仓库主档：
    - 必须归属一个履约中心；
    - 库存操作从不自动建仓；
    - 被台账 / 余额引用后不可删除（RESTRICT，不级联）。
    """

    __tablename__ = "warehouses"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=_uuid)
    fulfillment_center_id: Mapped[str] = mapped_column(
        sa.String(36),
        sa.ForeignKey("fulfillment_centers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(sa.String(120), nullable=False)
    # 库区 / 位置标签（可空）
    location: Mapped[Optional[str]] = mapped_column(sa.String(120), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, server_default=func.now(), nullable=False
    )

    fulfillment_center: Mapped[FulfillmentCenter] = relationship(
        "FulfillmentCenter", back_populates="warehouses", lazy="raise"
    )

    def __repr__(self) -> str:
        return f"<Warehouse id={self.id} name={self.name!r}>"
