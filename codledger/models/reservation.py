# codledger/models/reservation.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from codledger.db.base import Base, utc_now
from codledger.models.enums import ReservationStatus


class OrderReservation(Base):
    """
    订单预占头：只记录承诺，不动实仓

    - 一单一头（order_id 唯一），仓库由外部分仓策略给定；
    - status：open → released（取消）/ fulfilled（发货）；
    - 明细行记录原始预占数量，释放 / 发货按原值回退或消耗。
    """

    __tablename__ = "order_reservations"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, unique=True)
    warehouse_id: Mapped[str] = mapped_column(
        sa.String(36), sa.ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(
        sa.String(16), nullable=False, default=ReservationStatus.OPEN.value
    )

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, server_default=func.now(), nullable=False
    )
    closed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    lines: Mapped[List["OrderReservationLine"]] = relationship(
        "OrderReservationLine",
        back_populates="reservation",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderReservationLine.id",
    )

    @property
    def is_open(self) -> bool:
        return self.status == ReservationStatus.OPEN.value

    def __repr__(self) -> str:
        return f"<OrderReservation order={self.order_id} wh={self.warehouse_id} status={self.status}>"


class OrderReservationLine(Base):
    __tablename__ = "order_reservation_lines"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    reservation_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("order_reservations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[str] = mapped_column(
        sa.String(36), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    reservation: Mapped[OrderReservation] = relationship(
        "OrderReservation", back_populates="lines", lazy="raise"
    )

    __table_args__ = (
        sa.UniqueConstraint("reservation_id", "product_id", name="uq_reservation_lines_reservation_product"),
        sa.CheckConstraint("quantity > 0", name="quantity_positive"),
    )
