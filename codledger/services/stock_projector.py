# codledger/services/stock_projector.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from codledger.models.enums import ReservationStatus, TransactionType
from codledger.models.product import Product
from codledger.models.reservation import OrderReservation, OrderReservationLine
from codledger.models.stock_ledger import InventoryTransaction
from codledger.models.stock_level import StockLevel
from codledger.services.errors import ConcurrencyConflictError, InsufficientStockError, InventoryError
from codledger.services.ledger_writer import StockLedger

StockKey = Tuple[str, str]


@dataclass(frozen=True)
class StockSnapshot:
    """由台账 + open 预占重新推导出的“应有”余额"""

    product_id: str
    warehouse_id: str
    current_quantity: int
    reserved_quantity: int

    @property
    def available_quantity(self) -> int:
        return self.current_quantity - self.reserved_quantity


async def _flush(session: AsyncSession) -> None:
    try:
        await session.flush()
    except StaleDataError as e:
        raise ConcurrencyConflictError(f"stock level version is stale: {e}") from e


class StockLevelProjector:
    """
    余额投影器：stock_levels 与 products.stock_level 的唯一写入方。

    - 调用方须先 lock_levels() 再 apply / reserve / release；
    - 每次变更 flush 一次，version 由 ORM 乐观锁自动 +1；
    - recompute() 是正确性的权威定义（全量回放台账 + open 预占）。
    """

    def __init__(self, ledger: Optional[StockLedger] = None) -> None:
        self.ledger = ledger or StockLedger()

    async def _select_for_update(self, session: AsyncSession, key: StockKey) -> Optional[StockLevel]:
        pid, wid = key
        stmt = (
            select(StockLevel)
            .where(StockLevel.product_id == pid, StockLevel.warehouse_id == wid)
            .with_for_update()
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def lock_levels(self, session: AsyncSession, keys: Iterable[StockKey]) -> Dict[StockKey, StockLevel]:
        out: Dict[StockKey, StockLevel] = {}
        for key in sorted(set(keys)):
            level = await self._select_for_update(session, key)
            if level is None:
                level = StockLevel(
                    product_id=key[0],
                    warehouse_id=key[1],
                    current_quantity=0,
                    reserved_quantity=0,
                )
                session.add(level)
                try:
                    await session.flush()
                except IntegrityError as e:
                    # 另一连接抢先建了同维度行：整单重来
                    raise ConcurrencyConflictError(
                        f"stock level {key} created concurrently",
                        context={"product_id": key[0], "warehouse_id": key[1]},
                    ) from e
            out[key] = level
        return out

    async def apply(self, session: AsyncSession, entry: InventoryTransaction) -> StockLevel:
        key = (entry.product_id, entry.warehouse_id)
        level = (await self.lock_levels(session, [key]))[key]
        qty = int(entry.quantity)

        new_current = level.current_quantity + qty
        if new_current < 0:
            raise InsufficientStockError(
                f"ledger entry would drive on-hand below zero for {key}",
                product_id=entry.product_id,
                warehouse_id=entry.warehouse_id,
                required=-qty,
                available=level.current_quantity,
            )

        new_reserved = level.reserved_quantity
        if TransactionType(entry.type) is TransactionType.ORDER_OUT:
            new_reserved -= -qty
            if new_reserved < 0:
                raise InventoryError(
                    "order_out exceeds reserved quantity",
                    error_code="reservation_mismatch",
                    context={"product_id": entry.product_id, "warehouse_id": entry.warehouse_id},
                )

        level.current_quantity = new_current
        level.reserved_quantity = new_reserved
        await _flush(session)
        return level

    async def reserve(self, session: AsyncSession, level: StockLevel, qty: int) -> StockLevel:
        if level.available_quantity < qty:
            raise InsufficientStockError(
                f"insufficient stock for product {level.product_id} in warehouse {level.warehouse_id}",
                product_id=level.product_id,
                warehouse_id=level.warehouse_id,
                required=qty,
                available=level.available_quantity,
            )
        level.reserved_quantity += int(qty)
        await _flush(session)
        return level

    async def release(self, session: AsyncSession, level: StockLevel, qty: int) -> StockLevel:
        new_reserved = level.reserved_quantity - int(qty)
        if new_reserved < 0:
            # 余额与预占行不一致：拒绝并回滚，交给 reconcile 修复
            raise InventoryError(
                "release exceeds reserved quantity",
                error_code="reservation_mismatch",
                context={"product_id": level.product_id, "warehouse_id": level.warehouse_id, "quantity": int(qty)},
            )
        level.reserved_quantity = new_reserved
        await _flush(session)
        return level

    async def refresh_product_cache(self, session: AsyncSession, product_id: str) -> int:
        total = await session.scalar(
            select(func.coalesce(func.sum(StockLevel.current_quantity), 0)).where(
                StockLevel.product_id == product_id
            )
        )
        total = int(total or 0)
        await session.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock_level=total)
            .execution_options(synchronize_session="fetch")
        )
        return total

    async def query(
        self,
        session: AsyncSession,
        *,
        product_id: Optional[str] = None,
        warehouse_id: Optional[str] = None,
    ) -> List[StockLevel]:
        stmt = select(StockLevel)
        if product_id:
            stmt = stmt.where(StockLevel.product_id == product_id)
        if warehouse_id:
            stmt = stmt.where(StockLevel.warehouse_id == warehouse_id)
        stmt = stmt.order_by(StockLevel.product_id, StockLevel.warehouse_id)
        return list(await session.scalars(stmt))

    async def recompute(self, session: AsyncSession, product_id: str, warehouse_id: str) -> StockSnapshot:
        current = await self.ledger.sum_for(session, product_id, warehouse_id)
        reserved = await session.scalar(
            select(func.coalesce(func.sum(OrderReservationLine.quantity), 0))
            .join(OrderReservation, OrderReservation.id == OrderReservationLine.reservation_id)
            .where(
                OrderReservationLine.product_id == product_id,
                OrderReservation.warehouse_id == warehouse_id,
                OrderReservation.status == ReservationStatus.OPEN.value,
            )
        )
        return StockSnapshot(
            product_id=product_id,
            warehouse_id=warehouse_id,
            current_quantity=current,
            reserved_quantity=int(reserved or 0),
        )

    async def rebuild(self, session: AsyncSession, product_id: str, warehouse_id: str) -> StockLevel:
        key = (product_id, warehouse_id)
        level = (await self.lock_levels(session, [key]))[key]
        snap = await self.recompute(session, product_id, warehouse_id)
        level.current_quantity = snap.current_quantity
        level.reserved_quantity = snap.reserved_quantity
        await _flush(session)
        await self.refresh_product_cache(session, product_id)
        return level
