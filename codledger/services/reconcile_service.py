# codledger/services/reconcile_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from codledger.core.tx import run_read
from codledger.models.enums import ReservationStatus
from codledger.models.product import Product
from codledger.models.reservation import OrderReservation, OrderReservationLine
from codledger.models.stock_ledger import InventoryTransaction
from codledger.models.stock_level import StockLevel
from codledger.services.inventory_ops import InventoryOpsService

log = logging.getLogger("codledger.reconcile")

StockKey = Tuple[str, str]


@dataclass(frozen=True)
class StockDrift:
    """投影 vs 台账回放 的单维度差异"""

    product_id: str
    warehouse_id: str
    projected_current: int
    ledger_current: int
    projected_reserved: int
    expected_reserved: int

    @property
    def key(self) -> StockKey:
        return (self.product_id, self.warehouse_id)


@dataclass(frozen=True)
class ProductCacheDrift:
    product_id: str
    cached: int
    expected: int


@dataclass
class ReconcileReport:
    checked_pairs: int = 0
    drifts: List[StockDrift] = field(default_factory=list)
    product_cache_drifts: List[ProductCacheDrift] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.drifts and not self.product_cache_drifts


class ReconcileService:
    """
    账实对账：

    1) 台账 Σquantity vs stock_levels.current_quantity
    2) open 预占行 Σquantity vs stock_levels.reserved_quantity
    3) products.stock_level 缓存 vs Σ current_quantity

    check 只读；repair 经由投影器重建差异行（一个工作单元）。
    """

    def __init__(self, ops: InventoryOpsService) -> None:
        self.ops = ops

    @staticmethod
    async def _collect(
        session: AsyncSession,
        *,
        product_id: Optional[str] = None,
        warehouse_id: Optional[str] = None,
    ) -> ReconcileReport:
        def _scope(stmt, pid_col, wid_col):
            if product_id:
                stmt = stmt.where(pid_col == product_id)
            if warehouse_id and wid_col is not None:
                stmt = stmt.where(wid_col == warehouse_id)
            return stmt

        ledger_rows = await session.execute(
            _scope(
                select(
                    InventoryTransaction.product_id,
                    InventoryTransaction.warehouse_id,
                    func.sum(InventoryTransaction.quantity),
                ).group_by(InventoryTransaction.product_id, InventoryTransaction.warehouse_id),
                InventoryTransaction.product_id,
                InventoryTransaction.warehouse_id,
            )
        )
        ledger: Dict[StockKey, int] = {(p, w): int(q or 0) for p, w, q in ledger_rows.all()}

        reserved_rows = await session.execute(
            _scope(
                select(
                    OrderReservationLine.product_id,
                    OrderReservation.warehouse_id,
                    func.sum(OrderReservationLine.quantity),
                )
                .join(OrderReservation, OrderReservation.id == OrderReservationLine.reservation_id)
                .where(OrderReservation.status == ReservationStatus.OPEN.value)
                .group_by(OrderReservationLine.product_id, OrderReservation.warehouse_id),
                OrderReservationLine.product_id,
                OrderReservation.warehouse_id,
            )
        )
        reserved: Dict[StockKey, int] = {(p, w): int(q or 0) for p, w, q in reserved_rows.all()}

        levels: Dict[StockKey, StockLevel] = {
            lv.key: lv
            for lv in await session.scalars(
                _scope(select(StockLevel), StockLevel.product_id, StockLevel.warehouse_id)
            )
        }

        report = ReconcileReport()
        keys = sorted(set(ledger) | set(reserved) | set(levels))
        report.checked_pairs = len(keys)
        for key in keys:
            lv = levels.get(key)
            proj_cur = lv.current_quantity if lv else 0
            proj_res = lv.reserved_quantity if lv else 0
            exp_cur = ledger.get(key, 0)
            exp_res = reserved.get(key, 0)
            if proj_cur != exp_cur or proj_res != exp_res:
                report.drifts.append(
                    StockDrift(
                        product_id=key[0],
                        warehouse_id=key[1],
                        projected_current=proj_cur,
                        ledger_current=exp_cur,
                        projected_reserved=proj_res,
                        expected_reserved=exp_res,
                    )
                )

        # 商品缓存只跟全仓合计比较，不受仓库过滤影响
        totals_stmt = (
            select(Product.id, Product.stock_level, func.coalesce(func.sum(StockLevel.current_quantity), 0))
            .outerjoin(StockLevel, StockLevel.product_id == Product.id)
            .group_by(Product.id, Product.stock_level)
        )
        if product_id:
            totals_stmt = totals_stmt.where(Product.id == product_id)
        for pid, cached, expected in (await session.execute(totals_stmt)).all():
            if int(cached or 0) != int(expected or 0):
                report.product_cache_drifts.append(
                    ProductCacheDrift(product_id=pid, cached=int(cached or 0), expected=int(expected or 0))
                )
        return report

    async def check(
        self,
        *,
        product_id: Optional[str] = None,
        warehouse_id: Optional[str] = None,
    ) -> ReconcileReport:
        async def _q(session: AsyncSession) -> ReconcileReport:
            return await self._collect(session, product_id=product_id, warehouse_id=warehouse_id)

        report = await run_read(self.ops.db.session_maker, _q)
        if not report.ok:
            log.warning(
                "reconcile drift: pairs=%d stock=%d product_cache=%d",
                report.checked_pairs, len(report.drifts), len(report.product_cache_drifts),
            )
        return report

    async def repair(
        self,
        *,
        product_id: Optional[str] = None,
        warehouse_id: Optional[str] = None,
    ) -> ReconcileReport:
        """
        重建差异维度，返回修复前的差异报告。
        缓存漂移（无余额差异）的商品只重算缓存。
        """
        before = await self.check(product_id=product_id, warehouse_id=warehouse_id)
        if before.ok:
            return before

        keys = [d.key for d in before.drifts]
        cache_only = sorted(
            {d.product_id for d in before.product_cache_drifts} - {pid for pid, _ in keys}
        )

        async def _work(session: AsyncSession) -> None:
            for pid, wid in sorted(keys):
                await self.ops.projector.rebuild(session, pid, wid)
            for pid in cache_only:
                await self.ops.projector.refresh_product_cache(session, pid)

        await self.ops.run_locked("reconcile_repair", keys, _work)
        log.info("reconcile repaired pairs=%d product_caches=%d", len(keys), len(cache_only))
        return before
