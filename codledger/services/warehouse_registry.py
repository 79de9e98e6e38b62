# codledger/services/warehouse_registry.py
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from codledger.core.tx import run_in_tx, run_read
from codledger.db.session import Database
from codledger.models.reservation import OrderReservation
from codledger.models.stock_ledger import InventoryTransaction
from codledger.models.stock_level import StockLevel
from codledger.models.warehouse import FulfillmentCenter, Warehouse
from codledger.services.errors import NotFoundError, ReferentialIntegrityError, ValidationError

log = logging.getLogger("codledger.warehouses")


async def require_warehouse(session: AsyncSession, warehouse_id: str) -> Warehouse:
    wh = await session.get(Warehouse, warehouse_id)
    if wh is None:
        raise NotFoundError(
            f"warehouse {warehouse_id} not found",
            context={"warehouse_id": warehouse_id},
        )
    return wh


async def warehouse_is_referenced(session: AsyncSession, warehouse_id: str) -> bool:
    """台账 / 余额 / 预占任一引用即视为被占用"""
    for model in (InventoryTransaction, StockLevel, OrderReservation):
        hit = await session.scalar(select(exists().where(model.warehouse_id == warehouse_id)))
        if hit:
            return True
    return False


def _clean_name(name: str, field: str) -> str:
    nm = (name or "").strip()
    if not nm:
        raise ValidationError(f"{field} must not be empty", context={"path": field})
    return nm


class WarehouseRegistry:
    """
    仓库登记簿（叶子数据）：

    - 仓库只能显式创建，或随履约中心一起创建；
    - 库存操作从不隐式建仓；
    - 删除前检查引用完整性，被引用直接拒绝（不级联）。
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    # ---------------- 履约中心 ----------------
    async def create_fulfillment_center(
        self,
        *,
        name: str,
        code: str,
        city: Optional[str] = None,
        warehouses: Sequence[dict] = (),
    ) -> FulfillmentCenter:
        nm = _clean_name(name, "name")
        cd = _clean_name(code, "code").upper()
        specs = [(_clean_name(w.get("name", ""), "warehouses.name"), w.get("location")) for w in warehouses]

        async def _work(session: AsyncSession) -> FulfillmentCenter:
            fc = FulfillmentCenter(name=nm, code=cd, city=city)
            fc.warehouses = [Warehouse(name=wn, location=loc) for wn, loc in specs]
            session.add(fc)
            try:
                await session.flush()
            except IntegrityError:
                raise ValidationError(
                    f"fulfillment center code {cd} already exists", context={"code": cd}
                ) from None
            return fc

        fc = await run_in_tx(self.db.session_maker, _work, op="create_fulfillment_center")
        log.info("fulfillment center created id=%s code=%s warehouses=%d", fc.id, fc.code, len(specs))
        return fc

    async def list_fulfillment_centers(self) -> List[FulfillmentCenter]:
        async def _q(session: AsyncSession) -> List[FulfillmentCenter]:
            rows = await session.scalars(select(FulfillmentCenter).order_by(FulfillmentCenter.created_at))
            return list(rows)

        return await run_read(self.db.session_maker, _q)

    # ---------------- 仓库 ----------------
    async def create_warehouse(
        self,
        *,
        name: str,
        fulfillment_center_id: str,
        location: Optional[str] = None,
    ) -> Warehouse:
        nm = _clean_name(name, "name")

        async def _work(session: AsyncSession) -> Warehouse:
            fc = await session.get(FulfillmentCenter, fulfillment_center_id)
            if fc is None:
                raise NotFoundError(
                    f"fulfillment center {fulfillment_center_id} not found",
                    context={"fulfillment_center_id": fulfillment_center_id},
                )
            wh = Warehouse(name=nm, location=location, fulfillment_center_id=fc.id)
            session.add(wh)
            await session.flush()
            return wh

        wh = await run_in_tx(self.db.session_maker, _work, op="create_warehouse")
        log.info("warehouse created id=%s name=%s fc=%s", wh.id, wh.name, wh.fulfillment_center_id)
        return wh

    async def list_warehouses(self, *, fulfillment_center_id: Optional[str] = None) -> List[Warehouse]:
        async def _q(session: AsyncSession) -> List[Warehouse]:
            stmt = select(Warehouse).order_by(Warehouse.created_at, Warehouse.id)
            if fulfillment_center_id:
                stmt = stmt.where(Warehouse.fulfillment_center_id == fulfillment_center_id)
            return list(await session.scalars(stmt))

        return await run_read(self.db.session_maker, _q)

    async def get_warehouse(self, warehouse_id: str) -> Warehouse:
        async def _q(session: AsyncSession) -> Warehouse:
            return await require_warehouse(session, warehouse_id)

        return await run_read(self.db.session_maker, _q)

    async def delete_warehouse(self, warehouse_id: str) -> None:
        async def _work(session: AsyncSession) -> None:
            wh = await require_warehouse(session, warehouse_id)
            if await warehouse_is_referenced(session, warehouse_id):
                raise ReferentialIntegrityError(
                    f"warehouse {warehouse_id} is referenced by inventory records",
                    context={"warehouse_id": warehouse_id},
                )
            await session.delete(wh)
            try:
                await session.flush()
            except IntegrityError:
                # 与首笔动账并发：由外键 RESTRICT 兜底
                raise ReferentialIntegrityError(
                    f"warehouse {warehouse_id} is referenced by inventory records",
                    context={"warehouse_id": warehouse_id},
                ) from None

        await run_in_tx(self.db.session_maker, _work, op="delete_warehouse")
        log.info("warehouse deleted id=%s", warehouse_id)
