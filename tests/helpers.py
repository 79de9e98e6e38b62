# tests/helpers.py
from __future__ import annotations

from typing import List, Optional, Tuple

from sqlalchemy import func, select

from codledger.db.session import Database
from codledger.models import InventoryTransaction, Product, StockLevel
from codledger.services.stock_projector import StockLevelProjector


async def level_of(db: Database, product_id: str, warehouse_id: str) -> Tuple[int, int]:
    """(current, reserved)；尚无余额行时视为 (0, 0)"""
    async with db.session() as session:
        row = (
            await session.execute(
                select(StockLevel.current_quantity, StockLevel.reserved_quantity).where(
                    StockLevel.product_id == product_id,
                    StockLevel.warehouse_id == warehouse_id,
                )
            )
        ).first()
    return (int(row[0]), int(row[1])) if row else (0, 0)


async def entries(
    db: Database,
    *,
    product_id: Optional[str] = None,
    reference_id: Optional[str] = None,
) -> List[InventoryTransaction]:
    async with db.session() as session:
        stmt = select(InventoryTransaction).order_by(InventoryTransaction.id)
        if product_id:
            stmt = stmt.where(InventoryTransaction.product_id == product_id)
        if reference_id:
            stmt = stmt.where(InventoryTransaction.reference_id == reference_id)
        return list(await session.scalars(stmt))


async def entry_count(db: Database) -> int:
    async with db.session() as session:
        return int(await session.scalar(select(func.count()).select_from(InventoryTransaction)) or 0)


async def product_cache(db: Database, product_id: str) -> int:
    async with db.session() as session:
        return int(await session.scalar(select(Product.stock_level).where(Product.id == product_id)) or 0)


async def assert_projection_matches_ledger(db: Database) -> None:
    """每个维度：投影 == 台账回放 + open 预占"""
    projector = StockLevelProjector()
    async with db.session() as session:
        levels = list(await session.scalars(select(StockLevel)))
        for lv in levels:
            snap = await projector.recompute(session, lv.product_id, lv.warehouse_id)
            assert (lv.current_quantity, lv.reserved_quantity) == (
                snap.current_quantity,
                snap.reserved_quantity,
            ), lv
