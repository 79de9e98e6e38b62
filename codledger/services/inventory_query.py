# codledger/services/inventory_query.py
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from codledger.core.config import AppSettings
from codledger.core.tx import run_read
from codledger.db.session import Database
from codledger.models.enums import ProductStatus, StockStatus
from codledger.models.product import Product
from codledger.models.stock_ledger import InventoryTransaction
from codledger.models.stock_level import StockLevel
from codledger.models.warehouse import Warehouse
from codledger.services.ledger_writer import StockLedger, require_product
from codledger.services.stock_status import classify_stock

ALL_WAREHOUSES = "all"


def warehouse_filter(warehouse_id: Optional[str]) -> Optional[str]:
    """warehouseId=all / 空 → 不过滤"""
    if not warehouse_id or warehouse_id == ALL_WAREHOUSES:
        return None
    return warehouse_id


@dataclass
class ProductStock:
    product: Product
    current_stock: int = 0
    reserved_stock: int = 0
    status: StockStatus = StockStatus.OUT_OF_STOCK
    levels: List[StockLevel] = field(default_factory=list)

    @property
    def available_stock(self) -> int:
        return self.current_stock - self.reserved_stock


@dataclass
class InventoryLevels:
    product_id: str
    total_current: int
    total_reserved: int
    levels: List[StockLevel]
    warehouse_names: Dict[str, str] = field(default_factory=dict)

    @property
    def total_available(self) -> int:
        return self.total_current - self.total_reserved


@dataclass
class TransactionView:
    entry: InventoryTransaction
    product_name: Optional[str] = None
    product_sku: Optional[str] = None
    warehouse_name: Optional[str] = None


@dataclass
class DashboardMetrics:
    total_inventory_value: Decimal
    healthy_count: int
    low_stock_count: int
    out_of_stock_count: int
    total_products: int


class InventoryQueryService:
    """只读视图：余额列表 / 单品分仓 / 台账流水 / 看板。"""

    def __init__(self, db: Database, settings: AppSettings, *, ledger: Optional[StockLedger] = None) -> None:
        self.db = db
        self.settings = settings
        self.ledger = ledger or StockLedger()

    async def list_products_with_stock(self, warehouse_id: Optional[str] = None) -> List[ProductStock]:
        wid = warehouse_filter(warehouse_id)

        async def _q(session: AsyncSession) -> List[ProductStock]:
            stmt = (
                select(StockLevel, Product)
                .join(Product, Product.id == StockLevel.product_id)
                .where(Product.status != ProductStatus.ARCHIVED.value)
                .order_by(Product.sku, StockLevel.warehouse_id)
            )
            if wid:
                stmt = stmt.where(StockLevel.warehouse_id == wid)

            by_product: Dict[str, ProductStock] = {}
            for level, product in (await session.execute(stmt)).all():
                row = by_product.get(product.id)
                if row is None:
                    row = by_product[product.id] = ProductStock(product=product)
                row.current_stock += level.current_quantity
                row.reserved_stock += level.reserved_quantity
                row.levels.append(level)

            for row in by_product.values():
                row.status = classify_stock(
                    row.available_stock,
                    row.product.reorder_point,
                    default_reorder_point=self.settings.DEFAULT_REORDER_POINT,
                )
            return list(by_product.values())

        return await run_read(self.db.session_maker, _q)

    async def get_inventory_levels(self, product_id: str) -> InventoryLevels:
        async def _q(session: AsyncSession) -> InventoryLevels:
            await require_product(session, product_id)
            rows = (
                await session.execute(
                    select(StockLevel, Warehouse.name)
                    .join(Warehouse, Warehouse.id == StockLevel.warehouse_id)
                    .where(StockLevel.product_id == product_id)
                    .order_by(StockLevel.warehouse_id)
                )
            ).all()
            levels = [lv for lv, _ in rows]
            return InventoryLevels(
                product_id=product_id,
                total_current=sum(lv.current_quantity for lv in levels),
                total_reserved=sum(lv.reserved_quantity for lv in levels),
                levels=levels,
                warehouse_names={lv.warehouse_id: name for lv, name in rows},
            )

        return await run_read(self.db.session_maker, _q)

    async def list_transactions(
        self,
        *,
        warehouse_id: Optional[str] = None,
        product_id: Optional[str] = None,
        reference_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[TransactionView]:
        """台账流水（最新在前），附商品 / 仓库名称"""
        wid = warehouse_filter(warehouse_id)
        n = max(1, min(int(limit or self.settings.LEDGER_LIST_LIMIT), 1000))

        async def _q(session: AsyncSession) -> List[TransactionView]:
            rows = await self.ledger.list_entries(
                session, warehouse_id=wid, product_id=product_id, reference_id=reference_id, limit=n
            )
            if not rows:
                return []
            pids = sorted({e.product_id for e in rows})
            wids = sorted({e.warehouse_id for e in rows})
            products = {
                pid: (name, sku)
                for pid, name, sku in (
                    await session.execute(select(Product.id, Product.name, Product.sku).where(Product.id.in_(pids)))
                ).all()
            }
            warehouses = {
                wid_: name
                for wid_, name in (
                    await session.execute(select(Warehouse.id, Warehouse.name).where(Warehouse.id.in_(wids)))
                ).all()
            }
            views = []
            for e in rows:
                name, sku = products.get(e.product_id, (None, None))
                views.append(
                    TransactionView(
                        entry=e, product_name=name, product_sku=sku, warehouse_name=warehouses.get(e.warehouse_id)
                    )
                )
            return views

        return await run_read(self.db.session_maker, _q)

    async def dashboard_metrics(self, warehouse_id: Optional[str] = None) -> DashboardMetrics:
        """
        看板：
        - 库存金额 = Σ current × unit_cost（按仓过滤）；
        - 健康度按商品汇总可售量分类，未归档商品全部计入（无余额行视为缺货）。
        """
        wid = warehouse_filter(warehouse_id)

        async def _q(session: AsyncSession) -> DashboardMetrics:
            products = list(
                await session.scalars(select(Product).where(Product.status != ProductStatus.ARCHIVED.value))
            )
            stmt = select(StockLevel)
            if wid:
                stmt = stmt.where(StockLevel.warehouse_id == wid)
            levels = list(await session.scalars(stmt))

            cost_by_product = {p.id: Decimal(p.unit_cost or 0) for p in products}
            available: Dict[str, int] = {}
            value = Decimal("0")
            for lv in levels:
                if lv.product_id not in cost_by_product:
                    continue
                value += lv.current_quantity * cost_by_product[lv.product_id]
                available[lv.product_id] = available.get(lv.product_id, 0) + lv.available_quantity

            counts = {s: 0 for s in StockStatus}
            for p in products:
                status = classify_stock(
                    available.get(p.id, 0),
                    p.reorder_point,
                    default_reorder_point=self.settings.DEFAULT_REORDER_POINT,
                )
                counts[status] += 1

            return DashboardMetrics(
                total_inventory_value=value,
                healthy_count=counts[StockStatus.HEALTHY],
                low_stock_count=counts[StockStatus.LOW_STOCK],
                out_of_stock_count=counts[StockStatus.OUT_OF_STOCK],
                total_products=len(products),
            )

        return await run_read(self.db.session_maker, _q)
