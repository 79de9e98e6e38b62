# tests/conftest.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio

from codledger.core.config import AppSettings
from codledger.db.session import Database
from codledger.main import create_app
from codledger.models import Product, ProductStatus
from codledger.services.inventory_ops import InventoryOpsService
from codledger.services.inventory_query import InventoryQueryService
from codledger.services.reconcile_service import ReconcileService
from codledger.services.stock_locks import StockLockRegistry
from codledger.services.warehouse_registry import WarehouseRegistry


# =========================================
# 每用例独立 SQLite 文件库（不依赖外部 PG）
# =========================================
@pytest.fixture(scope="function")
def settings(tmp_path) -> AppSettings:
    return AppSettings(
        ENV="test",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        LOG_LEVEL="WARNING",
        CONCURRENCY_RETRY_BACKOFF_MS=1,
    )


@pytest_asyncio.fixture(scope="function")
async def db(settings: AppSettings) -> AsyncGenerator[Database, None]:
    database = Database(settings.DATABASE_URL)
    await database.open()
    await database.create_all()
    try:
        yield database
    finally:
        await database.close()


@pytest.fixture
def registry(db: Database) -> WarehouseRegistry:
    return WarehouseRegistry(db)


@pytest.fixture
def ops(db: Database, settings: AppSettings) -> InventoryOpsService:
    return InventoryOpsService(db, settings, StockLockRegistry())


@pytest.fixture
def query(db: Database, settings: AppSettings) -> InventoryQueryService:
    return InventoryQueryService(db, settings)


@pytest.fixture
def reconcile(ops: InventoryOpsService) -> ReconcileService:
    return ReconcileService(ops)


# =========================================
# 最小种子：1 个履约中心 + 2 个仓 + 若干商品
# =========================================
@dataclass
class Seed:
    fc_id: str
    wh_a: str
    wh_b: str
    sku1: str  # 普通商品，reorder_point=5
    sku2: str  # 普通商品，reorder_point 为空（取默认 10）
    archived: str  # 已归档商品


@pytest_asyncio.fixture(scope="function")
async def seed(db: Database, registry: WarehouseRegistry) -> Seed:
    fc = await registry.create_fulfillment_center(
        name="Casablanca FC",
        code="cas",
        city="Casablanca",
        warehouses=[{"name": "WH-A", "location": "zone-1"}, {"name": "WH-B"}],
    )
    by_name = {w.name: w.id for w in fc.warehouses}

    p1 = Product(sku="SKU-0001", name="UT-ITEM-1", unit_cost=Decimal("12.50"), reorder_point=5)
    p2 = Product(sku="SKU-0002", name="UT-ITEM-2", unit_cost=Decimal("3.00"))
    p3 = Product(
        sku="SKU-9999", name="UT-ARCHIVED", unit_cost=Decimal("1.00"), status=ProductStatus.ARCHIVED.value
    )
    async with db.session() as session:
        async with session.begin():
            session.add_all([p1, p2, p3])

    return Seed(
        fc_id=fc.id,
        wh_a=by_name["WH-A"],
        wh_b=by_name["WH-B"],
        sku1=p1.id,
        sku2=p2.id,
        archived=p3.id,
    )


# =========================================
# FastAPI / httpx AsyncClient
# =========================================
@pytest_asyncio.fixture(scope="function")
async def client(settings: AppSettings, db: Database) -> AsyncGenerator[httpx.AsyncClient, None]:
    app = create_app(settings, database=db)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(
        transport=transport,
        base_url="http://testserver",
        timeout=httpx.Timeout(10.0, connect=5.0, read=10.0, write=5.0, pool=5.0),
    ) as c:
        yield c
