# tests/services/test_stock_status.py
from __future__ import annotations

from decimal import Decimal

import pytest

from codledger.models import StockStatus
from codledger.services.errors import NotFoundError
from codledger.services.inventory_types import StockLine
from codledger.services.stock_status import classify_stock


@pytest.mark.parametrize(
    "available, reorder_point, expected",
    [
        (10, 10, StockStatus.LOW_STOCK),
        (0, 10, StockStatus.OUT_OF_STOCK),
        (-3, 10, StockStatus.OUT_OF_STOCK),
        (1, 10, StockStatus.LOW_STOCK),
        (11, 10, StockStatus.HEALTHY),
        (5, 0, StockStatus.HEALTHY),
        (10, None, StockStatus.LOW_STOCK),
        (11, None, StockStatus.HEALTHY),
    ],
)
def test_classify_stock(available, reorder_point, expected):
    assert classify_stock(available, reorder_point) is expected


def test_classify_stock_custom_default():
    assert classify_stock(15, None, default_reorder_point=20) is StockStatus.LOW_STOCK
    assert classify_stock(15, 3, default_reorder_point=20) is StockStatus.HEALTHY


@pytest.mark.asyncio
async def test_list_products_with_stock_aggregates_warehouses(db, seed, ops, query):
    await ops.receive_purchase(
        "PO-1", seed.wh_a, [StockLine(seed.sku1, 4), StockLine(seed.sku1, 3, warehouse_id=seed.wh_b)]
    )
    await ops.reserve_for_order("ORD-1", seed.wh_a, [StockLine(seed.sku1, 2)])

    rows = await query.list_products_with_stock("all")
    assert [r.product.id for r in rows] == [seed.sku1]
    row = rows[0]
    assert (row.current_stock, row.reserved_stock, row.available_stock) == (7, 2, 5)
    # reorder_point=5：可售 5 → lowStock
    assert row.status is StockStatus.LOW_STOCK
    assert {lv.warehouse_id for lv in row.levels} == {seed.wh_a, seed.wh_b}

    only_b = await query.list_products_with_stock(seed.wh_b)
    assert (only_b[0].current_stock, only_b[0].status) == (3, StockStatus.LOW_STOCK)


@pytest.mark.asyncio
async def test_inventory_levels_per_warehouse(db, seed, ops, query):
    await ops.receive_purchase(
        "PO-1", seed.wh_a, [StockLine(seed.sku2, 4), StockLine(seed.sku2, 6, warehouse_id=seed.wh_b)]
    )
    res = await query.get_inventory_levels(seed.sku2)
    assert (res.total_current, res.total_reserved, res.total_available) == (10, 0, 10)
    assert res.warehouse_names == {seed.wh_a: "WH-A", seed.wh_b: "WH-B"}

    with pytest.raises(NotFoundError):
        await query.get_inventory_levels("ghost")


@pytest.mark.asyncio
async def test_list_transactions_filters_and_limit(db, seed, ops, query):
    await ops.receive_purchase("PO-1", seed.wh_a, [StockLine(seed.sku1, 10), StockLine(seed.sku2, 1)])
    await ops.transfer_stock(seed.sku1, seed.wh_a, seed.wh_b, 4, "rebalance")

    views = await query.list_transactions()
    assert len(views) == 4
    assert views[0].entry.type == "transfer_in"
    assert views[0].warehouse_name == "WH-B"
    assert views[0].product_sku == "SKU-0001"

    only_b = await query.list_transactions(warehouse_id=seed.wh_b)
    assert [v.entry.quantity for v in only_b] == [4]
    assert len(await query.list_transactions(product_id=seed.sku2)) == 1
    assert len(await query.list_transactions(limit=2)) == 2
    assert len(await query.list_transactions(warehouse_id="all", limit=0)) == 4

    by_po = await query.list_transactions(reference_id="PO-1")
    assert sorted((v.product_sku, v.entry.quantity) for v in by_po) == [("SKU-0001", 10), ("SKU-0002", 1)]
    assert all(v.entry.type == "purchase_in" and v.warehouse_name == "WH-A" for v in by_po)
    assert await query.list_transactions(reference_id="PO-404") == []


@pytest.mark.asyncio
async def test_dashboard_counts_and_value(db, seed, ops, query):
    # sku1: 可售 20 > 5 → healthy；sku2: 可售 10 ≤ 10 → lowStock；归档商品不计
    await ops.receive_purchase("PO-1", seed.wh_a, [StockLine(seed.sku1, 20), StockLine(seed.sku2, 10)])

    m = await query.dashboard_metrics("all")
    assert m.total_products == 2
    assert (m.healthy_count, m.low_stock_count, m.out_of_stock_count) == (1, 1, 0)
    assert m.total_inventory_value == Decimal("280.00")

    # 按仓过滤：WH-B 没有任何余额 → 全部缺货，金额 0
    m_b = await query.dashboard_metrics(seed.wh_b)
    assert (m_b.healthy_count, m_b.low_stock_count, m_b.out_of_stock_count) == (0, 0, 2)
    assert m_b.total_inventory_value == Decimal("0")


@pytest.mark.asyncio
async def test_dashboard_without_stock_counts_everything_out(db, seed, query):
    m = await query.dashboard_metrics()
    assert (m.total_products, m.out_of_stock_count) == (2, 2)
