# tests/services/test_purchase_and_returns.py
from __future__ import annotations

import pytest

from codledger.services.errors import NotFoundError, ValidationError
from codledger.services.inventory_types import StockLine
from tests.helpers import assert_projection_matches_ledger, entries, entry_count, level_of, product_cache


@pytest.mark.asyncio
async def test_receive_purchase_line_warehouse_overrides_default(db, seed, ops):
    res = await ops.receive_purchase(
        "PO-100",
        seed.wh_a,
        [
            StockLine(seed.sku1, 6),
            StockLine(seed.sku1, 4, warehouse_id=seed.wh_b),
            StockLine(seed.sku2, 2),
        ],
        user_id="buyer-1",
    )

    assert res.reference_id == "PO-100"
    assert len(res.entries) == 3
    assert {e.type for e in res.entries} == {"purchase_in"}
    assert await level_of(db, seed.sku1, seed.wh_a) == (6, 0)
    assert await level_of(db, seed.sku1, seed.wh_b) == (4, 0)
    assert await level_of(db, seed.sku2, seed.wh_a) == (2, 0)
    assert await product_cache(db, seed.sku1) == 10
    await assert_projection_matches_ledger(db)


@pytest.mark.asyncio
async def test_receive_purchase_merges_lines_after_override(db, seed, ops):
    """行级覆盖成与默认仓相同 → 与默认行合并为一条台账"""
    res = await ops.receive_purchase(
        "PO-101",
        seed.wh_a,
        [StockLine(seed.sku1, 1), StockLine(seed.sku1, 2, warehouse_id=seed.wh_a)],
    )
    assert [(e.warehouse_id, e.quantity) for e in res.entries] == [(seed.wh_a, 3)]


@pytest.mark.asyncio
async def test_receive_purchase_requires_target_warehouse(db, seed, ops):
    with pytest.raises(ValidationError):
        await ops.receive_purchase("PO-102", None, [StockLine(seed.sku1, 1)])
    with pytest.raises(NotFoundError):
        await ops.receive_purchase("PO-102", "ghost-wh", [StockLine(seed.sku1, 1)])
    with pytest.raises(ValidationError):
        await ops.receive_purchase("", seed.wh_a, [StockLine(seed.sku1, 1)])
    assert await entry_count(db) == 0


async def _ship(ops, seed, order_id: str, qty: int) -> None:
    await ops.receive_purchase(f"PO-{order_id}", seed.wh_a, [StockLine(seed.sku1, qty)])
    await ops.reserve_for_order(order_id, seed.wh_a, [StockLine(seed.sku1, qty)])
    await ops.fulfill_order(order_id)


@pytest.mark.asyncio
async def test_restock_defaults_to_reservation_warehouse(db, seed, ops):
    await _ship(ops, seed, "ORD-7", 5)
    assert await level_of(db, seed.sku1, seed.wh_a) == (0, 0)

    res = await ops.restock_return("ORD-7", [StockLine(seed.sku1, 2)])

    assert [(e.type, e.quantity, e.warehouse_id, e.note) for e in res.entries] == [
        ("return_restock", 2, seed.wh_a, "customer return")
    ]
    assert await level_of(db, seed.sku1, seed.wh_a) == (2, 0)
    await assert_projection_matches_ledger(db)


@pytest.mark.asyncio
async def test_restock_bounded_by_shipped_minus_restocked(db, seed, ops):
    await _ship(ops, seed, "ORD-8", 5)

    await ops.restock_return("ORD-8", [StockLine(seed.sku1, 3)], seed.wh_b)
    with pytest.raises(ValidationError) as ei:
        await ops.restock_return("ORD-8", [StockLine(seed.sku1, 3)])
    assert ei.value.context["returnable"] == 2

    await ops.restock_return("ORD-8", [StockLine(seed.sku1, 2)])
    rows = await entries(db, reference_id="ORD-8")
    assert sum(e.quantity for e in rows if e.type == "return_restock") == 5
    assert await level_of(db, seed.sku1, seed.wh_a) == (2, 0)
    assert await level_of(db, seed.sku1, seed.wh_b) == (3, 0)


@pytest.mark.asyncio
async def test_restock_rejects_unshipped_products_and_unknown_orders(db, seed, ops):
    await _ship(ops, seed, "ORD-9", 1)

    with pytest.raises(ValidationError):
        await ops.restock_return("ORD-9", [StockLine(seed.sku2, 1)])
    # 无预占且未给仓库 → 无法确定回仓仓库
    with pytest.raises(ValidationError):
        await ops.restock_return("ORD-404", [StockLine(seed.sku1, 1)])
    # 给了仓库但订单从未发货 → 可退量为 0
    with pytest.raises(ValidationError):
        await ops.restock_return("ORD-404", [StockLine(seed.sku1, 1)], seed.wh_a)
