# tests/services/test_stock_projector.py
from __future__ import annotations

import pytest
from sqlalchemy import update

from codledger.models import ReservationStatus, StockLevel, TransactionType
from codledger.services.errors import InventoryError
from codledger.services.inventory_ops import load_reservation
from codledger.services.ledger_writer import StockLedger, TransactionDraft
from codledger.services.stock_projector import StockLevelProjector
from tests.helpers import assert_projection_matches_ledger, level_of, product_cache


@pytest.mark.asyncio
async def test_apply_creates_level_lazily_and_tracks_ledger(db, seed):
    ledger, projector = StockLedger(), StockLevelProjector()
    assert await level_of(db, seed.sku1, seed.wh_a) == (0, 0)

    async with db.session() as session:
        async with session.begin():
            entry = await ledger.append(
                session,
                TransactionDraft(TransactionType.PURCHASE_IN, 12, seed.sku1, seed.wh_a, reference_id="PO-9"),
            )
            level = await projector.apply(session, entry)
            await projector.refresh_product_cache(session, seed.sku1)

    assert (level.current_quantity, level.reserved_quantity) == (12, 0)
    assert level.version == 2  # insert=1, apply 一次 +1
    assert await level_of(db, seed.sku1, seed.wh_a) == (12, 0)
    assert await product_cache(db, seed.sku1) == 12
    await assert_projection_matches_ledger(db)


@pytest.mark.asyncio
async def test_order_out_consumes_reservation(db, seed, ops):
    await ops.receive_purchase("PO-1", seed.wh_a, [{"product_id": seed.sku1, "quantity": 10}])
    await ops.reserve_for_order("ORD-1", seed.wh_a, [{"product_id": seed.sku1, "quantity": 4}])
    assert await level_of(db, seed.sku1, seed.wh_a) == (10, 4)

    await ops.fulfill_order("ORD-1")
    assert await level_of(db, seed.sku1, seed.wh_a) == (6, 0)
    await assert_projection_matches_ledger(db)


@pytest.mark.asyncio
async def test_recompute_and_rebuild_repair_tampered_row(db, seed, ops):
    await ops.receive_purchase("PO-1", seed.wh_a, [{"product_id": seed.sku2, "quantity": 8}])
    await ops.reserve_for_order("ORD-2", seed.wh_a, [{"product_id": seed.sku2, "quantity": 3}])

    # 手工破坏投影（模拟绕过内核的写入）
    async with db.session() as session:
        async with session.begin():
            await session.execute(
                update(StockLevel)
                .where(StockLevel.product_id == seed.sku2, StockLevel.warehouse_id == seed.wh_a)
                .values(current_quantity=99, reserved_quantity=0)
            )

    projector = StockLevelProjector()
    async with db.session() as session:
        snap = await projector.recompute(session, seed.sku2, seed.wh_a)
    assert (snap.current_quantity, snap.reserved_quantity, snap.available_quantity) == (8, 3, 5)

    async with db.session() as session:
        async with session.begin():
            await projector.rebuild(session, seed.sku2, seed.wh_a)

    assert await level_of(db, seed.sku2, seed.wh_a) == (8, 3)
    assert await product_cache(db, seed.sku2) == 8
    await assert_projection_matches_ledger(db)


@pytest.mark.asyncio
async def test_query_filters_by_product_and_warehouse(db, seed, ops):
    await ops.receive_purchase(
        "PO-2",
        seed.wh_a,
        [
            {"product_id": seed.sku1, "quantity": 1},
            {"product_id": seed.sku2, "quantity": 2},
            {"product_id": seed.sku1, "quantity": 3, "warehouse_id": seed.wh_b},
        ],
    )
    projector = StockLevelProjector()
    async with db.session() as session:
        all_rows = await projector.query(session)
        sku1_rows = await projector.query(session, product_id=seed.sku1)
        wh_b_rows = await projector.query(session, warehouse_id=seed.wh_b)

    assert len(all_rows) == 3
    assert {r.warehouse_id for r in sku1_rows} == {seed.wh_a, seed.wh_b}
    assert [(r.product_id, r.current_quantity) for r in wh_b_rows] == [(seed.sku1, 3)]


@pytest.mark.asyncio
async def test_release_beyond_reserved_is_rejected_not_clamped(db, seed, ops, reconcile):
    await ops.receive_purchase("PO-3", seed.wh_a, [{"product_id": seed.sku2, "quantity": 8}])
    await ops.reserve_for_order("ORD-3", seed.wh_a, [{"product_id": seed.sku2, "quantity": 3}])

    # 投影上的 reserved 被外部改小，低于预占行数量
    async with db.session() as session:
        async with session.begin():
            await session.execute(
                update(StockLevel)
                .where(StockLevel.product_id == seed.sku2, StockLevel.warehouse_id == seed.wh_a)
                .values(reserved_quantity=1)
            )

    with pytest.raises(InventoryError) as ei:
        await ops.release_reservation("ORD-3")
    assert ei.value.error_code == "reservation_mismatch"
    assert ei.value.context["product_id"] == seed.sku2

    # 整笔回滚：预占仍 open，余额未被夹到 0
    async with db.session() as session:
        res = await load_reservation(session, "ORD-3")
    assert res.status == ReservationStatus.OPEN.value
    assert await level_of(db, seed.sku2, seed.wh_a) == (8, 1)

    # 对账修复后可以正常释放
    await reconcile.repair(product_id=seed.sku2)
    released = await ops.release_reservation("ORD-3")
    assert released.released is True
    assert await level_of(db, seed.sku2, seed.wh_a) == (8, 0)
    await assert_projection_matches_ledger(db)


@pytest.mark.asyncio
async def test_recompute_reads_current_through_injected_ledger(db, seed, ops):
    await ops.adjust_stock(seed.sku1, seed.wh_b, 4, "count")
    ledger = StockLedger()
    projector = StockLevelProjector(ledger)
    assert projector.ledger is ledger
    assert ops.projector.ledger is ops.ledger

    async with db.session() as session:
        snap = await projector.recompute(session, seed.sku1, seed.wh_b)
        assert snap.current_quantity == await ledger.sum_for(session, seed.sku1, seed.wh_b) == 4
