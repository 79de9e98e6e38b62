# tests/api/test_inventory_api.py
from __future__ import annotations

import httpx
import pytest

from codledger.main import create_app


def _assert_problem(resp: httpx.Response, status: int, code: str) -> dict:
    assert resp.status_code == status, resp.text
    body = resp.json()
    assert body["error_code"] == code
    assert body["http_status"] == status
    assert body["message"]
    assert body["trace_id"].startswith("t_")
    return body


@pytest.mark.asyncio
async def test_ping_and_metrics(client: httpx.AsyncClient):
    r = await client.get("/ping")
    assert r.status_code == 200
    assert r.json() == {"pong": True}

    m = await client.get("/metrics")
    assert m.status_code == 200
    assert "inventory_operations_total" in m.text


@pytest.mark.asyncio
async def test_adjust_and_read_levels_camel_case(client: httpx.AsyncClient, seed):
    r = await client.post(
        "/inventory/adjust",
        json={"productId": seed.sku1, "warehouseId": seed.wh_a, "quantity": 10, "reason": "count"},
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert (body["currentQuantity"], body["reservedQuantity"], body["availableQuantity"]) == (10, 0, 10)

    # snake_case 入参同样接受
    r = await client.post(
        "/inventory/adjust",
        json={"product_id": seed.sku1, "warehouse_id": seed.wh_a, "quantity": -3, "reason": "damaged"},
    )
    assert r.json()["currentQuantity"] == 7

    lv = (await client.get(f"/inventory/levels/{seed.sku1}")).json()
    assert (lv["totalCurrent"], lv["totalAvailable"]) == (7, 7)
    assert lv["warehouses"][0]["warehouseName"] == "WH-A"

    txs = (await client.get("/inventory/transactions", params={"productId": seed.sku1})).json()
    assert [(t["type"], t["quantity"], t["referenceId"]) for t in txs] == [
        ("adjustment", -3, "damaged"),
        ("adjustment", 10, "count"),
    ]
    assert txs[0]["productSku"] == "SKU-0001"


@pytest.mark.asyncio
async def test_error_status_mapping(client: httpx.AsyncClient, seed):
    # 0 数量 → 400 zero_quantity
    r = await client.post(
        "/inventory/adjust",
        json={"productId": seed.sku1, "warehouseId": seed.wh_a, "quantity": 0, "reason": "noop"},
    )
    _assert_problem(r, 400, "zero_quantity")

    # 未知商品 → 404
    r = await client.post(
        "/inventory/adjust",
        json={"productId": "ghost", "warehouseId": seed.wh_a, "quantity": 1, "reason": "count"},
    )
    _assert_problem(r, 404, "not_found")

    # 可售不足 → 409 + shortage 明细
    r = await client.post(
        "/inventory/transfer",
        json={
            "productId": seed.sku1,
            "fromWarehouseId": seed.wh_a,
            "toWarehouseId": seed.wh_b,
            "quantity": 5,
            "reason": "rebalance",
        },
    )
    body = _assert_problem(r, 409, "insufficient_stock")
    [detail] = body["details"]
    assert detail["type"] == "shortage"
    assert (detail["required_qty"], detail["available_qty"], detail["short_qty"]) == (5, 0, 5)
    assert body["context"]["path"] == "/inventory/transfer"

    # 同仓调拨 → 400 invalid_transfer
    r = await client.post(
        "/inventory/transfer",
        json={
            "productId": seed.sku1,
            "fromWarehouseId": seed.wh_a,
            "toWarehouseId": seed.wh_a,
            "quantity": 1,
            "reason": "loop",
        },
    )
    _assert_problem(r, 400, "invalid_transfer")

    # 行数量为 0：与调整一致 → 400 zero_quantity
    zero_line = [{"productId": seed.sku1, "quantity": 0}]
    r = await client.post(
        "/inventory/reservations", json={"orderId": "ORD-1", "warehouseId": seed.wh_a, "items": zero_line}
    )
    body = _assert_problem(r, 400, "zero_quantity")
    assert body["context"]["path"] == "items[0]"
    r = await client.post(
        "/inventory/purchases/receive", json={"purchaseId": "PO-1", "warehouseId": seed.wh_a, "items": zero_line}
    )
    _assert_problem(r, 400, "zero_quantity")
    r = await client.post(
        "/inventory/returns/restock", json={"orderId": "ORD-1", "warehouseId": seed.wh_a, "items": zero_line}
    )
    _assert_problem(r, 400, "zero_quantity")

    # 负数行 → 400 validation_error
    r = await client.post(
        "/inventory/reservations",
        json={"orderId": "ORD-1", "warehouseId": seed.wh_a, "items": [{"productId": seed.sku1, "quantity": -2}]},
    )
    _assert_problem(r, 400, "validation_error")

    # 结构校验失败（缺字段 / 类型不对）→ 422
    r = await client.post(
        "/inventory/reservations",
        json={"orderId": "ORD-1", "warehouseId": seed.wh_a, "items": [{"quantity": "many"}]},
    )
    body = _assert_problem(r, 422, "request_validation_error")
    assert body["details"][0]["type"] == "validation"


@pytest.mark.asyncio
async def test_order_lifecycle_over_http(client: httpx.AsyncClient, seed):
    r = await client.post(
        "/inventory/purchases/receive",
        json={
            "purchaseId": "PO-1",
            "warehouseId": seed.wh_a,
            "items": [{"productId": seed.sku1, "quantity": 10}],
        },
    )
    assert r.status_code == 200, r.text
    assert r.json()["entries"][0]["type"] == "purchase_in"

    r = await client.post(
        "/inventory/reservations",
        json={"orderId": "ORD-1", "warehouseId": seed.wh_a, "items": [{"productId": seed.sku1, "quantity": 4}]},
    )
    assert r.status_code == 200, r.text
    res = r.json()
    assert (res["status"], res["created"]) == ("open", True)
    assert res["levels"][0]["availableQuantity"] == 6

    r = await client.post("/inventory/reservations/ORD-1/fulfill", json={"userId": "picker-1"})
    assert r.status_code == 200, r.text
    out = r.json()
    assert [(e["type"], e["quantity"], e["userId"]) for e in out["entries"]] == [("order_out", -4, "picker-1")]
    assert out["levels"][0]["currentQuantity"] == 6

    r = await client.post("/inventory/reservations/ORD-1/release")
    assert r.json() == {"orderId": "ORD-1", "released": False, "status": "fulfilled", "levels": []}

    r = await client.post(
        "/inventory/returns/restock",
        json={"orderId": "ORD-1", "items": [{"productId": seed.sku1, "quantity": 1}]},
    )
    assert r.status_code == 200, r.text
    assert r.json()["levels"][0]["currentQuantity"] == 7

    r = await client.post("/inventory/reservations/ORD-404/fulfill")
    _assert_problem(r, 404, "not_found")


@pytest.mark.asyncio
async def test_stock_list_and_dashboard(client: httpx.AsyncClient, seed):
    await client.post(
        "/inventory/purchases/receive",
        json={
            "purchaseId": "PO-1",
            "warehouseId": seed.wh_a,
            "items": [
                {"productId": seed.sku1, "quantity": 20},
                {"productId": seed.sku2, "quantity": 4, "warehouseId": seed.wh_b},
            ],
        },
    )

    rows = (await client.get("/inventory/stock", params={"warehouseId": "all"})).json()
    by_sku = {r["sku"]: r for r in rows}
    assert by_sku["SKU-0001"]["status"] == "healthy"
    assert by_sku["SKU-0001"]["unitCost"] == 12.5
    assert by_sku["SKU-0002"]["status"] == "lowStock"
    assert by_sku["SKU-0002"]["warehouseBreakdown"] == [
        {"warehouseId": seed.wh_b, "current": 4, "reserved": 0, "available": 4}
    ]

    d = (await client.get("/inventory/dashboard")).json()
    assert d == {
        "totalInventoryValue": 262.0,
        "healthyCount": 1,
        "lowStockCount": 1,
        "outOfStockCount": 0,
        "totalProducts": 2,
    }


@pytest.mark.asyncio
async def test_warehouse_endpoints(client: httpx.AsyncClient, seed):
    r = await client.post(
        "/inventory/fulfillment-centers",
        json={"name": "Rabat FC", "code": "rba", "warehouses": [{"name": "RB-1"}]},
    )
    assert r.status_code == 201, r.text
    fc = r.json()
    assert fc["code"] == "RBA"
    assert [w["name"] for w in fc["warehouses"]] == ["RB-1"]

    r = await client.post(
        "/inventory/warehouses", json={"name": "RB-2", "fulfillmentCenterId": fc["id"], "location": "dock"}
    )
    assert r.status_code == 201
    new_id = r.json()["id"]

    listed = (await client.get("/inventory/warehouses", params={"fulfillmentCenterId": fc["id"]})).json()
    assert {w["name"] for w in listed} == {"RB-1", "RB-2"}

    assert (await client.delete(f"/inventory/warehouses/{new_id}")).status_code == 204
    _assert_problem(await client.delete(f"/inventory/warehouses/{new_id}"), 404, "not_found")

    await client.post(
        "/inventory/adjust",
        json={"productId": seed.sku1, "warehouseId": seed.wh_a, "quantity": 1, "reason": "count"},
    )
    _assert_problem(await client.delete(f"/inventory/warehouses/{seed.wh_a}"), 409, "referential_integrity")

    _assert_problem(
        await client.post("/inventory/fulfillment-centers", json={"name": "Dup", "code": "CAS"}),
        400,
        "validation_error",
    )


@pytest.mark.asyncio
async def test_reconcile_endpoints(client: httpx.AsyncClient, seed):
    await client.post(
        "/inventory/adjust",
        json={"productId": seed.sku1, "warehouseId": seed.wh_a, "quantity": 3, "reason": "count"},
    )

    r = await client.get("/inventory/reconcile")
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["checkedPairs"] == 1
    assert body["drifts"] == [] and body["productCacheDrifts"] == []

    r = await client.post("/inventory/reconcile/repair", params={"productId": seed.sku1})
    assert r.status_code == 200
    assert r.json()["ok"] is True


@pytest.mark.asyncio
async def test_get_warehouse_and_filter_transactions_by_reference(client: httpx.AsyncClient, seed):
    r = await client.get(f"/inventory/warehouses/{seed.wh_a}")
    assert r.status_code == 200, r.text
    assert (r.json()["id"], r.json()["name"]) == (seed.wh_a, "WH-A")
    _assert_problem(await client.get("/inventory/warehouses/ghost-wh"), 404, "not_found")

    for po, qty in (("PO-1", 3), ("PO-2", 5)):
        await client.post(
            "/inventory/purchases/receive",
            json={"purchaseId": po, "warehouseId": seed.wh_a, "items": [{"productId": seed.sku1, "quantity": qty}]},
        )

    txs = (await client.get("/inventory/transactions", params={"referenceId": "PO-2"})).json()
    assert [(t["referenceId"], t["quantity"], t["warehouseName"]) for t in txs] == [("PO-2", 5, "WH-A")]


@pytest.mark.asyncio
async def test_debug_flag_reaches_app(settings, db):
    assert create_app(settings, database=db).debug is False
    assert create_app(settings.model_copy(update={"DEBUG": True}), database=db).debug is True
