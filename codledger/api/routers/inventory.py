# codledger/api/routers/inventory.py
from __future__ import annotations

import dataclasses
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status

from codledger.api.deps import (
    get_ops_service,
    get_query_service,
    get_reconcile_service,
    get_warehouse_registry,
)
from codledger.models.stock_level import StockLevel
from codledger.schemas.inventory import (
    AdjustStockIn,
    DashboardOut,
    FulfillmentCenterCreate,
    FulfillmentCenterOut,
    FulfillOrderIn,
    InventoryLevelsOut,
    MovementOut,
    ProductStockOut,
    ReceivePurchaseIn,
    ReconcileOut,
    ReleaseOut,
    ReservationLineOut,
    ReservationOut,
    ReserveOrderIn,
    RestockReturnIn,
    StockLevelOut,
    TransactionOut,
    TransferOut,
    TransferStockIn,
    WarehouseBreakdown,
    WarehouseCreate,
    WarehouseOut,
)
from codledger.services.inventory_ops import InventoryOpsService
from codledger.services.inventory_query import InventoryQueryService, TransactionView
from codledger.services.inventory_types import MovementResult, StockLine
from codledger.services.reconcile_service import ReconcileReport, ReconcileService
from codledger.services.warehouse_registry import WarehouseRegistry

router = APIRouter(prefix="/inventory", tags=["inventory"])


# ---------------- 出参转换 ----------------
def _level_out(level: StockLevel, names: Optional[Dict[str, str]] = None) -> StockLevelOut:
    out = StockLevelOut.model_validate(level)
    if names:
        out.warehouse_name = names.get(level.warehouse_id)
    return out


def _tx_out(view: TransactionView) -> TransactionOut:
    out = TransactionOut.model_validate(view.entry)
    out.product_name = view.product_name
    out.product_sku = view.product_sku
    out.warehouse_name = view.warehouse_name
    return out


def _movement_out(res: MovementResult) -> MovementOut:
    return MovementOut(
        reference_id=res.reference_id,
        entries=[TransactionOut.model_validate(e) for e in res.entries],
        levels=[_level_out(lv) for lv in res.levels],
    )


def _reconcile_out(report: ReconcileReport) -> ReconcileOut:
    return ReconcileOut(ok=report.ok, **dataclasses.asdict(report))


# ---------------- 仓库 / 履约中心 ----------------
@router.get("/warehouses", response_model=List[WarehouseOut])
async def list_warehouses(
    fulfillment_center_id: Optional[str] = Query(None, alias="fulfillmentCenterId"),
    registry: WarehouseRegistry = Depends(get_warehouse_registry),
):
    return await registry.list_warehouses(fulfillment_center_id=fulfillment_center_id)


@router.post("/warehouses", response_model=WarehouseOut, status_code=status.HTTP_201_CREATED)
async def create_warehouse(
    body: WarehouseCreate,
    registry: WarehouseRegistry = Depends(get_warehouse_registry),
):
    return await registry.create_warehouse(
        name=body.name,
        fulfillment_center_id=body.fulfillment_center_id,
        location=body.location,
    )


@router.get("/warehouses/{warehouse_id}", response_model=WarehouseOut)
async def get_warehouse(
    warehouse_id: str,
    registry: WarehouseRegistry = Depends(get_warehouse_registry),
):
    return await registry.get_warehouse(warehouse_id)


@router.delete("/warehouses/{warehouse_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_warehouse(
    warehouse_id: str,
    registry: WarehouseRegistry = Depends(get_warehouse_registry),
) -> None:
    """被台账 / 余额 / 预占引用时返回 409（referential_integrity）"""
    await registry.delete_warehouse(warehouse_id)


@router.get("/fulfillment-centers", response_model=List[FulfillmentCenterOut])
async def list_fulfillment_centers(registry: WarehouseRegistry = Depends(get_warehouse_registry)):
    return await registry.list_fulfillment_centers()


@router.post(
    "/fulfillment-centers", response_model=FulfillmentCenterOut, status_code=status.HTTP_201_CREATED
)
async def create_fulfillment_center(
    body: FulfillmentCenterCreate,
    registry: WarehouseRegistry = Depends(get_warehouse_registry),
):
    return await registry.create_fulfillment_center(
        name=body.name,
        code=body.code,
        city=body.city,
        warehouses=[w.model_dump() for w in body.warehouses],
    )


# ---------------- 查询 ----------------
@router.get("/stock", response_model=List[ProductStockOut])
async def list_stock(
    warehouse_id: Optional[str] = Query(None, alias="warehouseId"),
    query: InventoryQueryService = Depends(get_query_service),
):
    """按商品聚合的余额列表；warehouseId=all 视为不过滤"""
    rows = await query.list_products_with_stock(warehouse_id)
    return [
        ProductStockOut(
            id=r.product.id,
            sku=r.product.sku,
            name=r.product.name,
            unit_cost=float(r.product.unit_cost or 0),
            reorder_point=r.product.reorder_point,
            current_stock=r.current_stock,
            reserved_stock=r.reserved_stock,
            available_stock=r.available_stock,
            status=r.status,
            warehouse_breakdown=[
                WarehouseBreakdown(
                    warehouse_id=lv.warehouse_id,
                    current=lv.current_quantity,
                    reserved=lv.reserved_quantity,
                    available=lv.available_quantity,
                )
                for lv in r.levels
            ],
        )
        for r in rows
    ]


@router.get("/levels/{product_id}", response_model=InventoryLevelsOut)
async def get_inventory_levels(
    product_id: str,
    query: InventoryQueryService = Depends(get_query_service),
):
    res = await query.get_inventory_levels(product_id)
    return InventoryLevelsOut(
        product_id=res.product_id,
        total_current=res.total_current,
        total_reserved=res.total_reserved,
        total_available=res.total_available,
        warehouses=[_level_out(lv, res.warehouse_names) for lv in res.levels],
    )


@router.get("/transactions", response_model=List[TransactionOut])
async def list_transactions(
    warehouse_id: Optional[str] = Query(None, alias="warehouseId"),
    product_id: Optional[str] = Query(None, alias="productId"),
    reference_id: Optional[str] = Query(None, alias="referenceId"),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    query: InventoryQueryService = Depends(get_query_service),
):
    """台账流水，最新在前"""
    views = await query.list_transactions(
        warehouse_id=warehouse_id, product_id=product_id, reference_id=reference_id, limit=limit
    )
    return [_tx_out(v) for v in views]


@router.get("/dashboard", response_model=DashboardOut)
async def dashboard(
    warehouse_id: Optional[str] = Query(None, alias="warehouseId"),
    query: InventoryQueryService = Depends(get_query_service),
):
    m = await query.dashboard_metrics(warehouse_id)
    return DashboardOut(
        total_inventory_value=float(m.total_inventory_value),
        healthy_count=m.healthy_count,
        low_stock_count=m.low_stock_count,
        out_of_stock_count=m.out_of_stock_count,
        total_products=m.total_products,
    )


# ---------------- 写操作 ----------------
@router.post("/adjust", response_model=StockLevelOut)
async def adjust_stock(
    body: AdjustStockIn,
    ops: InventoryOpsService = Depends(get_ops_service),
):
    level = await ops.adjust_stock(
        body.product_id,
        body.warehouse_id,
        body.quantity,
        body.reason,
        user_id=body.user_id,
    )
    return _level_out(level)


@router.post("/transfer", response_model=TransferOut)
async def transfer_stock(
    body: TransferStockIn,
    ops: InventoryOpsService = Depends(get_ops_service),
):
    res = await ops.transfer_stock(
        body.product_id,
        body.from_warehouse_id,
        body.to_warehouse_id,
        body.quantity,
        body.reason,
        user_id=body.user_id,
    )
    return TransferOut(
        reference_id=res.reference_id,
        source=_level_out(res.source),
        destination=_level_out(res.destination),
        entries=[TransactionOut.model_validate(e) for e in res.entries],
    )


@router.post("/reservations", response_model=ReservationOut)
async def reserve_for_order(
    body: ReserveOrderIn,
    ops: InventoryOpsService = Depends(get_ops_service),
):
    res = await ops.reserve_for_order(
        body.order_id,
        body.warehouse_id,
        [StockLine(product_id=it.product_id, quantity=it.quantity) for it in body.items],
    )
    r = res.reservation
    return ReservationOut(
        order_id=r.order_id,
        warehouse_id=r.warehouse_id,
        status=r.status,
        created=res.created,
        lines=[ReservationLineOut(product_id=ln.product_id, quantity=ln.quantity) for ln in r.lines],
        levels=[_level_out(lv) for lv in res.levels],
    )


@router.post("/reservations/{order_id}/release", response_model=ReleaseOut)
async def release_reservation(
    order_id: str,
    ops: InventoryOpsService = Depends(get_ops_service),
):
    """幂等：未知订单或已关闭的预占返回 released=false"""
    res = await ops.release_reservation(order_id)
    return ReleaseOut(
        order_id=res.order_id,
        released=res.released,
        status=res.status,
        levels=[_level_out(lv) for lv in res.levels],
    )


@router.post("/reservations/{order_id}/fulfill", response_model=MovementOut)
async def fulfill_order(
    order_id: str,
    body: Optional[FulfillOrderIn] = None,
    ops: InventoryOpsService = Depends(get_ops_service),
):
    res = await ops.fulfill_order(order_id, user_id=body.user_id if body else None)
    return _movement_out(res)


@router.post("/purchases/receive", response_model=MovementOut)
async def receive_purchase(
    body: ReceivePurchaseIn,
    ops: InventoryOpsService = Depends(get_ops_service),
):
    res = await ops.receive_purchase(
        body.purchase_id,
        body.warehouse_id,
        [
            StockLine(product_id=it.product_id, quantity=it.quantity, warehouse_id=it.warehouse_id)
            for it in body.items
        ],
        user_id=body.user_id,
    )
    return _movement_out(res)


@router.post("/returns/restock", response_model=MovementOut)
async def restock_return(
    body: RestockReturnIn,
    ops: InventoryOpsService = Depends(get_ops_service),
):
    res = await ops.restock_return(
        body.order_id,
        [StockLine(product_id=it.product_id, quantity=it.quantity) for it in body.items],
        body.warehouse_id,
        user_id=body.user_id,
    )
    return _movement_out(res)


# ---------------- 对账 ----------------
@router.get("/reconcile", response_model=ReconcileOut)
async def reconcile_check(
    product_id: Optional[str] = Query(None, alias="productId"),
    warehouse_id: Optional[str] = Query(None, alias="warehouseId"),
    reconcile: ReconcileService = Depends(get_reconcile_service),
):
    report = await reconcile.check(product_id=product_id, warehouse_id=warehouse_id)
    return _reconcile_out(report)


@router.post("/reconcile/repair", response_model=ReconcileOut)
async def reconcile_repair(
    product_id: Optional[str] = Query(None, alias="productId"),
    warehouse_id: Optional[str] = Query(None, alias="warehouseId"),
    reconcile: ReconcileService = Depends(get_reconcile_service),
):
    """返回修复前的差异报告"""
    report = await reconcile.repair(product_id=product_id, warehouse_id=warehouse_id)
    return _reconcile_out(report)
