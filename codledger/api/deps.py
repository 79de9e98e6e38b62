# codledger/api/deps.py
# 服务实例在 create_app() 中显式构造并挂到 app.state，路由通过依赖取用
from __future__ import annotations

from fastapi import Request

from codledger.services.inventory_ops import InventoryOpsService
from codledger.services.inventory_query import InventoryQueryService
from codledger.services.reconcile_service import ReconcileService
from codledger.services.warehouse_registry import WarehouseRegistry


def get_ops_service(request: Request) -> InventoryOpsService:
    return request.app.state.ops


def get_query_service(request: Request) -> InventoryQueryService:
    return request.app.state.query


def get_warehouse_registry(request: Request) -> WarehouseRegistry:
    return request.app.state.warehouses


def get_reconcile_service(request: Request) -> ReconcileService:
    return request.app.state.reconcile
