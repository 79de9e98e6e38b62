# codledger/schemas/inventory.py
from __future__ import annotations

from datetime import datetime
from typing import Annotated, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from codledger.models.enums import StockStatus


# ========= 通用基类 =========
class _Base(BaseModel):
    """camelCase 出入参，同时接受 snake_case；允许直接由 ORM 对象构造"""

    model_config = ConfigDict(
        from_attributes=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )


Id = Annotated[str, Field(min_length=1, max_length=64)]
Reason = Annotated[str, Field(min_length=1, max_length=255)]


# ========= 仓库 / 履约中心 =========
class WarehouseCreate(_Base):
    name: Annotated[str, Field(min_length=1, max_length=128)]
    fulfillment_center_id: Id
    location: Annotated[Optional[str], Field(None, max_length=128)] = None


class WarehouseSpec(_Base):
    """随履约中心一起创建的仓库"""

    name: Annotated[str, Field(min_length=1, max_length=128)]
    location: Annotated[Optional[str], Field(None, max_length=128)] = None


class FulfillmentCenterCreate(_Base):
    name: Annotated[str, Field(min_length=1, max_length=128)]
    code: Annotated[str, Field(min_length=1, max_length=32)]
    city: Annotated[Optional[str], Field(None, max_length=128)] = None
    warehouses: List[WarehouseSpec] = Field(default_factory=list)


class WarehouseOut(_Base):
    id: str
    name: str
    location: Optional[str] = None
    fulfillment_center_id: str
    created_at: datetime


class FulfillmentCenterOut(_Base):
    id: str
    name: str
    code: str
    city: Optional[str] = None
    created_at: datetime
    warehouses: List[WarehouseOut] = Field(default_factory=list)


# ========= 写操作入参（每个操作一个结构） =========
class AdjustStockIn(_Base):
    """quantity 正数入、负数出；0 由服务层拒绝（zero_quantity）"""

    product_id: Id
    warehouse_id: Id
    quantity: int
    reason: Reason
    user_id: Optional[str] = None


class TransferStockIn(_Base):
    product_id: Id
    from_warehouse_id: Id
    to_warehouse_id: Id
    quantity: int
    reason: Reason
    user_id: Optional[str] = None


class StockLineIn(_Base):
    product_id: Id
    quantity: int  # <= 0 由服务层拒绝（400），与调整 / 调拨一致


class ReceiptLineIn(StockLineIn):
    """warehouse_id 为空时落到采购单默认仓"""

    warehouse_id: Optional[str] = None


class ReserveOrderIn(_Base):
    order_id: Id
    warehouse_id: Id
    items: Annotated[List[StockLineIn], Field(min_length=1)]


class ReceivePurchaseIn(_Base):
    purchase_id: Id
    warehouse_id: Optional[str] = None
    items: Annotated[List[ReceiptLineIn], Field(min_length=1)]
    user_id: Optional[str] = None


class RestockReturnIn(_Base):
    order_id: Id
    warehouse_id: Optional[str] = None
    items: Annotated[List[StockLineIn], Field(min_length=1)]
    user_id: Optional[str] = None


class FulfillOrderIn(_Base):
    user_id: Optional[str] = None


# ========= 出参 =========
class StockLevelOut(_Base):
    product_id: str
    warehouse_id: str
    warehouse_name: Optional[str] = None
    current_quantity: int
    reserved_quantity: int
    available_quantity: int
    updated_at: Optional[datetime] = None


class TransactionOut(_Base):
    id: int
    type: str
    quantity: int
    product_id: str
    warehouse_id: str
    reference_id: Optional[str] = None
    note: Optional[str] = None
    user_id: Optional[str] = None
    created_at: datetime
    product_name: Optional[str] = None
    product_sku: Optional[str] = None
    warehouse_name: Optional[str] = None


class TransferOut(_Base):
    reference_id: str
    source: StockLevelOut
    destination: StockLevelOut
    entries: List[TransactionOut]


class ReservationLineOut(_Base):
    product_id: str
    quantity: int


class ReservationOut(_Base):
    order_id: str
    warehouse_id: str
    status: str
    created: bool = True
    lines: List[ReservationLineOut]
    levels: List[StockLevelOut] = Field(default_factory=list)


class ReleaseOut(_Base):
    order_id: str
    released: bool
    status: Optional[str] = None
    levels: List[StockLevelOut] = Field(default_factory=list)


class MovementOut(_Base):
    reference_id: str
    entries: List[TransactionOut]
    levels: List[StockLevelOut]


class WarehouseBreakdown(_Base):
    warehouse_id: str
    current: int
    reserved: int
    available: int


class ProductStockOut(_Base):
    id: str
    sku: str
    name: str
    unit_cost: float
    reorder_point: Optional[int] = None
    current_stock: int
    reserved_stock: int
    available_stock: int
    status: StockStatus
    warehouse_breakdown: List[WarehouseBreakdown]


class InventoryLevelsOut(_Base):
    product_id: str
    total_current: int
    total_reserved: int
    total_available: int
    warehouses: List[StockLevelOut]


class DashboardOut(_Base):
    total_inventory_value: float
    healthy_count: int
    low_stock_count: int
    out_of_stock_count: int
    total_products: int


class StockDriftOut(_Base):
    product_id: str
    warehouse_id: str
    projected_current: int
    ledger_current: int
    projected_reserved: int
    expected_reserved: int


class ProductCacheDriftOut(_Base):
    product_id: str
    cached: int
    expected: int


class ReconcileOut(_Base):
    ok: bool
    checked_pairs: int
    drifts: List[StockDriftOut]
    product_cache_drifts: List[ProductCacheDriftOut]
