# codledger/services/inventory_types.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Union

from codledger.models.reservation import OrderReservation
from codledger.models.stock_ledger import InventoryTransaction
from codledger.models.stock_level import StockLevel
from codledger.services.errors import ValidationError, ZeroQuantityError


@dataclass(frozen=True)
class StockLine:
    """
    一行数量输入（预占 / 收货 / 退货回仓共用）：
    warehouse_id 仅收货时用于按行覆盖入库仓。
    """

    product_id: str
    quantity: int
    warehouse_id: Optional[str] = None


LineInput = Union[StockLine, Mapping[str, Any]]


def normalize_lines(items: List[LineInput], *, field_name: str = "items") -> List[StockLine]:
    """
    兼容 dict / StockLine 输入；同一 (product, warehouse) 合并数量。
    数量必须为正；空列表直接拒绝。
    """
    if not items:
        raise ValidationError(f"{field_name} must not be empty", context={"path": field_name})

    merged: dict[tuple[str, Optional[str]], int] = {}
    for idx, raw in enumerate(items):
        if isinstance(raw, StockLine):
            line = raw
        else:
            line = StockLine(
                product_id=str(raw.get("product_id") or raw.get("productId") or ""),
                quantity=raw.get("quantity", 0),
                warehouse_id=raw.get("warehouse_id") or raw.get("warehouseId"),
            )
        if not line.product_id:
            raise ValidationError(
                f"{field_name}[{idx}].product_id is required", context={"path": f"{field_name}[{idx}]"}
            )
        qty = int(line.quantity)
        if qty == 0:
            raise ZeroQuantityError(
                f"{field_name}[{idx}].quantity must not be zero",
                context={"path": f"{field_name}[{idx}]", "product_id": line.product_id},
            )
        if qty < 0:
            raise ValidationError(
                f"{field_name}[{idx}].quantity must be > 0",
                context={"path": f"{field_name}[{idx}]", "quantity": qty},
            )
        key = (line.product_id, line.warehouse_id)
        merged[key] = merged.get(key, 0) + qty

    return [StockLine(product_id=pid, quantity=q, warehouse_id=wid) for (pid, wid), q in merged.items()]


@dataclass
class TransferResult:
    reference_id: str
    source: StockLevel
    destination: StockLevel
    entries: List[InventoryTransaction] = field(default_factory=list)


@dataclass
class ReservationResult:
    """created=False 表示命中已有 open 预占（幂等返回）"""

    reservation: OrderReservation
    levels: List[StockLevel]
    created: bool = True


@dataclass
class ReleaseResult:
    order_id: str
    released: bool
    status: Optional[str] = None
    levels: List[StockLevel] = field(default_factory=list)


@dataclass
class MovementResult:
    """发货 / 收货 / 退货回仓：落账明细 + 变更后的余额"""

    reference_id: str
    entries: List[InventoryTransaction]
    levels: List[StockLevel]
