# codledger/models/enums.py
from __future__ import annotations

from enum import StrEnum


class TransactionType(StrEnum):
    """
    台账动账类型（落入 inventory_transactions.type）：

    - PURCHASE_IN     采购收货入库（正数）
    - ORDER_OUT       订单发货出库（负数，同时消耗预占）
    - ADJUSTMENT      手工调整 / 报损 / 盘点纠偏（正负均可）
    - TRANSFER_OUT    仓间调拨-出（负数）
    - TRANSFER_IN     仓间调拨-入（正数）
    - RETURN_RESTOCK  退货回仓（正数）
    """

    PURCHASE_IN = "purchase_in"
    ORDER_OUT = "order_out"
    ADJUSTMENT = "adjustment"
    TRANSFER_OUT = "transfer_out"
    TRANSFER_IN = "transfer_in"
    RETURN_RESTOCK = "return_restock"

    @property
    def direction(self) -> int:
        """+1 只能入、-1 只能出、0 正负均可"""
        if self in (TransactionType.PURCHASE_IN, TransactionType.TRANSFER_IN, TransactionType.RETURN_RESTOCK):
            return 1
        if self in (TransactionType.ORDER_OUT, TransactionType.TRANSFER_OUT):
            return -1
        return 0


class ReservationStatus(StrEnum):
    OPEN = "open"
    RELEASED = "released"
    FULFILLED = "fulfilled"


class StockStatus(StrEnum):
    HEALTHY = "healthy"
    LOW_STOCK = "lowStock"
    OUT_OF_STOCK = "outOfStock"


class ProductStatus(StrEnum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    ARCHIVED = "Archived"
