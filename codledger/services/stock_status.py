# codledger/services/stock_status.py
from __future__ import annotations

from typing import Optional

from codledger.models.enums import StockStatus

DEFAULT_REORDER_POINT = 10


def classify_stock(
    available: int,
    reorder_point: Optional[int] = None,
    *,
    default_reorder_point: int = DEFAULT_REORDER_POINT,
) -> StockStatus:
    """
    库存健康度（看可售量，不看在库）：

    - available <= 0                   → outOfStock（负可售同样视为缺货）
    - 0 < available <= reorder_point   → lowStock
    - 其它                             → healthy

    reorder_point 为空时取 default_reorder_point。
    """
    threshold = default_reorder_point if reorder_point is None else int(reorder_point)
    qty = int(available)
    if qty <= 0:
        return StockStatus.OUT_OF_STOCK
    if qty <= threshold:
        return StockStatus.LOW_STOCK
    return StockStatus.HEALTHY
