# codledger/services/errors.py
from __future__ import annotations

from typing import Any, Dict, Optional


class InventoryError(Exception):
    """
    库存内核统一业务异常基类：
    - error_code：稳定错误码（前端 / 调用方据此分支）
    - http_status：API 层映射用
    - context：定位信息（product_id / warehouse_id / 数量等）
    """

    error_code = "inventory_error"
    http_status = 400

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.context: Dict[str, Any] = dict(context or {})


class NotFoundError(InventoryError):
    """引用的商品 / 仓库 / 预占不存在"""

    error_code = "not_found"
    http_status = 404


class ValidationError(InventoryError):
    """入参不合法：在任何写入之前拒绝"""

    error_code = "validation_error"
    http_status = 400


class ZeroQuantityError(ValidationError):
    error_code = "zero_quantity"


class InvalidTransferError(ValidationError):
    error_code = "invalid_transfer"


class InsufficientStockError(InventoryError):
    """可售量不足：整单回滚，不做部分落账"""

    error_code = "insufficient_stock"
    http_status = 409

    def __init__(
        self,
        message: str,
        *,
        product_id: str,
        warehouse_id: str,
        required: int,
        available: int,
    ) -> None:
        super().__init__(
            message,
            context={
                "product_id": product_id,
                "warehouse_id": warehouse_id,
                "required_qty": int(required),
                "available_qty": int(available),
                "short_qty": max(int(required) - int(available), 0),
            },
        )
        self.product_id = product_id
        self.warehouse_id = warehouse_id
        self.required = int(required)
        self.available = int(available)


class ReferentialIntegrityError(InventoryError):
    """仍被台账 / 余额引用的主档不允许删除"""

    error_code = "referential_integrity"
    http_status = 409


class ConcurrencyConflictError(InventoryError):
    """锁冲突 / 乐观版本过期；内部有限次重试后才抛给调用方"""

    error_code = "concurrency_conflict"
    http_status = 503
