# codledger/api/problem.py
"""
统一错误体（Problem）：

    {"error_code", "message", "http_status", "context"?, "details"?, "trace_id"?}

库存内核的 InventoryError 直接映射为 Problem；缺货时附带 shortage 明细，
前端据此逐行提示“要多少 / 可售多少 / 差多少”。
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, TypedDict

from codledger.services.errors import InsufficientStockError, InventoryError


class ProblemDetail(TypedDict, total=False):
    type: str  # validation|shortage|state
    path: str  # e.g. items.0.quantity
    reason: str

    product_id: str
    warehouse_id: str
    required_qty: int
    available_qty: int
    short_qty: int


def new_trace_id() -> str:
    return f"t_{uuid.uuid4().hex[:12]}"


def shortage_detail(exc: InsufficientStockError) -> ProblemDetail:
    return {
        "type": "shortage",
        "product_id": exc.product_id,
        "warehouse_id": exc.warehouse_id,
        "required_qty": exc.required,
        "available_qty": exc.available,
        "short_qty": max(exc.required - exc.available, 0),
    }


@dataclass(frozen=True)
class Problem:
    error_code: str
    message: str
    http_status: int
    context: Dict[str, Any] = field(default_factory=dict)
    details: List[ProblemDetail] = field(default_factory=list)
    trace_id: str = field(default_factory=new_trace_id)

    @classmethod
    def from_inventory_error(cls, exc: InventoryError, request_ctx: Mapping[str, Any]) -> "Problem":
        # 业务上下文覆盖请求上下文（如 path=items[0]）
        ctx = {**request_ctx, **exc.context}
        details = [shortage_detail(exc)] if isinstance(exc, InsufficientStockError) else []
        return cls(
            error_code=exc.error_code,
            message=exc.message,
            http_status=exc.http_status,
            context=ctx,
            details=details,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "error_code": self.error_code,
            "message": self.message,
            "http_status": int(self.http_status),
        }
        if self.context:
            out["context"] = self.context
        if self.details:
            out["details"] = self.details
        out["trace_id"] = self.trace_id
        return out


def make_problem(
    *,
    status_code: int,
    error_code: str,
    message: str,
    context: Optional[Dict[str, Any]] = None,
    details: Optional[List[ProblemDetail]] = None,
    trace_id: Optional[str] = None,
) -> Dict[str, Any]:
    p = Problem(
        error_code=str(error_code),
        message=str(message),
        http_status=int(status_code),
        context=dict(context or {}),
        details=list(details or []),
        trace_id=trace_id or new_trace_id(),
    )
    return p.to_dict()
