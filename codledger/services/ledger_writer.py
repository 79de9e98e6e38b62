# codledger/services/ledger_writer.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from codledger.metrics import LEDGER_ENTRIES
from codledger.models.enums import TransactionType
from codledger.models.product import Product
from codledger.models.stock_ledger import InventoryTransaction
from codledger.services.errors import NotFoundError, ValidationError, ZeroQuantityError
from codledger.services.warehouse_registry import require_warehouse


@dataclass(frozen=True)
class TransactionDraft:
    """待落账的一条动账（尚未分配 id / 时间戳）"""

    type: Union[TransactionType, str]
    quantity: int
    product_id: str
    warehouse_id: str
    reference_id: Optional[str] = None
    note: Optional[str] = None
    user_id: Optional[str] = None


async def require_product(session: AsyncSession, product_id: str) -> Product:
    """商品不存在或已归档（Archived）统一视为 404"""
    product = await session.get(Product, product_id)
    if product is None or product.is_deleted:
        raise NotFoundError(
            f"product {product_id} not found",
            context={"product_id": product_id},
        )
    return product


def _coerce_type(value: Union[TransactionType, str]) -> TransactionType:
    try:
        return TransactionType(value)
    except ValueError:
        raise ValidationError(
            f"unknown transaction type {value!r}", context={"type": str(value)}
        ) from None


class StockLedger:
    """
    台账写入 / 查询。只增不改：不提供 update / delete。

    append 只负责“校验 + 落一行 + flush”，不碰余额；
    余额由 StockLevelProjector 在同一事务内根据返回的 entry 推进。
    """

    async def append(self, session: AsyncSession, draft: TransactionDraft) -> InventoryTransaction:
        tx_type = _coerce_type(draft.type)
        qty = int(draft.quantity)
        if qty == 0:
            raise ZeroQuantityError(
                "ledger quantity must not be zero",
                context={"product_id": draft.product_id, "warehouse_id": draft.warehouse_id},
            )
        if tx_type.direction * qty < 0:
            raise ValidationError(
                f"{tx_type.value} requires a {'positive' if tx_type.direction > 0 else 'negative'} quantity",
                context={"type": tx_type.value, "quantity": qty},
            )

        await require_product(session, draft.product_id)
        await require_warehouse(session, draft.warehouse_id)

        entry = InventoryTransaction(
            type=tx_type.value,
            quantity=qty,
            product_id=draft.product_id,
            warehouse_id=draft.warehouse_id,
            reference_id=draft.reference_id,
            note=draft.note,
            user_id=draft.user_id,
        )
        session.add(entry)
        await session.flush()

        LEDGER_ENTRIES.labels(type=tx_type.value).inc()
        return entry

    async def list_entries(
        self,
        session: AsyncSession,
        *,
        warehouse_id: Optional[str] = None,
        product_id: Optional[str] = None,
        reference_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[InventoryTransaction]:
        stmt = select(InventoryTransaction)
        if warehouse_id:
            stmt = stmt.where(InventoryTransaction.warehouse_id == warehouse_id)
        if product_id:
            stmt = stmt.where(InventoryTransaction.product_id == product_id)
        if reference_id:
            stmt = stmt.where(InventoryTransaction.reference_id == reference_id)
        stmt = stmt.order_by(InventoryTransaction.id.desc()).limit(int(limit))
        return list(await session.scalars(stmt))

    async def sum_for(self, session: AsyncSession, product_id: str, warehouse_id: str) -> int:
        total = await session.scalar(
            select(func.coalesce(func.sum(InventoryTransaction.quantity), 0)).where(
                InventoryTransaction.product_id == product_id,
                InventoryTransaction.warehouse_id == warehouse_id,
            )
        )
        return int(total or 0)

    async def sums_by_product(
        self,
        session: AsyncSession,
        *,
        reference_id: str,
        tx_type: TransactionType,
    ) -> Dict[str, int]:
        """某单据下某类动账按商品汇总（跨仓），退货回仓上限校验用"""
        rows = await session.execute(
            select(InventoryTransaction.product_id, func.sum(InventoryTransaction.quantity))
            .where(
                InventoryTransaction.reference_id == reference_id,
                InventoryTransaction.type == tx_type.value,
            )
            .group_by(InventoryTransaction.product_id)
        )
        return {pid: int(total or 0) for pid, total in rows.all()}
