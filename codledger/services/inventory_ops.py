# codledger/services/inventory_ops.py
"""
库存内核写入口：所有改变在库 / 预占的操作都必须经过这里。

每个公开方法 = 一个工作单元：
    进程内按 key 加锁 → begin → 校验 → 台账 append → 投影推进 → commit
任何一步失败整单回滚；DB 并发冲突按配置有限次重试，超限抛 ConcurrencyConflictError。
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from codledger.core.config import AppSettings
from codledger.core.tx import run_in_tx, run_read
from codledger.db.base import utc_now
from codledger.db.session import Database
from codledger.metrics import INVENTORY_FAILS, INVENTORY_OPS, OP_LATENCY
from codledger.models.enums import ReservationStatus, TransactionType
from codledger.models.reservation import OrderReservation, OrderReservationLine
from codledger.models.stock_level import StockLevel
from codledger.services.errors import (
    ConcurrencyConflictError,
    InsufficientStockError,
    InvalidTransferError,
    InventoryError,
    NotFoundError,
    ValidationError,
    ZeroQuantityError,
)
from codledger.services.inventory_types import (
    LineInput,
    MovementResult,
    ReleaseResult,
    ReservationResult,
    TransferResult,
    normalize_lines,
)
from codledger.services.ledger_writer import StockLedger, TransactionDraft, require_product
from codledger.services.stock_locks import StockLockRegistry
from codledger.services.stock_projector import StockLevelProjector
from codledger.services.warehouse_registry import require_warehouse

log = logging.getLogger("codledger.inventory")

T = TypeVar("T")
StockKey = Tuple[str, str]


def order_lock_key(order_id: str) -> StockKey:
    """订单级锁 key，与 (product_id, warehouse_id) 共用一张锁表"""
    return ("order", order_id)


async def load_reservation(
    session: AsyncSession, order_id: str, *, for_update: bool = False
) -> Optional[OrderReservation]:
    stmt = select(OrderReservation).where(OrderReservation.order_id == order_id)
    if for_update:
        stmt = stmt.with_for_update()
    return (await session.execute(stmt)).scalar_one_or_none()


class InventoryOpsService:
    def __init__(
        self,
        db: Database,
        settings: AppSettings,
        locks: Optional[StockLockRegistry] = None,
        *,
        ledger: Optional[StockLedger] = None,
        projector: Optional[StockLevelProjector] = None,
    ) -> None:
        self.db = db
        self.settings = settings
        self.locks = locks or StockLockRegistry()
        self.ledger = ledger or StockLedger()
        self.projector = projector or StockLevelProjector(self.ledger)

    # ------------------------------------------------------------------
    # 内部：指标 / 加锁 / 事务
    # ------------------------------------------------------------------
    @asynccontextmanager
    async def _track(self, op: str) -> AsyncIterator[None]:
        started = time.perf_counter()
        try:
            yield
        except InventoryError as e:
            INVENTORY_FAILS.labels(op=op, code=e.error_code).inc()
            log.info("%s rejected: code=%s msg=%s ctx=%s", op, e.error_code, e.message, e.context)
            raise
        else:
            INVENTORY_OPS.labels(op=op).inc()
        finally:
            OP_LATENCY.labels(op=op).observe(time.perf_counter() - started)

    async def run_locked(
        self,
        op: str,
        keys: Iterable[StockKey],
        work: Callable[[AsyncSession], Awaitable[T]],
    ) -> T:
        async with self.locks.hold(keys):
            return await run_in_tx(
                self.db.session_maker,
                work,
                op=op,
                max_retries=self.settings.CONCURRENCY_MAX_RETRIES,
                backoff_ms=self.settings.CONCURRENCY_RETRY_BACKOFF_MS,
            )

    async def _require_refs(self, session: AsyncSession, keys: Iterable[StockKey]) -> None:
        """建余额行之前先确认商品 / 仓库存在，避免外键失败被误判为并发冲突"""
        seen_p: Set[str] = set()
        seen_w: Set[str] = set()
        for pid, wid in keys:
            if pid not in seen_p:
                await require_product(session, pid)
                seen_p.add(pid)
            if wid not in seen_w:
                await require_warehouse(session, wid)
                seen_w.add(wid)

    async def _refresh_products(self, session: AsyncSession, product_ids: Iterable[str]) -> None:
        for pid in sorted(set(product_ids)):
            await self.projector.refresh_product_cache(session, pid)

    # ------------------------------------------------------------------
    # 调整
    # ------------------------------------------------------------------
    async def adjust_stock(
        self,
        product_id: str,
        warehouse_id: str,
        quantity: int,
        reason: str,
        *,
        user_id: Optional[str] = None,
    ) -> StockLevel:
        """
        手工调整（报损 / 盘点 / 纠偏），reference_id = reason。

        负向调整：
          - 在库永远不能 < 0；
          - 可售（current - reserved）< 0 默认拒绝，
            ALLOW_NEGATIVE_AVAILABLE_ON_ADJUST=True 时作为管理员兜底放行。
        """
        op = "adjust"
        async with self._track(op):
            qty = int(quantity)
            if qty == 0:
                raise ZeroQuantityError(
                    "adjustment quantity must not be zero",
                    context={"product_id": product_id, "warehouse_id": warehouse_id},
                )
            key = (product_id, warehouse_id)
            allow_negative_available = self.settings.ALLOW_NEGATIVE_AVAILABLE_ON_ADJUST

            async def _work(session: AsyncSession) -> StockLevel:
                await self._require_refs(session, [key])
                level = (await self.projector.lock_levels(session, [key]))[key]

                if qty < 0:
                    if level.current_quantity + qty < 0:
                        raise InsufficientStockError(
                            f"cannot remove {-qty} units: only {level.current_quantity} on hand",
                            product_id=product_id,
                            warehouse_id=warehouse_id,
                            required=-qty,
                            available=level.current_quantity,
                        )
                    if not allow_negative_available and level.available_quantity + qty < 0:
                        raise InsufficientStockError(
                            f"adjustment would drive available stock below zero "
                            f"(available={level.available_quantity})",
                            product_id=product_id,
                            warehouse_id=warehouse_id,
                            required=-qty,
                            available=level.available_quantity,
                        )

                entry = await self.ledger.append(
                    session,
                    TransactionDraft(
                        type=TransactionType.ADJUSTMENT,
                        quantity=qty,
                        product_id=product_id,
                        warehouse_id=warehouse_id,
                        reference_id=reason,
                        user_id=user_id,
                    ),
                )
                level = await self.projector.apply(session, entry)
                await self._refresh_products(session, [product_id])
                return level

            level = await self.run_locked(op, [key], _work)
            log.info(
                "adjust product=%s wh=%s qty=%+d reason=%s -> current=%d reserved=%d",
                product_id, warehouse_id, qty, reason, level.current_quantity, level.reserved_quantity,
            )
            return level

    # ------------------------------------------------------------------
    # 调拨
    # ------------------------------------------------------------------
    async def transfer_stock(
        self,
        product_id: str,
        from_warehouse_id: str,
        to_warehouse_id: str,
        quantity: int,
        reason: str,
        *,
        user_id: Optional[str] = None,
    ) -> TransferResult:
        """
        仓间调拨：transfer_out(-q) + transfer_in(+q) 成对落账，共用 reference_id。
        校验看源仓可售量（预占部分不可调走）。
        """
        op = "transfer"
        async with self._track(op):
            qty = int(quantity)
            if from_warehouse_id == to_warehouse_id:
                raise InvalidTransferError(
                    "source and destination warehouse must differ",
                    context={"warehouse_id": from_warehouse_id},
                )
            if qty == 0:
                raise ZeroQuantityError("transfer quantity must not be zero", context={"product_id": product_id})
            if qty < 0:
                raise ValidationError(
                    "transfer quantity must be > 0", context={"product_id": product_id, "quantity": qty}
                )

            src = (product_id, from_warehouse_id)
            dst = (product_id, to_warehouse_id)
            reference_id = f"TRF-{uuid.uuid4().hex[:12].upper()}"

            async def _work(session: AsyncSession) -> TransferResult:
                await self._require_refs(session, [src, dst])
                levels = await self.projector.lock_levels(session, [src, dst])
                source = levels[src]
                if source.available_quantity < qty:
                    raise InsufficientStockError(
                        f"insufficient stock in warehouse {from_warehouse_id}: "
                        f"available={source.available_quantity}, required={qty}",
                        product_id=product_id,
                        warehouse_id=from_warehouse_id,
                        required=qty,
                        available=source.available_quantity,
                    )

                out_entry = await self.ledger.append(
                    session,
                    TransactionDraft(
                        type=TransactionType.TRANSFER_OUT,
                        quantity=-qty,
                        product_id=product_id,
                        warehouse_id=from_warehouse_id,
                        reference_id=reference_id,
                        note=reason,
                        user_id=user_id,
                    ),
                )
                in_entry = await self.ledger.append(
                    session,
                    TransactionDraft(
                        type=TransactionType.TRANSFER_IN,
                        quantity=qty,
                        product_id=product_id,
                        warehouse_id=to_warehouse_id,
                        reference_id=reference_id,
                        note=reason,
                        user_id=user_id,
                    ),
                )
                source = await self.projector.apply(session, out_entry)
                destination = await self.projector.apply(session, in_entry)
                await self._refresh_products(session, [product_id])
                return TransferResult(
                    reference_id=reference_id,
                    source=source,
                    destination=destination,
                    entries=[out_entry, in_entry],
                )

            result = await self.run_locked(op, [src, dst], _work)
            log.info(
                "transfer %s product=%s %s -> %s qty=%d",
                reference_id, product_id, from_warehouse_id, to_warehouse_id, qty,
            )
            return result

    # ------------------------------------------------------------------
    # 预占 / 释放 / 发货
    # ------------------------------------------------------------------
    async def reserve_for_order(
        self,
        order_id: str,
        warehouse_id: str,
        items: List[LineInput],
    ) -> ReservationResult:
        """
        订单预占（不落台账，只抬 reserved）：

        - 仓库由外部分仓策略给定；
        - 同商品多行合并；
        - 先逐行校验可售量，任一不足整单拒绝（all-or-nothing）；
        - 已有 open 预占 → 原样返回（created=False）；
          已 released / fulfilled → 拒绝重复预占。
        """
        op = "reserve"
        async with self._track(op):
            if not order_id:
                raise ValidationError("order_id is required", context={"path": "order_id"})
            lines = normalize_lines(items)
            keys = [(ln.product_id, warehouse_id) for ln in lines]

            async def _work(session: AsyncSession) -> ReservationResult:
                existing = await load_reservation(session, order_id, for_update=True)
                if existing is not None:
                    if not existing.is_open:
                        raise ValidationError(
                            f"order {order_id} reservation is already {existing.status}",
                            context={"order_id": order_id, "status": existing.status},
                        )
                    current = await self.projector.query(session, warehouse_id=existing.warehouse_id)
                    wanted = {ln.product_id for ln in existing.lines}
                    return ReservationResult(
                        reservation=existing,
                        levels=[lv for lv in current if lv.product_id in wanted],
                        created=False,
                    )

                await self._require_refs(session, keys)
                locked = await self.projector.lock_levels(session, keys)

                # 全部校验通过后才开始写
                for ln in lines:
                    level = locked[(ln.product_id, warehouse_id)]
                    if level.available_quantity < ln.quantity:
                        raise InsufficientStockError(
                            f"insufficient stock for product {ln.product_id} in warehouse {warehouse_id}: "
                            f"available={level.available_quantity}, required={ln.quantity}",
                            product_id=ln.product_id,
                            warehouse_id=warehouse_id,
                            required=ln.quantity,
                            available=level.available_quantity,
                        )

                levels = []
                for ln in lines:
                    levels.append(
                        await self.projector.reserve(session, locked[(ln.product_id, warehouse_id)], ln.quantity)
                    )

                reservation = OrderReservation(
                    order_id=order_id,
                    warehouse_id=warehouse_id,
                    status=ReservationStatus.OPEN.value,
                )
                reservation.lines = [
                    OrderReservationLine(product_id=ln.product_id, quantity=ln.quantity) for ln in lines
                ]
                session.add(reservation)
                try:
                    await session.flush()
                except IntegrityError as e:
                    # 同一订单被并发预占：重来一次会命中已有预占
                    raise ConcurrencyConflictError(
                        f"order {order_id} reserved concurrently", context={"order_id": order_id}
                    ) from e
                return ReservationResult(reservation=reservation, levels=levels, created=True)

            result = await self.run_locked(op, keys, _work)
            log.info(
                "reserve order=%s wh=%s lines=%d created=%s",
                order_id, warehouse_id, len(lines), result.created,
            )
            return result

    async def _peek_reservation(self, order_id: str) -> Optional[OrderReservation]:
        async def _q(session: AsyncSession) -> Optional[OrderReservation]:
            return await load_reservation(session, order_id)

        return await run_read(self.db.session_maker, _q)

    async def release_reservation(self, order_id: str) -> ReleaseResult:
        """
        取消预占：按原预占数量回退 reserved，状态置 released。
        幂等：未知订单 / 已 released / 已 fulfilled 均为 no-op（released=False）。
        """
        op = "release"
        async with self._track(op):
            peek = await self._peek_reservation(order_id)
            if peek is None or not peek.is_open:
                return ReleaseResult(order_id=order_id, released=False, status=peek.status if peek else None)
            keys = [(ln.product_id, peek.warehouse_id) for ln in peek.lines]

            async def _work(session: AsyncSession) -> ReleaseResult:
                res = await load_reservation(session, order_id, for_update=True)
                if res is None or not res.is_open:
                    return ReleaseResult(order_id=order_id, released=False, status=res.status if res else None)

                locked = await self.projector.lock_levels(session, keys)
                levels = []
                for ln in res.lines:
                    level = locked[(ln.product_id, res.warehouse_id)]
                    levels.append(await self.projector.release(session, level, ln.quantity))

                res.status = ReservationStatus.RELEASED.value
                res.closed_at = utc_now()
                await session.flush()
                return ReleaseResult(order_id=order_id, released=True, status=res.status, levels=levels)

            result = await self.run_locked(op, keys, _work)
            if result.released:
                log.info("release order=%s lines=%d", order_id, len(keys))
            return result

    async def fulfill_order(self, order_id: str, *, user_id: Optional[str] = None) -> MovementResult:
        """
        发货：每行一条 order_out（负数），reference_id = order_id；
        在库减少的同时消耗对应预占，预占状态置 fulfilled。
        """
        op = "fulfill"
        async with self._track(op):
            peek = await self._peek_reservation(order_id)
            if peek is None:
                raise NotFoundError(f"no reservation for order {order_id}", context={"order_id": order_id})
            if not peek.is_open:
                raise ValidationError(
                    f"order {order_id} reservation is {peek.status}, not open",
                    context={"order_id": order_id, "status": peek.status},
                )
            keys = [(ln.product_id, peek.warehouse_id) for ln in peek.lines]

            async def _work(session: AsyncSession) -> MovementResult:
                res = await load_reservation(session, order_id, for_update=True)
                if res is None or not res.is_open:
                    raise ValidationError(
                        f"order {order_id} reservation is no longer open",
                        context={"order_id": order_id, "status": res.status if res else None},
                    )

                locked = await self.projector.lock_levels(session, keys)
                for ln in res.lines:
                    level = locked[(ln.product_id, res.warehouse_id)]
                    if level.current_quantity < ln.quantity:
                        raise InsufficientStockError(
                            f"cannot ship {ln.quantity} units of {ln.product_id}: "
                            f"only {level.current_quantity} on hand",
                            product_id=ln.product_id,
                            warehouse_id=res.warehouse_id,
                            required=ln.quantity,
                            available=level.current_quantity,
                        )

                entries, levels = [], []
                for ln in res.lines:
                    entry = await self.ledger.append(
                        session,
                        TransactionDraft(
                            type=TransactionType.ORDER_OUT,
                            quantity=-ln.quantity,
                            product_id=ln.product_id,
                            warehouse_id=res.warehouse_id,
                            reference_id=order_id,
                            note="order fulfilled",
                            user_id=user_id,
                        ),
                    )
                    entries.append(entry)
                    levels.append(await self.projector.apply(session, entry))

                res.status = ReservationStatus.FULFILLED.value
                res.closed_at = utc_now()
                await session.flush()
                await self._refresh_products(session, [ln.product_id for ln in res.lines])
                return MovementResult(reference_id=order_id, entries=entries, levels=levels)

            result = await self.run_locked(op, keys, _work)
            log.info("fulfill order=%s entries=%d", order_id, len(result.entries))
            return result

    # ------------------------------------------------------------------
    # 采购收货 / 退货回仓
    # ------------------------------------------------------------------
    async def receive_purchase(
        self,
        purchase_id: str,
        warehouse_id: Optional[str],
        items: List[LineInput],
        *,
        user_id: Optional[str] = None,
    ) -> MovementResult:
        """
        采购收货：每行一条 purchase_in，reference_id = purchase_id。
        行上带 warehouse_id 时覆盖采购单默认仓（分仓收货）。
        """
        op = "receive"
        async with self._track(op):
            if not purchase_id:
                raise ValidationError("purchase_id is required", context={"path": "purchase_id"})
            lines = normalize_lines(items)
            resolved: List[Tuple[str, str, int]] = []
            for idx, ln in enumerate(lines):
                wid = ln.warehouse_id or warehouse_id
                if not wid:
                    raise ValidationError(
                        f"items[{idx}] has no target warehouse", context={"path": f"items[{idx}].warehouse_id"}
                    )
                resolved.append((ln.product_id, wid, ln.quantity))

            # 行级覆盖后可能出现重复维度，再合并一次
            merged: Dict[StockKey, int] = {}
            for pid, wid, qty in resolved:
                merged[(pid, wid)] = merged.get((pid, wid), 0) + qty
            keys = sorted(merged)

            async def _work(session: AsyncSession) -> MovementResult:
                await self._require_refs(session, keys)
                await self.projector.lock_levels(session, keys)
                entries, levels = [], []
                for pid, wid in keys:
                    entry = await self.ledger.append(
                        session,
                        TransactionDraft(
                            type=TransactionType.PURCHASE_IN,
                            quantity=merged[(pid, wid)],
                            product_id=pid,
                            warehouse_id=wid,
                            reference_id=purchase_id,
                            user_id=user_id,
                        ),
                    )
                    entries.append(entry)
                    levels.append(await self.projector.apply(session, entry))
                await self._refresh_products(session, [pid for pid, _ in keys])
                return MovementResult(reference_id=purchase_id, entries=entries, levels=levels)

            result = await self.run_locked(op, keys, _work)
            log.info("receive purchase=%s entries=%d", purchase_id, len(result.entries))
            return result

    async def restock_return(
        self,
        order_id: str,
        items: List[LineInput],
        warehouse_id: Optional[str] = None,
        *,
        user_id: Optional[str] = None,
    ) -> MovementResult:
        """
        退货回仓：每行一条 return_restock，reference_id = order_id。

        - 仓库缺省取该订单预占时的仓；
        - 单品回仓总量不得超过该订单已发货量（order_out）减去已回仓量。
        """
        op = "restock"
        async with self._track(op):
            if not order_id:
                raise ValidationError("order_id is required", context={"path": "order_id"})
            lines = normalize_lines(items)

            target = warehouse_id
            if not target:
                peek = await self._peek_reservation(order_id)
                if peek is None:
                    raise ValidationError(
                        f"warehouse_id is required: order {order_id} has no reservation",
                        context={"order_id": order_id},
                    )
                target = peek.warehouse_id

            merged: Dict[str, int] = {}
            for ln in lines:
                merged[ln.product_id] = merged.get(ln.product_id, 0) + ln.quantity
            keys = [(pid, target) for pid in sorted(merged)]

            async def _work(session: AsyncSession) -> MovementResult:
                await self._require_refs(session, keys)
                # 同一订单的回仓串行：跨进程由预占行 FOR UPDATE 兜底（发货必有预占）
                await load_reservation(session, order_id, for_update=True)

                shipped = await self.ledger.sums_by_product(
                    session, reference_id=order_id, tx_type=TransactionType.ORDER_OUT
                )
                restocked = await self.ledger.sums_by_product(
                    session, reference_id=order_id, tx_type=TransactionType.RETURN_RESTOCK
                )
                for pid, qty in merged.items():
                    remaining = -shipped.get(pid, 0) - restocked.get(pid, 0)
                    if qty > remaining:
                        raise ValidationError(
                            f"cannot restock {qty} units of {pid}: only {remaining} returnable for order {order_id}",
                            context={"order_id": order_id, "product_id": pid, "quantity": qty, "returnable": remaining},
                        )

                await self.projector.lock_levels(session, keys)
                entries, levels = [], []
                for pid, wid in keys:
                    entry = await self.ledger.append(
                        session,
                        TransactionDraft(
                            type=TransactionType.RETURN_RESTOCK,
                            quantity=merged[pid],
                            product_id=pid,
                            warehouse_id=wid,
                            reference_id=order_id,
                            note="customer return",
                            user_id=user_id,
                        ),
                    )
                    entries.append(entry)
                    levels.append(await self.projector.apply(session, entry))
                await self._refresh_products(session, merged)
                return MovementResult(reference_id=order_id, entries=entries, levels=levels)

            # 订单维度锁：不同回仓仓库也共用同一可退额度
            result = await self.run_locked(op, [*keys, order_lock_key(order_id)], _work)
            log.info("restock order=%s wh=%s entries=%d", order_id, target, len(result.entries))
            return result
