# codledger/services/stock_locks.py
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, List, Tuple

StockKey = Tuple[str, str]  # (product_id, warehouse_id)


class StockLockRegistry:
    """
    进程内按 (product_id, warehouse_id) 串行化的锁表。

    - 一次操作涉及的所有 key 按升序加锁（调拨 A→B 与 B→A 不会互相等待）；
    - 锁覆盖整个工作单元（begin → commit），同一维度的两个预占不可能
      同时基于旧读数通过可售校验；
    - 跨进程部署时仍依赖 DB 行锁（FOR UPDATE）与 version 乐观校验兜底。
    """

    def __init__(self) -> None:
        self._locks: Dict[StockKey, asyncio.Lock] = {}

    def _lock_for(self, key: StockKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, keys: Iterable[StockKey]) -> AsyncIterator[List[StockKey]]:
        ordered = sorted(set(keys))
        acquired: List[asyncio.Lock] = []
        try:
            for key in ordered:
                lock = self._lock_for(key)
                await lock.acquire()
                acquired.append(lock)
            yield ordered
        finally:
            for lock in reversed(acquired):
                lock.release()

    def __len__(self) -> int:
        return len(self._locks)
