# codledger/core/tx.py
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from codledger.metrics import CONFLICT_RETRIES
from codledger.services.errors import ConcurrencyConflictError

log = logging.getLogger("codledger.tx")

T = TypeVar("T")

# PostgreSQL：serialization_failure / deadlock_detected / lock_not_available
_RETRYABLE_SQLSTATES = {"40001", "40P01", "55P03"}


def _sqlstate_of(exc: DBAPIError) -> str | None:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_retryable_db_error(exc: BaseException) -> bool:
    """判断一个 DB 异常是否属于“重来一次就可能成功”的并发类冲突。"""
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, DBAPIError):
        if _sqlstate_of(exc) in _RETRYABLE_SQLSTATES:
            return True
        # SQLite 写锁竞争
        if "database is locked" in str(exc.orig or exc):
            return True
    return False


@asynccontextmanager
async def tx_commit(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Commit 事务：正常 begin/commit，异常整体回滚。
    DB 层并发冲突统一翻译为 ConcurrencyConflictError。
    """
    try:
        async with session.begin():
            yield session
    except (StaleDataError, DBAPIError) as e:
        if is_retryable_db_error(e):
            raise ConcurrencyConflictError(f"concurrent update detected: {e}") from e
        raise


async def run_in_tx(
    session_maker: async_sessionmaker[AsyncSession],
    fn: Callable[[AsyncSession], Awaitable[T]],
    *,
    op: str,
    max_retries: int = 3,
    backoff_ms: int = 20,
) -> T:
    """
    单一工作单元执行器：

    - 每次尝试使用全新 Session + 事务（begin → fn → commit）；
    - fn 内部不得自行 commit / rollback；
    - ConcurrencyConflictError 有限次重试（线性退避），超过上限才抛出；
    - 其它异常直接透传，事务已回滚。
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            async with session_maker() as session:
                async with tx_commit(session):
                    return await fn(session)
        except ConcurrencyConflictError as e:
            if attempt > max_retries:
                log.warning("tx %s: giving up after %d attempts: %s", op, attempt, e.message)
                raise
            CONFLICT_RETRIES.labels(op=op).inc()
            log.warning("tx %s: conflict on attempt %d, retrying: %s", op, attempt, e.message)
            await asyncio.sleep(backoff_ms * attempt / 1000.0)


async def run_read(
    session_maker: async_sessionmaker[AsyncSession],
    fn: Callable[[AsyncSession], Awaitable[T]],
) -> T:
    """只读查询：单事务快照，结束即回滚释放。"""
    async with session_maker() as session:
        async with session.begin():
            result: Any = await fn(session)
            return result
