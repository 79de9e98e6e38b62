# codledger/db/session.py
# 显式构造的数据库句柄：引擎 + AsyncSession 工厂，生命周期由调用方管理
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from codledger.db.base import Base, init_models
from codledger.db.engine import create_async_engine_safe, normalize_async_dsn

log = logging.getLogger("codledger.db")


class Database:
    """
    数据库句柄（不做模块级单例）：

        async with Database(url) as db:
            async with db.session() as session:
                ...

    - open() 创建引擎与 Session 工厂；close() 释放连接池；
    - expire_on_commit=False：提交后返回的 ORM 对象仍可读取字段。
    """

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self.url = normalize_async_dsn(url)
        self.echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._session_maker: Optional[async_sessionmaker[AsyncSession]] = None

    # ---- 生命周期 ----
    async def open(self) -> "Database":
        if self._engine is None:
            init_models()
            self._engine = create_async_engine_safe(self.url, echo=self.echo)
            self._session_maker = async_sessionmaker(
                bind=self._engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )
            log.info("database opened: %s", self._engine.url.render_as_string(hide_password=True))
        return self

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            log.info("database closed")
        self._engine = None
        self._session_maker = None

    async def __aenter__(self) -> "Database":
        return await self.open()

    async def __aexit__(self, *_exc) -> None:
        await self.close()

    # ---- 访问器 ----
    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database is not open; call open() or use 'async with'")
        return self._engine

    @property
    def session_maker(self) -> async_sessionmaker[AsyncSession]:
        if self._session_maker is None:
            raise RuntimeError("Database is not open; call open() or use 'async with'")
        return self._session_maker

    def session(self) -> AsyncSession:
        return self.session_maker()

    # ---- dev / 测试：直接按模型建表（生产走 Alembic） ----
    async def create_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

