# codledger/db/engine.py
# 统一引擎工厂：DSN 归一 + 按后端注入 connect_args
from __future__ import annotations

import re
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

__all__ = ["normalize_async_dsn", "create_async_engine_safe"]


def normalize_async_dsn(url: str) -> str:
    """
    把各种写法的 DSN 统一到 async 驱动：
    - postgres:// / postgresql:// / +asyncpg / +psycopg2 → postgresql+psycopg://
    - sqlite:/// → sqlite+aiosqlite:///
    """
    url = (url or "").strip()
    # 有些环境会把值写成 '"postgresql+psycopg://..."'，统一剥掉两侧引号
    if (url.startswith('"') and url.endswith('"')) or (url.startswith("'") and url.endswith("'")):
        url = url[1:-1].strip()
    if not url:
        raise ValueError("empty database url")

    if url.startswith("sqlite:///") or url == "sqlite://":
        return "sqlite+aiosqlite" + url[len("sqlite") :]
    url = re.sub(r"^postgres(?:ql)?\+(?:asyncpg|psycopg2|pg8000)://", "postgresql+psycopg://", url)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def _connect_args_for(url_str: str) -> dict[str, Any]:
    """
    后端专属 connect_args：
    - PostgreSQL(psycopg): application_name
    - SQLite: check_same_thread=False
    """
    backend = make_url(url_str).get_backend_name()
    if backend.startswith("postgresql"):
        return {"application_name": "codledger"}
    if backend.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


def _enable_sqlite_fk(engine: AsyncEngine) -> None:
    # SQLite 默认不校验外键；打开后 RESTRICT 语义与 PG 对齐
    @event.listens_for(engine.sync_engine, "connect")
    def _fk_on(dbapi_conn, _record):  # pragma: no cover - 驱动回调
        cur = dbapi_conn.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()


def create_async_engine_safe(url_str: str, *, echo: bool = False) -> AsyncEngine:
    """Async 引擎（'postgresql+psycopg' 或 'sqlite+aiosqlite'）。"""
    url_str = normalize_async_dsn(url_str)
    backend = make_url(url_str).get_backend_name()

    kwargs: dict[str, Any] = {"echo": echo}
    if backend.startswith("postgresql"):
        kwargs["pool_pre_ping"] = True
    connect_args = _connect_args_for(url_str)
    if connect_args:
        kwargs["connect_args"] = connect_args

    engine = create_async_engine(url_str, **kwargs)
    if backend.startswith("sqlite"):
        _enable_sqlite_fk(engine)
    return engine
