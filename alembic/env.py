# alembic/env.py: codledger 迁移入口（同步引擎执行）

from __future__ import annotations

from logging.config import fileConfig
from typing import Any, Dict

from alembic import context
from sqlalchemy import create_engine
from sqlalchemy.pool import NullPool

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

from codledger.core.config import AppSettings  # noqa: E402
from codledger.db.base import Base, init_models  # noqa: E402
from codledger.db.engine import normalize_async_dsn  # noqa: E402


def sync_url() -> str:
    """
    alembic.ini 的 sqlalchemy.url 优先，否则取 AppSettings.DATABASE_URL。
    迁移走同步驱动：aiosqlite → pysqlite；psycopg 同步 / 异步通用。
    """
    url = normalize_async_dsn(config.get_main_option("sqlalchemy.url") or AppSettings().DATABASE_URL)
    return url.replace("sqlite+aiosqlite://", "sqlite://", 1)


def include_object(obj: Any, name: str | None, type_: str, reflected: bool, compare_to: Any) -> bool:
    # 库里有、模型里没有的对象不参与 diff（不自动生成 drop）
    return not (reflected and compare_to is None)


def _options(url: str) -> Dict[str, Any]:
    init_models()
    return {
        "target_metadata": Base.metadata,
        "compare_type": True,
        "compare_server_default": False,
        "include_object": include_object,
        # SQLite 的 ALTER 能力有限，走 batch 重建表
        "render_as_batch": url.startswith("sqlite"),
    }


def run_migrations_offline() -> None:
    """只生成 SQL，不连库"""
    url = sync_url()
    context.configure(url=url, literal_binds=True, dialect_opts={"paramstyle": "named"}, **_options(url))
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = sync_url()
    engine = create_engine(url, poolclass=NullPool)
    try:
        with engine.connect() as connection:
            if url.startswith("sqlite"):
                connection.exec_driver_sql("PRAGMA foreign_keys=ON")
            context.configure(connection=connection, **_options(url))
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
