# codledger/db/base.py
from __future__ import annotations

import importlib
import logging
from datetime import datetime, timezone
from typing import List

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase, configure_mappers

log = logging.getLogger("codledger.models")

# 固定约束命名，便于 Alembic 生成稳定的迁移
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """全局唯一 ORM Base"""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


_INITIALIZED: bool = False

_MODEL_MODULES = [
    "codledger.models.warehouse",
    "codledger.models.product",
    "codledger.models.stock_ledger",
    "codledger.models.stock_level",
    "codledger.models.reservation",
]


def init_models(*, force: bool = False) -> None:
    """
    集中导入模型 + 固化关系映射：
      1) 按依赖顺序显式导入（保证字符串关系目标类已注册）
      2) 统一 configure_mappers()
    """
    global _INITIALIZED
    if _INITIALIZED and not force:
        return

    loaded: List[str] = []
    for mod in _MODEL_MODULES:
        importlib.import_module(mod)
        loaded.append(mod)

    configure_mappers()
    _INITIALIZED = True
    log.info("ORM models initialized & mappers configured (loaded %d modules)", len(loaded))


def utc_now() -> datetime:
    """Python 侧时间戳：落库后 ORM 对象上立即可读（不依赖 server_default 回读）。"""
    return datetime.now(timezone.utc)
