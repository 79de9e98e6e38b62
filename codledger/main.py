# codledger/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from codledger.api.routers.inventory import router as inventory_router
from codledger.core.config import AppSettings, get_settings
from codledger.core.logging import setup_logging
from codledger.db.session import Database
from codledger.http_problem_handlers import register_exception_handlers
from codledger.metrics import router as metrics_router
from codledger.services.inventory_ops import InventoryOpsService
from codledger.services.inventory_query import InventoryQueryService
from codledger.services.reconcile_service import ReconcileService
from codledger.services.stock_locks import StockLockRegistry
from codledger.services.warehouse_registry import WarehouseRegistry

logger = logging.getLogger("codledger")


def create_app(settings: Optional[AppSettings] = None, *, database: Optional[Database] = None) -> FastAPI:
    """
    应用工厂：

    - 服务实例在这里显式构造并挂到 app.state（无模块级单例）；
    - lifespan 负责打开 / 释放数据库；
    - 测试可传入已打开的 Database，直接通过 ASGITransport 调用。
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL, json=settings.JSON_LOG)

    db = database or Database(settings.DATABASE_URL, echo=settings.SQL_ECHO)
    ops = InventoryOpsService(db, settings, StockLockRegistry())

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        await db.open()
        if settings.AUTO_CREATE_TABLES:
            await db.create_all()
        logger.info("codledger started env=%s", settings.ENV)
        try:
            yield
        finally:
            await db.close()

    app = FastAPI(
        title="COD Ledger",
        debug=settings.DEBUG,
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://127.0.0.1:5173",
            "http://localhost:5173",
            "http://127.0.0.1:8000",
            "http://localhost:8000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.db = db
    app.state.ops = ops
    app.state.query = InventoryQueryService(db, settings)
    app.state.warehouses = WarehouseRegistry(db)
    app.state.reconcile = ReconcileService(ops)

    register_exception_handlers(app)

    app.include_router(inventory_router)
    app.include_router(metrics_router)

    @app.get("/ping")
    async def ping():
        return {"pong": True}

    return app


app = create_app()
