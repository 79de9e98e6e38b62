# codledger/metrics.py
from __future__ import annotations

import os

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
    multiprocess,
)

# 库存内核指标
INVENTORY_OPS = Counter(
    "inventory_operations_total", "Inventory operations committed", ["op"]
)
INVENTORY_FAILS = Counter(
    "inventory_operation_failures_total", "Inventory operations rejected", ["op", "code"]
)
CONFLICT_RETRIES = Counter(
    "inventory_concurrency_retries_total", "Unit-of-work retries after concurrency conflicts", ["op"]
)
LEDGER_ENTRIES = Counter(
    "inventory_ledger_entries_total", "Ledger entries appended", ["type"]
)
OP_LATENCY = Histogram(
    "inventory_operation_seconds", "Inventory operation latency (seconds)", ["op"]
)

router = APIRouter()


@router.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    """
    单进程直接导出默认 REGISTRY；
    多进程（PROMETHEUS_MULTIPROC_DIR 已设置）时合并各分片。
    """
    if os.environ.get("PROMETHEUS_MULTIPROC_DIR"):
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)
        payload = generate_latest(registry)
    else:
        payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)
