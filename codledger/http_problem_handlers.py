# codledger/http_problem_handlers.py
from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from codledger.api.problem import Problem, ProblemDetail, make_problem, new_trace_id
from codledger.services.errors import ConcurrencyConflictError, InventoryError

logger = logging.getLogger("codledger")


def _req_ctx(req: Request) -> Dict[str, Any]:
    return {"path": req.url.path, "method": req.method}


def _validation_details(exc: RequestValidationError) -> List[ProblemDetail]:
    """pydantic 错误列表 → validation 明细；loc 去掉 body 前缀后用点号拼接"""
    out: List[ProblemDetail] = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        out.append({"type": "validation", "path": loc or "body", "reason": str(err.get("msg", "invalid"))})
    return out


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(InventoryError)
    async def _inventory_exc(req: Request, exc: InventoryError):
        problem = Problem.from_inventory_error(exc, _req_ctx(req))
        if isinstance(exc, ConcurrencyConflictError):
            # 重试已耗尽才会走到这里
            logger.warning("CONFLICT[%s] %s %s: %s", problem.trace_id, req.method, req.url.path, exc.message)
        return JSONResponse(status_code=problem.http_status, content=problem.to_dict())

    @app.exception_handler(RequestValidationError)
    async def _validation_exc(req: Request, exc: RequestValidationError):
        content = make_problem(
            status_code=422,
            error_code="request_validation_error",
            message="request validation failed",
            context=_req_ctx(req),
            details=_validation_details(exc),
        )
        return JSONResponse(status_code=422, content=content)

    @app.exception_handler(HTTPException)
    async def _http_exc(req: Request, exc: HTTPException):
        msg = str(exc.detail) if exc.detail is not None else "request rejected"
        content = make_problem(
            status_code=exc.status_code,
            error_code="http_error",
            message=msg,
            context=_req_ctx(req),
            details=[{"type": "state", "reason": msg}],
        )
        return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def _unhandled_exc(req: Request, exc: Exception):
        trace_id = new_trace_id()
        logger.exception("UNHANDLED_EXC[%s]: %s", trace_id, exc)
        content = make_problem(
            status_code=500,
            error_code="internal_error",
            message="internal error, please retry later",
            context=_req_ctx(req),
            trace_id=trace_id,
        )
        return JSONResponse(status_code=500, content=content)
