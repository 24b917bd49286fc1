"""
Lab Pool — API Server

FastAPI application serving:
  GET  /v1/pool/available                  — claimable items, most urgent first
  GET  /v1/pool/mine?worker_id=            — a worker's items
  POST /v1/pool/items                      — create an item (upstream workflow)
  GET  /v1/pool/items/{id}                 — one item
  POST /v1/pool/items/{id}/claim           — claim a pending item
  POST /v1/pool/items/{id}/start           — start a claimed item
  POST /v1/pool/items/{id}/complete        — complete with results
  POST /v1/pool/items/{id}/cancel          — cancel an owned item
  POST /v1/pool/items/{id}/release         — release a held item for claiming
  POST /v1/pool/items/{id}/admin-cancel    — cancel an abandoned claim
  GET  /v1/pool/results                    — completed results
  GET  /v1/pool/stale                      — claims idle past the window
  GET  /v1/pool/groups/{id}                — per-order summary
  POST /v1/pool/groups/{id}/release        — release every held item of an order
  GET  /v1/pool/stats                      — pool statistics
  GET  /health                             — liveness
  GET  /ready                              — readiness (store reachable)

Every pool failure is answered as {"error", "message", "details"} with
the status from ERROR_STATUS.

Usage:
    uvicorn api.server:app --host 0.0.0.0 --port 8080

    LP_CONFIG=/etc/labpool/pool_config.yaml LP_ENV=prod uvicorn api.server:app

Requires: pip install fastapi uvicorn
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Optional

# route annotations are resolved against module globals
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from engine.retry import CircuitBreakerOpen
from workpool.errors import (
    AlreadyClaimed, Conflict, InvalidTransition, NotEligible, NotFound,
    NotOwner, PoolError, StoreUnavailable, ValidationError,
)

logger = logging.getLogger("labpool.api")

ERROR_STATUS: dict[type, int] = {
    NotFound: 404,
    NotOwner: 403,
    NotEligible: 403,
    AlreadyClaimed: 409,
    InvalidTransition: 409,
    Conflict: 409,
    ValidationError: 422,
    StoreUnavailable: 503,
}


def status_for(exc: PoolError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500


def create_app(pool: Any = None, config_path: str = "") -> Any:
    """
    Create and configure the FastAPI application.

    Pass a WorkPool to serve it directly (tests); otherwise one is built
    from config on first use. Separated from module-level creation so
    tests can create fresh instances.
    """
    from api.models import (
        AdminCancelRequest, CancelRequest, CompleteRequest,
        CreateItemRequest, WorkerAction,
    )
    from workpool.runtime import WorkPool, create_pool

    app = FastAPI(
        title="Lab Pool API",
        version="0.1.0",
        description="Shared work pool for lab tests and requests",
    )

    # ── State ────────────────────────────────────────────────

    _pool: Optional[WorkPool] = pool

    def get_pool() -> WorkPool:
        nonlocal _pool
        if _pool is None:
            _pool = create_pool(
                config_path=config_path or os.environ.get("LP_CONFIG", "pool_config.yaml"),
            )
        return _pool

    async def read_body(request: Request, model):
        try:
            body = await request.json()
        except ValueError:
            raise ValidationError("request body must be JSON", ["body: invalid JSON"])
        if not isinstance(body, dict):
            raise ValidationError("request body must be an object", ["body: must be an object"])
        parsed = model.from_body(body)
        errors = parsed.validate()
        if errors:
            raise ValidationError("invalid request", errors)
        return parsed

    def item_response(item, status_code: int = 200):
        return JSONResponse(status_code=status_code, content=item.to_dict())

    def list_response(items):
        return JSONResponse(content={
            "count": len(items),
            "items": [i.to_dict() for i in items],
        })

    # ── Error Mapping ─────────────────────────────────────────

    @app.exception_handler(PoolError)
    async def pool_error_handler(request: Request, exc: PoolError):
        code = status_for(exc)
        if code >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=code, content=exc.to_dict())

    @app.exception_handler(CircuitBreakerOpen)
    async def breaker_handler(request: Request, exc: CircuitBreakerOpen):
        logger.warning("%s %s rejected: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=503, content={
            "error": StoreUnavailable.code,
            "message": str(exc),
            "details": {},
        })

    # ── Lifecycle ─────────────────────────────────────────────

    @app.on_event("shutdown")
    async def shutdown():
        if _pool is not None:
            _pool.close()

    # ── Worker Views ──────────────────────────────────────────

    @app.get("/v1/pool/available")
    async def list_available(
        urgency: Optional[str] = None,
        status: Optional[str] = None,
        kind: Optional[str] = None,
    ):
        return list_response(get_pool().list_available(urgency=urgency, status=status, kind=kind))

    @app.get("/v1/pool/mine")
    async def list_mine(
        worker_id: Optional[str] = None,
        status: Optional[str] = None,
        history: bool = False,
    ):
        if not worker_id:
            raise ValidationError("worker_id is required", ["worker_id: required"])
        return list_response(get_pool().list_mine(
            worker_id, status=status, include_history=history,
        ))

    # ── Items ─────────────────────────────────────────────────

    @app.post("/v1/pool/items")
    async def create_item(request: Request):
        req = await read_body(request, CreateItemRequest)
        item = get_pool().create_item(
            kind=req.kind,
            payload=req.payload,
            urgency=req.urgency,
            group_id=req.group_id,
            eligible=req.eligible,
        )
        return item_response(item, status_code=201)

    @app.get("/v1/pool/items/{item_id}")
    async def get_item(item_id: str):
        return item_response(get_pool().get(item_id))

    @app.post("/v1/pool/items/{item_id}/claim")
    async def claim_item(item_id: str, request: Request):
        req = await read_body(request, WorkerAction)
        return item_response(get_pool().claim(item_id, req.worker_id))

    @app.post("/v1/pool/items/{item_id}/start")
    async def start_item(item_id: str, request: Request):
        req = await read_body(request, WorkerAction)
        return item_response(get_pool().start(item_id, req.worker_id))

    @app.post("/v1/pool/items/{item_id}/complete")
    async def complete_item(item_id: str, request: Request):
        req = await read_body(request, CompleteRequest)
        return item_response(get_pool().complete(
            item_id, req.worker_id, req.results, notes=req.notes,
        ))

    @app.post("/v1/pool/items/{item_id}/cancel")
    async def cancel_item(item_id: str, request: Request):
        req = await read_body(request, CancelRequest)
        return item_response(get_pool().cancel(item_id, req.worker_id, req.reason))

    @app.post("/v1/pool/items/{item_id}/release")
    async def release_item(item_id: str):
        return item_response(get_pool().release(item_id))

    @app.post("/v1/pool/items/{item_id}/admin-cancel")
    async def admin_cancel_item(item_id: str, request: Request):
        req = await read_body(request, AdminCancelRequest)
        return item_response(get_pool().admin_cancel(item_id, req.admin_id, req.reason))

    # ── Reporting ─────────────────────────────────────────────

    @app.get("/v1/pool/results")
    async def list_results(kind: Optional[str] = None, critical: bool = False):
        return list_response(get_pool().list_results(kind=kind, critical_only=critical))

    @app.get("/v1/pool/stale")
    async def list_stale(older_than: Optional[float] = None):
        if older_than is not None and older_than < 0:
            raise ValidationError("older_than must be >= 0", ["older_than: must be >= 0"])
        return list_response(get_pool().list_stale(older_than))

    @app.get("/v1/pool/groups/{group_id}")
    async def group_summary(group_id: str):
        return JSONResponse(content=get_pool().group_summary(group_id))

    @app.post("/v1/pool/groups/{group_id}/release")
    async def release_group(group_id: str):
        released = get_pool().release_group(group_id)
        return JSONResponse(content={
            "group_id": group_id,
            "released": [i.item_id for i in released],
        })

    @app.get("/v1/pool/stats")
    async def get_stats():
        return JSONResponse(content=get_pool().stats())

    # ── Health ────────────────────────────────────────────────

    @app.get("/health")
    async def health():
        return JSONResponse(content={
            "status": "ok",
            "timestamp": time.time(),
        })

    @app.get("/ready")
    async def ready():
        # Check the item store is reachable
        try:
            get_pool().ready()
            return JSONResponse(content={"status": "ok"})
        except (PoolError, CircuitBreakerOpen, OSError) as e:
            return JSONResponse(
                status_code=503,
                content={"status": "fail", "error": str(e)[:200]},
            )

    return app


# ── Module-level app for uvicorn ──────────────────────────────

app = create_app(config_path=os.environ.get("LP_CONFIG", ""))
