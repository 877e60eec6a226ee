"""
Health endpoints.

Lightweight liveness and readiness checks; nothing here exposes secrets.
"""

import logging
import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from arcade.api.deps import get_store
from arcade.core.database import check_connection
from arcade.core.logging import latency_bucket_ms, get_request_id

logger = logging.getLogger("arcade")

router = APIRouter(tags=["health"])

REQUIRED_TABLES = [
    "user_credits",
    "credit_transactions",
    "continue_tokens",
    "save_sessions",
    "save_states",
]


@router.get("/healthz")
def healthz():
    """Liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz(store: Engine = Depends(get_store)):
    """Readiness check: DB connectivity + required tables."""
    start = time.perf_counter()
    if not check_connection(store):
        logger.error("[readyz] database unreachable", extra={"request_id": get_request_id()})
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})

    inspector = inspect(store)
    missing = [t for t in REQUIRED_TABLES if not inspector.has_table(t)]
    if missing:
        detail = f"missing tables: {', '.join(missing)}"
        logger.warning(f"[readyz] {detail}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": detail})

    logger.info(
        "health.ready",
        extra={
            "request_id": get_request_id(),
            "latency_bucket": latency_bucket_ms((time.perf_counter() - start) * 1000),
        },
    )
    return {"status": "ok"}
