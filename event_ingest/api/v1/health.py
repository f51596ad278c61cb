from __future__ import annotations

import os
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.engine.url import make_url

from event_ingest import __version__
from event_ingest.config import settings
from event_ingest.db.session import engine


router = APIRouter()

_START_TIME = time.time()


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _best_effort_version() -> str:
    v = (os.getenv("EVENT_INGEST_VERSION") or os.getenv("APP_VERSION") or "").strip()
    return v or __version__


def _db_dialect() -> str:
    try:
        return make_url(settings.DATABASE_URL).get_backend_name()
    except Exception:
        return "unknown"


@router.get("/health")
async def health_check():
    return {
        "status": "ok",
        "service": "event-ingest",
        "version": _best_effort_version(),
        "uptime_seconds": int(max(0.0, time.time() - _START_TIME)),
        "timestamp": _utc_now_iso(),
    }


@router.get("/healthz")
async def healthz_check():
    return {"status": "ok"}


@router.get("/ready")
async def readiness_check(request: Request):
    service = getattr(request.app.state, "service", None)
    if service is None:
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "reason": "service not initialized", "timestamp": _utc_now_iso()},
        )
    events_dir = service.events_dir
    return {
        "status": "ready",
        "events_directory": str(events_dir),
        "events_directory_exists": events_dir.is_dir(),
        "log_format": service.writer.codec.name,
        "timestamp": _utc_now_iso(),
    }


@router.get("/health/db")
async def health_db_check():
    dialect = _db_dialect()
    try:
        t0 = time.perf_counter()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        latency_ms = int(round((time.perf_counter() - t0) * 1000.0))
        return {
            "status": "ok",
            "db": {"dialect": dialect, "reachable": True, "latency_ms": latency_ms},
            "timestamp": _utc_now_iso(),
        }
    except Exception as exc:
        return JSONResponse(
            status_code=503,
            content={
                "status": "error",
                "db": {"dialect": dialect, "reachable": False, "latency_ms": None},
                "details": str(exc),
                "timestamp": _utc_now_iso(),
            },
        )
