"""System health endpoints."""

from __future__ import annotations

import time

from fastapi import APIRouter

from marketpulse import __version__
from marketpulse.api.deps import app_state

router = APIRouter()

_start_time = time.time()


@router.get("/system/health")
def health() -> dict:
    db_ok = app_state.db.health_check() if app_state.db is not None else False
    gateway = app_state.gateway
    oracle = app_state.oracle
    return {
        "status": "ok" if db_ok else "degraded",
        "version": __version__,
        "uptimeSeconds": int(time.time() - _start_time),
        "database": db_ok,
        "llmProviders": gateway.providers if gateway is not None else [],
        "quoteProviders": oracle.provider_names if oracle is not None else [],
    }
