"""FastAPI application factory with rate limiting and lifespan management."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from marketpulse.agents.gateway import LLMGateway
from marketpulse.api.deps import app_state
from marketpulse.config import load_config
from marketpulse.data.price_oracle import PriceOracle
from marketpulse.forecast.service import ForecastService, build_service
from marketpulse.ratelimit import RateLimiter
from marketpulse.registry.db import Database
from marketpulse.registry.queries import Registry

logger = logging.getLogger(__name__)

PREFIX = "/api/pulse"

# Paths exempt from per-client rate limiting
UNLIMITED_PATHS = {
    f"{PREFIX}/system/health",
}


async def _verification_loop(service: ForecastService, interval_minutes: int) -> None:
    """Background task: run a verification batch every ``interval_minutes``."""
    while True:
        await asyncio.sleep(interval_minutes * 60)
        try:
            result = await service.verify()
            if result["verified"] or result["errors"]:
                logger.info(
                    "Scheduled verification: %d verified, %d errors",
                    result["verified"], result["errors"],
                )
        except Exception:
            logger.exception("Scheduled verification failed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup/shutdown of DB, HTTP clients and the verification loop."""
    config = load_config()

    db = Database(config.db_dsn)
    db.connect()
    registry = Registry(db)

    gateway = LLMGateway.from_config(config)
    await gateway.start()

    oracle = PriceOracle.from_config(config)
    await oracle.start()

    app_state.config = config
    app_state.db = db
    app_state.registry = registry
    app_state.gateway = gateway
    app_state.oracle = oracle
    app_state.service = build_service(config, registry, oracle, gateway)
    app_state.client_limiter = RateLimiter(
        config.rate_limit_requests, config.rate_limit_window_seconds
    )

    bg_tasks = []
    if config.verify_interval_minutes > 0:
        bg_tasks.append(
            asyncio.create_task(
                _verification_loop(app_state.service, config.verify_interval_minutes)
            )
        )
    logger.info("API started: DB, quote providers and LLM gateway ready")
    yield

    for task in bg_tasks:
        task.cancel()
    for task in bg_tasks:
        with contextlib.suppress(asyncio.CancelledError):
            await task

    await oracle.close()
    await gateway.close()
    db.close()
    logger.info("API shutdown complete")


def client_identifier(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("cf-connecting-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Answer 429 once a client exceeds the configured request budget."""

    async def dispatch(self, request: Request, call_next):
        limiter = app_state.client_limiter
        path = request.url.path
        if limiter is None or not path.startswith(PREFIX) or path in UNLIMITED_PATHS:
            return await call_next(request)

        if not limiter.allow(client_identifier(request)):
            return JSONResponse(status_code=429, content={"error": "Too many requests"})
        return await call_next(request)


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    """Build and return the FastAPI application.

    Args:
        use_lifespan: If False, skip the production lifespan (useful for testing
            where deps are injected via app_state directly).
    """
    app = FastAPI(
        title="MarketPulse API",
        version="0.1.0",
        lifespan=lifespan if use_lifespan else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )
    app.add_middleware(RateLimitMiddleware)

    from marketpulse.api.routes import predictions, system

    app.include_router(predictions.router, prefix=PREFIX, tags=["predictions"])
    app.include_router(system.router, prefix=PREFIX, tags=["system"])

    @app.exception_handler(RuntimeError)
    async def runtime_error_handler(request: Request, exc: RuntimeError) -> JSONResponse:
        logger.error("Request to %s failed: %s", request.url.path, exc)
        return JSONResponse(status_code=503, content={"error": str(exc)})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    return app
