"""Dependency injection for the FastAPI application."""

from __future__ import annotations

from marketpulse.agents.gateway import LLMGateway
from marketpulse.config import AppConfig
from marketpulse.data.price_oracle import PriceOracle
from marketpulse.forecast.service import ForecastService
from marketpulse.ratelimit import RateLimiter
from marketpulse.registry.db import Database
from marketpulse.registry.queries import Registry


class AppState:
    """Holds shared application state initialised during lifespan."""

    def __init__(self) -> None:
        self.config: AppConfig | None = None
        self.db: Database | None = None
        self.registry: Registry | None = None
        self.gateway: LLMGateway | None = None
        self.oracle: PriceOracle | None = None
        self.service: ForecastService | None = None
        self.client_limiter: RateLimiter | None = None


# Singleton shared across the app
app_state = AppState()


def get_service() -> ForecastService:
    if app_state.service is None:
        raise RuntimeError("ForecastService not initialised")
    return app_state.service
