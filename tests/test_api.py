"""Tests for the FastAPI REST API layer.

Uses FastAPI TestClient with a mocked ForecastService and Database injected
into app_state. Every endpoint has at least one test.
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from marketpulse.api.app import PREFIX, client_identifier, create_app, lifespan
from marketpulse.api.deps import app_state
from marketpulse.data.price_oracle import PriceOracle
from marketpulse.forecast.service import ForecastService
from marketpulse.ratelimit import RateLimiter
from marketpulse.registry.db import Database


@pytest.fixture
def mock_db() -> MagicMock:
    db = MagicMock(spec=Database)
    db.health_check.return_value = True
    return db


@pytest.fixture
def service() -> MagicMock:
    svc = MagicMock(spec=ForecastService)
    svc.predict = AsyncMock(return_value={"symbol": "AAPL", "prediction": "bullish", "storageError": None})
    svc.verify = AsyncMock(return_value={"success": True, "verified": 2, "errors": 0})
    svc.quote = AsyncMock(return_value={"symbol": "AAPL", "price": 190.0, "source": "Yahoo Finance"})
    svc.stats.return_value = {"totalPredictions": 3, "symbol": None}
    svc.sentiment.return_value = {"symbol": "AAPL", "avgSentiment": 0.1}
    return svc


@pytest.fixture
def client(mock_db: MagicMock, service: MagicMock) -> TestClient:
    """Create a TestClient with mocked dependencies injected into app_state."""
    app = create_app(use_lifespan=False)

    app_state.db = mock_db
    app_state.service = service
    app_state.gateway = MagicMock(providers=["groq"])
    oracle = MagicMock(spec=PriceOracle)
    oracle.provider_names = ["yahoo_chart"]
    app_state.oracle = oracle
    app_state.client_limiter = RateLimiter(limit=100, window_seconds=60)

    with TestClient(app, raise_server_exceptions=False) as c:
        yield c

    app_state.db = None
    app_state.service = None
    app_state.gateway = None
    app_state.oracle = None
    app_state.client_limiter = None


# ------------------------------------------------------------------
# Predictions
# ------------------------------------------------------------------


class TestPredict:
    def test_predict(self, client: TestClient, service: MagicMock) -> None:
        resp = client.post(f"{PREFIX}/predict", json={"symbol": "AAPL", "includeHistory": True})
        assert resp.status_code == 200
        assert resp.json()["prediction"] == "bullish"
        service.predict.assert_awaited_once_with("AAPL", include_history=True)

    def test_missing_symbol(self, client: TestClient) -> None:
        resp = client.post(f"{PREFIX}/predict", json={})
        assert resp.status_code == 422

    def test_blank_symbol(self, client: TestClient, service: MagicMock) -> None:
        resp = client.post(f"{PREFIX}/predict", json={"symbol": "   "})
        assert resp.status_code == 400
        service.predict.assert_not_called()

    def test_storage_error_is_still_200(self, client: TestClient, service: MagicMock) -> None:
        service.predict.return_value = {"symbol": "AAPL", "storageError": "insert failed"}
        resp = client.post(f"{PREFIX}/predict", json={"symbol": "AAPL"})
        assert resp.status_code == 200
        assert resp.json()["storageError"] == "insert failed"

    def test_value_error_maps_to_400(self, client: TestClient, service: MagicMock) -> None:
        service.predict.side_effect = ValueError("symbol is required")
        resp = client.post(f"{PREFIX}/predict", json={"symbol": "AAPL"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "symbol is required"}


class TestVerify:
    def test_verify_without_body(self, client: TestClient, service: MagicMock) -> None:
        resp = client.post(f"{PREFIX}/verify")
        assert resp.status_code == 200
        assert resp.json()["verified"] == 2
        service.verify.assert_awaited_once_with(force_all=False)

    def test_verify_force(self, client: TestClient, service: MagicMock) -> None:
        resp = client.post(f"{PREFIX}/verify", json={"force": True})
        assert resp.status_code == 200
        service.verify.assert_awaited_once_with(force_all=True)


class TestReads:
    def test_accuracy(self, client: TestClient, service: MagicMock) -> None:
        resp = client.get(f"{PREFIX}/accuracy", params={"symbol": "AAPL", "limit": 20})
        assert resp.status_code == 200
        service.stats.assert_called_once_with(symbol="AAPL", limit=20)

    def test_accuracy_limit_validated(self, client: TestClient) -> None:
        assert client.get(f"{PREFIX}/accuracy", params={"limit": 0}).status_code == 422

    def test_sentiment(self, client: TestClient, service: MagicMock) -> None:
        resp = client.get(f"{PREFIX}/sentiment/AAPL", params={"days": 7})
        assert resp.status_code == 200
        service.sentiment.assert_called_once_with("AAPL", window_days=7)

    def test_quote(self, client: TestClient) -> None:
        resp = client.get(f"{PREFIX}/quote/AAPL")
        assert resp.status_code == 200
        assert resp.json()["price"] == 190.0

    def test_quote_not_found(self, client: TestClient, service: MagicMock) -> None:
        service.quote.return_value = None
        resp = client.get(f"{PREFIX}/quote/ZZZZ")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Stock not found in any provider"


# ------------------------------------------------------------------
# System
# ------------------------------------------------------------------


class TestSystem:
    def test_health_ok(self, client: TestClient) -> None:
        resp = client.get(f"{PREFIX}/system/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["database"] is True
        assert data["llmProviders"] == ["groq"]
        assert data["quoteProviders"] == ["yahoo_chart"]

    def test_health_degraded(self, client: TestClient, mock_db: MagicMock) -> None:
        mock_db.health_check.return_value = False
        assert client.get(f"{PREFIX}/system/health").json()["status"] == "degraded"

    def test_service_not_initialised(self, client: TestClient) -> None:
        app_state.service = None
        resp = client.post(f"{PREFIX}/verify")
        assert resp.status_code == 503


# ------------------------------------------------------------------
# Rate limiting
# ------------------------------------------------------------------


class TestRateLimit:
    def test_429_after_budget(self, client: TestClient) -> None:
        app_state.client_limiter = RateLimiter(limit=2, window_seconds=60)
        headers = {"x-forwarded-for": "203.0.113.7"}
        codes = [client.get(f"{PREFIX}/accuracy", headers=headers).status_code for _ in range(3)]
        assert codes == [200, 200, 429]
        resp = client.get(f"{PREFIX}/accuracy", headers=headers)
        assert resp.json() == {"error": "Too many requests"}

    def test_clients_limited_separately(self, client: TestClient) -> None:
        app_state.client_limiter = RateLimiter(limit=1, window_seconds=60)
        assert client.get(f"{PREFIX}/accuracy", headers={"x-forwarded-for": "a"}).status_code == 200
        assert client.get(f"{PREFIX}/accuracy", headers={"x-forwarded-for": "b"}).status_code == 200
        assert client.get(f"{PREFIX}/accuracy", headers={"x-forwarded-for": "a"}).status_code == 429

    def test_health_exempt(self, client: TestClient) -> None:
        app_state.client_limiter = RateLimiter(limit=1, window_seconds=60)
        codes = [client.get(f"{PREFIX}/system/health").status_code for _ in range(3)]
        assert codes == [200, 200, 200]

    def test_client_identifier_precedence(self) -> None:
        request = MagicMock()
        request.headers = {"x-forwarded-for": "1.1.1.1, 10.0.0.1", "cf-connecting-ip": "2.2.2.2"}
        assert client_identifier(request) == "1.1.1.1"
        request.headers = {"cf-connecting-ip": "2.2.2.2"}
        assert client_identifier(request) == "2.2.2.2"
        request.headers = {}
        request.client.host = "3.3.3.3"
        assert client_identifier(request) == "3.3.3.3"


class TestLifespan:
    def test_verification_loop_stopped_before_clients_close(self) -> None:
        events: list[str] = []

        async def loop(service, interval_minutes):
            try:
                await asyncio.sleep(3600)
            except asyncio.CancelledError:
                events.append("loop cancelled")
                raise

        config = SimpleNamespace(
            db_dsn="postgresql://test",
            verify_interval_minutes=1,
            rate_limit_requests=10,
            rate_limit_window_seconds=60,
        )
        gateway = MagicMock(start=AsyncMock(), close=AsyncMock())
        oracle = MagicMock(start=AsyncMock())
        oracle.close = AsyncMock(side_effect=lambda: events.append("oracle closed"))

        async def _run() -> None:
            async with lifespan(create_app(use_lifespan=False)):
                await asyncio.sleep(0)

        with (
            patch("marketpulse.api.app.load_config", return_value=config),
            patch("marketpulse.api.app.Database") as database,
            patch("marketpulse.api.app.LLMGateway") as gateway_cls,
            patch("marketpulse.api.app.PriceOracle") as oracle_cls,
            patch("marketpulse.api.app.build_service"),
            patch("marketpulse.api.app._verification_loop", side_effect=loop),
        ):
            gateway_cls.from_config.return_value = gateway
            oracle_cls.from_config.return_value = oracle
            try:
                asyncio.run(_run())
            finally:
                for name in vars(app_state):
                    setattr(app_state, name, None)

        assert events == ["loop cancelled", "oracle closed"]
        gateway.close.assert_awaited_once()
        database.return_value.close.assert_called_once()
