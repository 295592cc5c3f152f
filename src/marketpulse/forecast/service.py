"""JSON-level entry points shared by the API and the CLI."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from marketpulse.data.price_oracle import PriceOracle
from marketpulse.data.sentiment import SentimentAggregator
from marketpulse.forecast.engine import HISTORY_LIMIT, PredictionEngine
from marketpulse.forecast.scoring import build_scorer
from marketpulse.learning.accuracy import summarize
from marketpulse.learning.verification import VerificationScheduler
from marketpulse.registry.queries import Registry

logger = logging.getLogger(__name__)

HISTORY_IN_PAYLOAD = 20


class ForecastService:
    def __init__(
        self,
        registry: Registry,
        oracle: PriceOracle,
        engine: PredictionEngine,
        scheduler: VerificationScheduler,
        report_aggregator: SentimentAggregator,
    ) -> None:
        self._registry = registry
        self._oracle = oracle
        self._engine = engine
        self._scheduler = scheduler
        self._report_aggregator = report_aggregator

    async def predict(self, symbol: str, include_history: bool = False) -> dict:
        """Forecast a symbol and return it together with its accuracy rollup.

        The quote fetched for the forecast is reused to close this symbol's
        stale pending predictions before the rollup is computed.
        """
        result = await self._engine.predict(symbol)

        if result.quote is not None:
            try:
                await self._scheduler.verify_symbol(result.symbol, result.quote)
            except Exception:
                logger.exception("Inline verification failed for %s", result.symbol)

        try:
            history = self._registry.get_recent_predictions(result.symbol, limit=HISTORY_LIMIT)
        except Exception:
            logger.warning("Falling back to pre-forecast history for %s", result.symbol)
            history = result.history

        payload = {"symbol": result.symbol}
        payload.update(result.forecast.to_dict())
        payload.update({
            "historicalData": result.sentiment.to_dict(),
            "livePrice": result.quote.to_dict() if result.quote else None,
            "accuracyStats": summarize(history).to_dict(),
            "predictionHistory": (
                [r.to_dict() for r in history[:HISTORY_IN_PAYLOAD]] if include_history else []
            ),
            "predictionId": result.record.id,
            "generatedAt": datetime.now(UTC).isoformat(),
            "storageError": result.storage_error,
        })
        return payload

    async def verify(self, force_all: bool = False) -> dict:
        summary = await self._scheduler.run_batch(force_all=force_all)
        return summary.to_dict()

    def stats(self, symbol: str | None = None, limit: int = 100) -> dict:
        if symbol is not None:
            symbol = symbol.strip().upper()
        records = self._registry.get_recent_predictions(symbol, limit=limit)
        data = summarize(records).to_dict()
        data["symbol"] = symbol
        return data

    def sentiment(self, symbol: str, window_days: int = 30) -> dict:
        symbol = symbol.strip().upper()
        aggregate = self._report_aggregator.aggregate(symbol, window_days)
        data = {"symbol": symbol, "windowDays": window_days}
        data.update(aggregate.to_dict())
        return data

    async def quote(self, symbol: str) -> dict | None:
        quote = await self._oracle.fetch_quote(symbol)
        return quote.to_dict() if quote else None


def build_service(config, registry: Registry, oracle: PriceOracle, gateway=None) -> ForecastService:
    """Wire the default component graph from config."""
    engine = PredictionEngine(
        registry,
        oracle,
        SentimentAggregator(registry, decay=False),
        build_scorer(config, gateway),
        window_days=config.sentiment_window_days,
    )
    scheduler = VerificationScheduler(registry, oracle, config.verification)
    return ForecastService(
        registry,
        oracle,
        engine,
        scheduler,
        SentimentAggregator(registry, decay=True),
    )
