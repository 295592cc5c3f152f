from __future__ import annotations

import logging
from dataclasses import dataclass, field

from marketpulse.data.price_oracle import PriceOracle
from marketpulse.data.sentiment import SentimentAggregator
from marketpulse.forecast.scoring import Scorer, ScoringInput
from marketpulse.learning.accuracy import AccuracyStats, summarize
from marketpulse.models.market import PriceQuote
from marketpulse.models.prediction import Forecast, PredictionRecord
from marketpulse.models.sentiment import SentimentAggregate
from marketpulse.registry.queries import Registry

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50


@dataclass
class PredictionResult:
    symbol: str
    forecast: Forecast
    record: PredictionRecord
    sentiment: SentimentAggregate
    quote: PriceQuote | None = None
    storage_error: str | None = None
    history: list[PredictionRecord] = field(default_factory=list)


class PredictionEngine:
    """Combines quote, sentiment and a scorer into one persisted forecast per call."""

    def __init__(
        self,
        registry: Registry,
        oracle: PriceOracle,
        aggregator: SentimentAggregator,
        scorer: Scorer,
        window_days: int = 30,
    ) -> None:
        self._registry = registry
        self._oracle = oracle
        self._aggregator = aggregator
        self._scorer = scorer
        self._window_days = window_days

    async def predict(self, symbol: str) -> PredictionResult:
        """Score a symbol and persist exactly one PredictionRecord.

        A missing quote does not block the forecast; price_at_prediction is
        then null. A failed insert is reported in storage_error and the
        forecast is still returned.
        """
        symbol = symbol.strip().upper()
        if not symbol:
            raise ValueError("symbol is required")

        quote = await self._oracle.fetch_quote(symbol)
        sentiment = self._aggregator.aggregate(symbol, self._window_days)
        history = self._load_history(symbol)

        forecast = await self._scorer.score(
            ScoringInput(
                symbol=symbol,
                sentiment=sentiment,
                quote=quote,
                accuracy=summarize(history) if history else AccuracyStats(),
            )
        )

        record = PredictionRecord(
            symbol=symbol,
            prediction=forecast.prediction,
            confidence=forecast.confidence,
            risk_level=forecast.risk_level,
            sentiment_momentum=forecast.sentiment_momentum,
            source=forecast.source,
            avg_sentiment=sentiment.avg_sentiment,
            articles_analyzed=sentiment.article_count,
            price_at_prediction=quote.price if quote else None,
        )

        storage_error = None
        try:
            record = self._registry.insert_prediction(record)
            logger.info(
                "Stored %s prediction %s for %s: %s (%.2f)",
                forecast.source.value, record.id, symbol,
                forecast.prediction.value, forecast.confidence,
            )
        except Exception as e:
            storage_error = str(e) or e.__class__.__name__
            logger.error("Failed to store prediction for %s: %s", symbol, storage_error)

        return PredictionResult(
            symbol=symbol,
            forecast=forecast,
            record=record,
            sentiment=sentiment,
            quote=quote,
            storage_error=storage_error,
            history=history,
        )

    def _load_history(self, symbol: str) -> list[PredictionRecord]:
        try:
            return self._registry.get_recent_predictions(symbol, limit=HISTORY_LIMIT)
        except Exception:
            logger.warning("Could not load prediction history for %s", symbol, exc_info=True)
            return []
