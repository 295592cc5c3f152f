from __future__ import annotations

from marketpulse.models.market import PriceQuote, infer_currency, is_usable_price
from marketpulse.models.prediction import (
    Direction,
    Forecast,
    Momentum,
    PredictionRecord,
    PredictionSource,
    RecordState,
    RiskLevel,
    Verification,
)
from marketpulse.models.sentiment import ArticleSentiment, SentimentAggregate, SentimentLabel

__all__ = [
    # market
    "PriceQuote",
    "infer_currency",
    "is_usable_price",
    # sentiment
    "ArticleSentiment",
    "SentimentAggregate",
    "SentimentLabel",
    # prediction
    "Direction",
    "Forecast",
    "Momentum",
    "PredictionRecord",
    "PredictionSource",
    "RecordState",
    "RiskLevel",
    "Verification",
]
