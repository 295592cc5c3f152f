from __future__ import annotations

from marketpulse.data.price_oracle import (
    AlphaVantageProvider,
    PriceOracle,
    YahooChartProvider,
)
from marketpulse.data.sentiment import SentimentAggregator, summarize_articles

__all__ = [
    "AlphaVantageProvider",
    "PriceOracle",
    "SentimentAggregator",
    "YahooChartProvider",
    "summarize_articles",
]
