from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

from marketpulse.models.sentiment import ArticleSentiment, SentimentAggregate, SentimentLabel
from marketpulse.registry.queries import Registry

logger = logging.getLogger(__name__)

TREND_WINDOW = timedelta(days=7)
DECAY_HOURS = 24.0
MAX_HEADLINES = 5


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=UTC)


def decay_weight(published_at: datetime, now: datetime) -> float:
    """exp(-age/24h); articles from the future count at full weight."""
    age_hours = max(0.0, (now - _aware(published_at)).total_seconds() / 3600)
    return math.exp(-age_hours / DECAY_HOURS)


def summarize_articles(
    symbol: str,
    articles: Sequence[ArticleSentiment],
    now: datetime,
    decay: bool = False,
) -> SentimentAggregate:
    """Collapse per-article scores into one aggregate.

    The trend compares the last 7 days against days 8-14 and is 0 when
    either sub-window has no articles.
    """
    now = _aware(now)
    if not articles:
        return SentimentAggregate(symbol=symbol, decayed=decay)

    if decay:
        scores = [a.compound * decay_weight(a.published_at, now) for a in articles]
    else:
        scores = [a.compound for a in articles]

    recent_cutoff = now - TREND_WINDOW
    older_cutoff = now - 2 * TREND_WINDOW
    recent = [a for a in articles if _aware(a.published_at) >= recent_cutoff]
    older = [
        a for a in articles
        if older_cutoff <= _aware(a.published_at) < recent_cutoff
    ]
    trend = 0.0
    if recent and older:
        trend = _mean([a.compound for a in recent]) - _mean([a.compound for a in older])

    labels = [a.label for a in articles]
    return SentimentAggregate(
        symbol=symbol,
        avg_sentiment=_mean(scores),
        trend=trend,
        positive=labels.count(SentimentLabel.POSITIVE),
        neutral=labels.count(SentimentLabel.NEUTRAL),
        negative=labels.count(SentimentLabel.NEGATIVE),
        article_count=len(articles),
        decayed=decay,
        recent_headlines=[a.title for a in recent if a.title][-MAX_HEADLINES:],
    )


class SentimentAggregator:
    """Reads labeled articles for a symbol and aggregates their compound scores."""

    def __init__(self, registry: Registry, decay: bool = False) -> None:
        self._registry = registry
        self._decay = decay

    @property
    def decay(self) -> bool:
        return self._decay

    def aggregate(
        self, symbol: str, window_days: int = 30, now: datetime | None = None
    ) -> SentimentAggregate:
        if window_days <= 0:
            raise ValueError(f"window_days must be > 0, got {window_days}")
        now = now or datetime.now(UTC)
        articles = self._registry.get_articles(symbol, now - timedelta(days=window_days))
        result = summarize_articles(symbol, articles, now, decay=self._decay)
        logger.debug(
            "Sentiment for %s: avg=%.3f trend=%.3f over %d articles (decay=%s)",
            symbol, result.avg_sentiment, result.trend, result.article_count, self._decay,
        )
        return result
