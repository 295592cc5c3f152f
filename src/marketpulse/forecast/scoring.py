"""Forecast scorers.

A Scorer turns aggregated sentiment plus an optional quote into a Forecast.
The deterministic AlgorithmicScorer is always available; LLMScorer asks a
language model for the same schema and falls back to the deterministic
result on any failure. Which one runs is decided once, in build_scorer.
"""

from __future__ import annotations

import abc
import json
import logging
import re
from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, Field, ValidationError

from marketpulse.agents.gateway import LLMGateway
from marketpulse.learning.accuracy import AccuracyStats
from marketpulse.models.market import PriceQuote
from marketpulse.models.prediction import (
    Direction,
    Forecast,
    Momentum,
    PredictionSource,
    RiskLevel,
)
from marketpulse.models.sentiment import SentimentAggregate

logger = logging.getLogger(__name__)

# Classification thresholds
STRONG_COMBINED = 0.8
STRONG_SENTIMENT = 0.15
WEAK_SENTIMENT = 0.05
MOMENTUM_THRESHOLD = 0.1


@dataclass
class ScoringInput:
    symbol: str
    sentiment: SentimentAggregate
    quote: PriceQuote | None = None
    accuracy: AccuracyStats | None = None

    @property
    def price_change_percent(self) -> float:
        return self.quote.change_percent if self.quote else 0.0


def combined_score(avg_sentiment: float, trend: float, price_change_percent: float) -> float:
    return avg_sentiment + 0.5 * trend + 0.3 * (price_change_percent / 100)


def classify(
    avg_sentiment: float, trend: float, price_change_percent: float = 0.0
) -> tuple[Direction, float]:
    """Direction and unrounded confidence for the deterministic path."""
    combined = combined_score(avg_sentiment, trend, price_change_percent)
    strength = abs(avg_sentiment)

    if combined > STRONG_COMBINED:
        return Direction.BULLISH, min(0.9, 0.6 + 0.2 * combined)
    if combined < -STRONG_COMBINED:
        return Direction.BEARISH, min(0.9, 0.6 + 0.2 * abs(combined))
    if avg_sentiment > STRONG_SENTIMENT and trend >= 0:
        return Direction.BULLISH, min(0.85, 0.5 + strength + 0.5 * abs(trend))
    if avg_sentiment < -STRONG_SENTIMENT and trend <= 0:
        return Direction.BEARISH, min(0.85, 0.5 + strength + 0.5 * abs(trend))
    if avg_sentiment > WEAK_SENTIMENT:
        return Direction.BULLISH, min(0.65, 0.4 + strength)
    if avg_sentiment < -WEAK_SENTIMENT:
        return Direction.BEARISH, min(0.65, 0.4 + strength)
    return Direction.NEUTRAL, 0.5 + (1 - strength) * 0.3


def risk_from_counts(positive: int, negative: int) -> RiskLevel:
    """A balanced positive/negative split means disagreement, hence higher risk."""
    if positive > 0 and negative > 0:
        volatility = abs(positive - negative) / (positive + negative)
    else:
        volatility = 0.5
    if volatility < 0.3:
        return RiskLevel.HIGH
    if volatility < 0.6:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def momentum_from_trend(trend: float) -> Momentum:
    if trend > MOMENTUM_THRESHOLD:
        return Momentum.ACCELERATING
    if trend < -MOMENTUM_THRESHOLD:
        return Momentum.DECELERATING
    return Momentum.STABLE


def key_factors(sentiment: SentimentAggregate, price_change_percent: float = 0.0) -> list[str]:
    pos, neg = sentiment.positive, sentiment.negative
    factors: list[str] = []
    if pos > neg * 1.5:
        factors.append("Strong positive news coverage")
    if neg > pos * 1.5:
        factors.append("Elevated negative sentiment")
    if sentiment.trend > 0.05:
        factors.append("Improving sentiment trend")
    if sentiment.trend < -0.05:
        factors.append("Declining sentiment momentum")
    if abs(price_change_percent) >= 2:
        factors.append(f"Recent price move of {price_change_percent:+.2f}%")
    if sentiment.article_count > 20:
        factors.append("High media attention")
    if sentiment.article_count < 5:
        factors.append("Limited news coverage")
    if not factors:
        factors.append("Mixed market signals")
    return factors[:3]


def _outlooks(prediction: Direction, confidence: float) -> tuple[str, str]:
    if prediction is Direction.BULLISH:
        return (
            "Positive momentum expected to continue over the next week "
            f"with {round(confidence * 100)}% confidence.",
            "If current positive trend continues, expect sustained upward "
            "pressure over the coming month.",
        )
    if prediction is Direction.BEARISH:
        return (
            "Caution advised for the short term as negative sentiment persists.",
            "Extended weakness possible unless sentiment shifts significantly.",
        )
    return (
        "Market sentiment remains mixed; expect consolidation in the near term.",
        "Watch for catalyst events that could break the current neutral pattern.",
    )


class Scorer(abc.ABC):
    """Produces a Forecast from scoring inputs."""

    name: str = "scorer"

    @abc.abstractmethod
    async def score(self, inputs: ScoringInput) -> Forecast:
        ...


class AlgorithmicScorer(Scorer):
    """Deterministic weighted-sum scorer."""

    name = "algorithmic"

    def evaluate(self, inputs: ScoringInput) -> Forecast:
        sentiment = inputs.sentiment
        change = inputs.price_change_percent
        prediction, confidence = classify(sentiment.avg_sentiment, sentiment.trend, change)
        confidence = round(confidence, 2)
        short_term, medium_term = _outlooks(prediction, confidence)
        return Forecast(
            prediction=prediction,
            confidence=confidence,
            risk_level=risk_from_counts(sentiment.positive, sentiment.negative),
            sentiment_momentum=momentum_from_trend(sentiment.trend),
            source=PredictionSource.ALGORITHMIC,
            short_term_outlook=short_term,
            medium_term_outlook=medium_term,
            key_factors=key_factors(sentiment, change),
        )

    async def score(self, inputs: ScoringInput) -> Forecast:
        return self.evaluate(inputs)


class LLMForecastPayload(BaseModel):
    """Schema an LLM reply must satisfy to be used as a forecast."""

    prediction: Literal["bullish", "bearish", "neutral"]
    confidence: float = Field(ge=0.0, le=1.0)
    shortTermOutlook: str
    mediumTermOutlook: str
    keyFactors: list[str]
    riskLevel: Literal["low", "medium", "high"]
    sentimentMomentum: Literal["accelerating", "decelerating", "stable"]


SYSTEM_PROMPT = (
    "You are a markets analyst. You turn aggregated news sentiment statistics "
    "into a short-term directional call. Reply with a single JSON object and "
    "nothing else."
)


def build_prompt(inputs: ScoringInput) -> str:
    s = inputs.sentiment
    trend_word = "improving" if s.trend > 0 else "declining" if s.trend < 0 else "stable"
    headlines = "; ".join(s.recent_headlines) or "No recent headlines"
    lines = [
        f"Analyze this stock sentiment data and predict future sentiment for {inputs.symbol}:",
        "",
        "Historical Data (30 days):",
        f"- Total articles analyzed: {s.article_count}",
        f"- Average sentiment score: {s.avg_sentiment:.3f} (range: -1 to 1)",
        f"- Distribution: {s.positive} positive, {s.neutral} neutral, {s.negative} negative",
        f"- Recent trend: {trend_word} (change: {s.trend:.3f})",
        f"- Recent headlines: {headlines}",
    ]
    if inputs.quote is not None:
        q = inputs.quote
        lines.append(f"- Current price: {q.price:.2f} {q.currency} ({q.change_percent:+.2f}%)")
    if inputs.accuracy is not None and inputs.accuracy.verified_predictions > 0:
        a = inputs.accuracy
        lines.append(
            f"- Historical accuracy: {a.accuracy_rate * 100:.1f}% "
            f"({a.verified_predictions} verified predictions)"
        )
    lines += [
        "",
        "Provide a JSON response with ONLY this structure (no markdown, no explanation):",
        "{",
        '  "prediction": "bullish" | "bearish" | "neutral",',
        '  "confidence": 0.0-1.0,',
        '  "shortTermOutlook": "1-2 sentence outlook for next 7 days",',
        '  "mediumTermOutlook": "1-2 sentence outlook for next 30 days",',
        '  "keyFactors": ["factor1", "factor2", "factor3"],',
        '  "riskLevel": "low" | "medium" | "high",',
        '  "sentimentMomentum": "accelerating" | "decelerating" | "stable"',
        "}",
    ]
    return "\n".join(lines)


def parse_llm_forecast(content: str) -> Forecast:
    """Parse an LLM reply into a Forecast. Raises ValueError when unusable."""
    match = re.search(r"\{[\s\S]*\}", content or "")
    if not match:
        raise ValueError("no JSON object in LLM response")
    try:
        raw = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ValueError(f"malformed JSON in LLM response: {e}") from e
    try:
        payload = LLMForecastPayload.model_validate(raw)
    except ValidationError as e:
        raise ValueError(f"LLM response failed validation: {e.error_count()} errors") from e

    return Forecast(
        prediction=Direction(payload.prediction),
        confidence=round(payload.confidence, 2),
        risk_level=RiskLevel(payload.riskLevel),
        sentiment_momentum=Momentum(payload.sentimentMomentum),
        source=PredictionSource.AI,
        short_term_outlook=payload.shortTermOutlook,
        medium_term_outlook=payload.mediumTermOutlook,
        key_factors=payload.keyFactors[:3],
    )


class LLMScorer(Scorer):
    """Asks an LLM for the forecast; any failure yields the fallback scorer's result."""

    name = "ai"

    def __init__(
        self,
        gateway: LLMGateway,
        provider: str,
        fallback: AlgorithmicScorer | None = None,
        model: str | None = None,
    ) -> None:
        self._gateway = gateway
        self._provider = provider
        self._fallback = fallback or AlgorithmicScorer()
        self._model = model

    async def score(self, inputs: ScoringInput) -> Forecast:
        try:
            response = await self._gateway.call(
                self._provider,
                SYSTEM_PROMPT,
                build_prompt(inputs),
                model=self._model,
            )
            forecast = parse_llm_forecast(response.content)
        except Exception as e:
            logger.warning(
                "LLM scoring failed for %s via %s, using algorithmic scorer: %s",
                inputs.symbol, self._provider, e,
            )
            return await self._fallback.score(inputs)

        logger.info(
            "LLM forecast for %s: %s (%.2f) via %s",
            inputs.symbol, forecast.prediction.value, forecast.confidence, self._provider,
        )
        return forecast


def build_scorer(config, gateway: LLMGateway | None = None) -> Scorer:
    """Pick the scorer for this process: LLM-backed when enabled and a provider exists."""
    fallback = AlgorithmicScorer()
    if gateway is None or not config.use_llm_scorer:
        return fallback
    provider = gateway.default_provider(config.llm_provider)
    if provider is None:
        logger.info("No LLM provider configured, using algorithmic scorer")
        return fallback
    logger.info("Using LLM scorer via %s", provider)
    return LLMScorer(gateway, provider, fallback=fallback)
