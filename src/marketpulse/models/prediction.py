from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class Direction(StrEnum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class RiskLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Momentum(StrEnum):
    ACCELERATING = "accelerating"
    DECELERATING = "decelerating"
    STABLE = "stable"


class PredictionSource(StrEnum):
    ALGORITHMIC = "algorithmic"
    AI = "ai"


class RecordState(StrEnum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"


@dataclass
class Forecast:
    """Scorer output before it is persisted."""

    prediction: Direction
    confidence: float
    risk_level: RiskLevel
    sentiment_momentum: Momentum
    source: PredictionSource
    short_term_outlook: str = ""
    medium_term_outlook: str = ""
    key_factors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "prediction": self.prediction.value,
            "confidence": self.confidence,
            "riskLevel": self.risk_level.value,
            "sentimentMomentum": self.sentiment_momentum.value,
            "shortTermOutlook": self.short_term_outlook,
            "mediumTermOutlook": self.medium_term_outlook,
            "keyFactors": list(self.key_factors),
            "source": self.source.value,
        }


@dataclass
class PredictionRecord:
    symbol: str
    prediction: Direction
    confidence: float
    risk_level: RiskLevel
    sentiment_momentum: Momentum
    source: PredictionSource
    avg_sentiment: float = 0.0
    articles_analyzed: int = 0
    price_at_prediction: float | None = None
    actual_outcome: Direction | None = None
    price_at_verification: float | None = None
    price_change_percent: float | None = None
    was_accurate: bool | None = None
    verified_at: datetime | None = None
    id: str | None = None
    created_at: datetime | None = None

    @property
    def state(self) -> RecordState:
        if self.was_accurate is None and self.verified_at is None:
            return RecordState.PENDING
        return RecordState.VERIFIED

    @property
    def is_verified(self) -> bool:
        return self.state is RecordState.VERIFIED

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "prediction": self.prediction.value,
            "confidence": self.confidence,
            "risk_level": self.risk_level.value,
            "sentiment_momentum": self.sentiment_momentum.value,
            "source": self.source.value,
            "avg_sentiment": self.avg_sentiment,
            "articles_analyzed": self.articles_analyzed,
            "price_at_prediction": self.price_at_prediction,
            "actual_outcome": self.actual_outcome.value if self.actual_outcome else None,
            "price_at_verification": self.price_at_verification,
            "price_change_percent": self.price_change_percent,
            "was_accurate": self.was_accurate,
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True)
class Verification:
    """Outcome of checking one record against a fresh price."""

    actual_outcome: Direction
    price_at_verification: float
    price_change_percent: float
    was_accurate: bool
    verified_at: datetime
