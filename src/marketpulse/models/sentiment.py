from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class SentimentLabel(StrEnum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


@dataclass(frozen=True)
class ArticleSentiment:
    symbol: str
    compound: float
    label: str
    published_at: datetime
    title: str = ""


@dataclass
class SentimentAggregate:
    symbol: str
    avg_sentiment: float = 0.0
    trend: float = 0.0
    positive: int = 0
    neutral: int = 0
    negative: int = 0
    article_count: int = 0
    decayed: bool = False
    recent_headlines: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "totalArticles": self.article_count,
            "avgSentiment": self.avg_sentiment,
            "posCount": self.positive,
            "negCount": self.negative,
            "neuCount": self.neutral,
            "trend": self.trend,
            "decayed": self.decayed,
        }
