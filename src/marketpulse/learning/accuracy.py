"""Accuracy rollups over prediction records. Pure functions, no I/O."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from marketpulse.models.prediction import Direction, PredictionRecord


@dataclass
class CategoryStats:
    total: int = 0
    correct: int = 0

    @property
    def rate(self) -> float:
        return self.correct / self.total if self.total else 0.0


@dataclass
class AccuracyStats:
    total_predictions: int = 0
    verified_predictions: int = 0
    accurate_predictions: int = 0
    accuracy_rate: float = 0.0
    avg_confidence: float = 0.0
    by_type: dict[Direction, CategoryStats] = field(
        default_factory=lambda: {d: CategoryStats() for d in Direction}
    )

    @property
    def pending_predictions(self) -> int:
        return self.total_predictions - self.verified_predictions

    def to_dict(self) -> dict:
        return {
            "totalPredictions": self.total_predictions,
            "verifiedPredictions": self.verified_predictions,
            "pendingPredictions": self.pending_predictions,
            "accuratePredictions": self.accurate_predictions,
            "accuracyRate": self.accuracy_rate,
            "avgConfidence": self.avg_confidence,
            "byType": {
                d.value: {"total": s.total, "correct": s.correct, "rate": s.rate}
                for d, s in self.by_type.items()
            },
        }


def summarize(records: Iterable[PredictionRecord]) -> AccuracyStats:
    """Roll up verified/pending counts and accuracy.

    Per-category counts cover verified records only; average confidence
    covers every record regardless of state.
    """
    records = list(records)
    stats = AccuracyStats(total_predictions=len(records))
    if not records:
        return stats

    for r in records:
        if not r.is_verified:
            continue
        stats.verified_predictions += 1
        category = stats.by_type[r.prediction]
        category.total += 1
        if r.was_accurate:
            stats.accurate_predictions += 1
            category.correct += 1

    if stats.verified_predictions:
        stats.accuracy_rate = stats.accurate_predictions / stats.verified_predictions
    stats.avg_confidence = sum(r.confidence or 0.0 for r in records) / len(records)
    return stats
