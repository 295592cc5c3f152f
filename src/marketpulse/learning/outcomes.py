"""Rules for judging a prediction against the realised price move."""

from __future__ import annotations

from datetime import UTC, datetime

from marketpulse.config import VerificationPolicy
from marketpulse.models.prediction import Direction, PredictionRecord, Verification


def price_change_percent(price_at_prediction: float, current_price: float) -> float:
    return (current_price - price_at_prediction) / price_at_prediction * 100


def classify_move(change_pct: float, neutral_band_pct: float = 1.5) -> Direction:
    """bullish iff change > T, bearish iff change < -T, otherwise neutral."""
    if change_pct > neutral_band_pct:
        return Direction.BULLISH
    if change_pct < -neutral_band_pct:
        return Direction.BEARISH
    return Direction.NEUTRAL


def was_accurate(
    prediction: Direction,
    actual: Direction,
    change_pct: float,
    policy: VerificationPolicy = VerificationPolicy(),
) -> bool:
    """Exact match, or inside the wider tolerance for the predicted class.

    Directional calls get credit for any move past the leniency threshold in
    their direction even if it stayed inside the neutral band.
    """
    if prediction == actual:
        return True
    if prediction is Direction.NEUTRAL:
        return abs(change_pct) < policy.neutral_tolerance_pct
    if prediction is Direction.BULLISH:
        return change_pct > policy.directional_leniency_pct
    if prediction is Direction.BEARISH:
        return change_pct < -policy.directional_leniency_pct
    return False


def evaluate(
    record: PredictionRecord,
    current_price: float,
    policy: VerificationPolicy = VerificationPolicy(),
    now: datetime | None = None,
) -> Verification | None:
    """Verification for a record, or None when it has no usable reference price."""
    p0 = record.price_at_prediction
    if p0 is None or p0 <= 0:
        return None
    change = price_change_percent(p0, current_price)
    actual = classify_move(change, policy.neutral_band_pct)
    return Verification(
        actual_outcome=actual,
        price_at_verification=current_price,
        price_change_percent=change,
        was_accurate=was_accurate(record.prediction, actual, change, policy),
        verified_at=now or datetime.now(UTC),
    )
