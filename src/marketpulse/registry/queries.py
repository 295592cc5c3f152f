from __future__ import annotations

import logging
import uuid
from datetime import datetime

from marketpulse.models.prediction import (
    Direction,
    Momentum,
    PredictionRecord,
    PredictionSource,
    RiskLevel,
    Verification,
)
from marketpulse.models.sentiment import ArticleSentiment
from marketpulse.registry.db import Database

logger = logging.getLogger(__name__)

_PREDICTION_COLUMNS = (
    "id, symbol, prediction, confidence, risk_level, sentiment_momentum, source, "
    "avg_sentiment, articles_analyzed, price_at_prediction, actual_outcome, "
    "price_at_verification, price_change_percent, was_accurate, verified_at, created_at"
)


def _float_or_none(value) -> float | None:
    return float(value) if value is not None else None


class Registry:
    """Query layer bridging Python models and the pulse schema."""

    def __init__(self, db: Database) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Articles (read-only, written by the labeling pipeline)
    # ------------------------------------------------------------------

    def get_articles(self, symbol: str, since: datetime) -> list[ArticleSentiment]:
        """Labeled articles for a symbol published at or after ``since``, oldest first."""
        rows = self._db.execute(
            "SELECT symbol, sentiment_compound, sentiment_label, published, title "
            "FROM pulse.articles "
            "WHERE symbol = %s AND published >= %s AND sentiment_compound IS NOT NULL "
            "ORDER BY published ASC",
            (symbol, since),
        )
        return [
            ArticleSentiment(
                symbol=r["symbol"],
                compound=float(r["sentiment_compound"]),
                label=(r["sentiment_label"] or "").lower(),
                published_at=r["published"],
                title=r["title"] or "",
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Prediction history
    # ------------------------------------------------------------------

    def insert_prediction(self, record: PredictionRecord) -> PredictionRecord:
        """Persist a new pending prediction. Returns the record with id and created_at set."""
        record_id = record.id or str(uuid.uuid4())
        rows = self._db.execute(
            "INSERT INTO pulse.prediction_history "
            "(id, symbol, prediction, confidence, risk_level, sentiment_momentum, "
            "avg_sentiment, articles_analyzed, price_at_prediction, source, created_at) "
            "VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, NOW()) "
            "RETURNING id, created_at",
            (
                record_id,
                record.symbol,
                record.prediction.value,
                record.confidence,
                record.risk_level.value,
                record.sentiment_momentum.value,
                record.avg_sentiment,
                record.articles_analyzed,
                record.price_at_prediction,
                record.source.value,
            ),
        )
        record.id = str(rows[0]["id"]) if rows else record_id
        record.created_at = rows[0]["created_at"] if rows else None
        return record

    def get_pending_predictions(
        self, older_than: datetime | None = None, limit: int = 100
    ) -> list[PredictionRecord]:
        """Unverified predictions that can be closed, newest first.

        Rows with no usable price_at_prediction are left out. Rows with no
        created_at always qualify and come first so a full batch still repairs
        them. With ``older_than`` other rows must be created before it.
        """
        where = (
            "WHERE was_accurate IS NULL AND verified_at IS NULL "
            "AND (price_at_prediction > 0 OR created_at IS NULL)"
        )
        params: list = []
        if older_than is not None:
            where += " AND (created_at < %s OR created_at IS NULL)"
            params.append(older_than)
        rows = self._db.execute(
            f"SELECT {_PREDICTION_COLUMNS} FROM pulse.prediction_history {where} "
            f"ORDER BY created_at DESC NULLS FIRST LIMIT %s",
            tuple(params + [limit]),
        )
        return [self._row_to_prediction(r) for r in rows]

    def get_pending_for_symbol(
        self, symbol: str, older_than: datetime, limit: int = 10
    ) -> list[PredictionRecord]:
        rows = self._db.execute(
            f"SELECT {_PREDICTION_COLUMNS} FROM pulse.prediction_history "
            f"WHERE symbol = %s AND was_accurate IS NULL AND verified_at IS NULL "
            f"AND price_at_prediction > 0 AND created_at < %s "
            f"ORDER BY created_at DESC LIMIT %s",
            (symbol, older_than, limit),
        )
        return [self._row_to_prediction(r) for r in rows]

    def get_recent_predictions(
        self, symbol: str | None = None, limit: int = 50
    ) -> list[PredictionRecord]:
        """Most recent predictions, optionally for one symbol."""
        if symbol is not None:
            rows = self._db.execute(
                f"SELECT {_PREDICTION_COLUMNS} FROM pulse.prediction_history "
                f"WHERE symbol = %s ORDER BY created_at DESC NULLS LAST LIMIT %s",
                (symbol, limit),
            )
        else:
            rows = self._db.execute(
                f"SELECT {_PREDICTION_COLUMNS} FROM pulse.prediction_history "
                f"ORDER BY created_at DESC NULLS LAST LIMIT %s",
                (limit,),
            )
        return [self._row_to_prediction(r) for r in rows]

    def stamp_created_at(self, prediction_id: str, when: datetime) -> bool:
        """Fill in a missing created_at. Never overwrites an existing one."""
        count = self._db.execute_rowcount(
            "UPDATE pulse.prediction_history SET created_at = %s "
            "WHERE id = %s AND created_at IS NULL",
            (when, prediction_id),
        )
        return count == 1

    def record_verification(self, prediction_id: str, verification: Verification) -> bool:
        """Close a pending prediction.

        The update only applies while the verification fields are still
        null, so a concurrent batch that got there first wins and this call
        returns False.
        """
        count = self._db.execute_rowcount(
            "UPDATE pulse.prediction_history "
            "SET actual_outcome = %s, price_at_verification = %s, "
            "price_change_percent = %s, was_accurate = %s, verified_at = %s "
            "WHERE id = %s AND was_accurate IS NULL AND verified_at IS NULL",
            (
                verification.actual_outcome.value,
                verification.price_at_verification,
                verification.price_change_percent,
                verification.was_accurate,
                verification.verified_at,
                prediction_id,
            ),
        )
        return count == 1

    @staticmethod
    def _row_to_prediction(r: dict) -> PredictionRecord:
        return PredictionRecord(
            id=str(r["id"]) if r["id"] is not None else None,
            symbol=r["symbol"],
            prediction=Direction(r["prediction"]),
            confidence=float(r["confidence"]) if r["confidence"] is not None else 0.0,
            risk_level=RiskLevel(r["risk_level"] or "medium"),
            sentiment_momentum=Momentum(r["sentiment_momentum"] or "stable"),
            source=PredictionSource(r["source"] or "algorithmic"),
            avg_sentiment=float(r["avg_sentiment"]) if r["avg_sentiment"] is not None else 0.0,
            articles_analyzed=r["articles_analyzed"] or 0,
            price_at_prediction=_float_or_none(r["price_at_prediction"]),
            actual_outcome=Direction(r["actual_outcome"]) if r["actual_outcome"] else None,
            price_at_verification=_float_or_none(r["price_at_verification"]),
            price_change_percent=_float_or_none(r["price_change_percent"]),
            was_accurate=r["was_accurate"],
            verified_at=r["verified_at"],
            created_at=r["created_at"],
        )
