"""Close out pending predictions against live prices.

A batch selects pending records, groups them by symbol so each symbol costs
one quote lookup, and writes the realised outcome back with a conditional
update. One symbol failing never aborts the batch.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from marketpulse.config import VerificationPolicy
from marketpulse.data.price_oracle import PriceOracle
from marketpulse.learning.outcomes import evaluate
from marketpulse.models.market import PriceQuote
from marketpulse.models.prediction import PredictionRecord
from marketpulse.registry.queries import Registry

logger = logging.getLogger(__name__)


@dataclass
class VerificationSummary:
    verified: int = 0
    errors: int = 0
    skipped: int = 0
    repaired: int = 0
    total: int = 0

    def to_dict(self) -> dict:
        return {
            "success": True,
            "message": f"Verified {self.verified} predictions",
            "verified": self.verified,
            "errors": self.errors,
            "skipped": self.skipped,
            "repaired": self.repaired,
            "total": self.total,
        }


class VerificationScheduler:
    """Verifies stale pending predictions, one quote per symbol."""

    def __init__(
        self,
        registry: Registry,
        oracle: PriceOracle,
        policy: VerificationPolicy | None = None,
    ) -> None:
        self._registry = registry
        self._oracle = oracle
        self._policy = policy or VerificationPolicy()

    def staleness_cutoff(self, now: datetime | None = None) -> datetime:
        now = now or datetime.now(UTC)
        return now - timedelta(hours=self._policy.staleness_hours)

    async def run_batch(self, force_all: bool = False) -> VerificationSummary:
        """Verify one batch of pending predictions.

        force_all ignores the staleness threshold so an operator can flush
        a backlog on demand.
        """
        now = datetime.now(UTC)
        older_than = None if force_all else self.staleness_cutoff(now)
        pending = self._registry.get_pending_predictions(
            older_than=older_than, limit=self._policy.batch_limit
        )
        summary = VerificationSummary(total=len(pending))
        if not pending:
            logger.info("No predictions to verify")
            return summary

        groups = self._group_by_symbol(pending, now, summary)
        logger.info(
            "Verifying %d predictions across %d symbols (force_all=%s)",
            sum(len(g) for g in groups.values()), len(groups), force_all,
        )

        symbols = list(groups)
        for i, symbol in enumerate(symbols):
            records = groups[symbol]
            try:
                quote = await self._oracle.fetch_quote(symbol)
                if quote is None:
                    logger.warning(
                        "No price for %s, leaving %d predictions pending", symbol, len(records)
                    )
                    summary.errors += len(records)
                else:
                    self._close_group(symbol, records, quote, summary)
            except Exception:
                logger.exception("Error processing symbol %s", symbol)
                summary.errors += len(records)

            if i < len(symbols) - 1 and self._policy.group_delay_seconds > 0:
                await asyncio.sleep(self._policy.group_delay_seconds)

        logger.info(
            "Verification complete: %d verified, %d errors, %d skipped, %d repaired",
            summary.verified, summary.errors, summary.skipped, summary.repaired,
        )
        return summary

    async def verify_symbol(self, symbol: str, quote: PriceQuote) -> VerificationSummary:
        """Close stale pending predictions for one symbol with a quote already in hand."""
        pending = self._registry.get_pending_for_symbol(
            symbol, older_than=self.staleness_cutoff(), limit=10
        )
        summary = VerificationSummary(total=len(pending))
        if pending:
            logger.info(
                "Verifying %d past predictions for %s at %.4f", len(pending), symbol, quote.price
            )
            self._close_group(symbol, pending, quote, summary)
        return summary

    def _group_by_symbol(
        self, pending: list[PredictionRecord], now: datetime, summary: VerificationSummary
    ) -> dict[str, list[PredictionRecord]]:
        groups: dict[str, list[PredictionRecord]] = defaultdict(list)
        for record in pending:
            if record.created_at is None:
                # Age is unknown; stamp it so the next pass can judge it.
                logger.info("Fixing missing created_at for prediction %s", record.id)
                try:
                    stamped = self._registry.stamp_created_at(record.id, now)
                except Exception:
                    logger.exception("Error fixing created_at for prediction %s", record.id)
                    summary.errors += 1
                    continue
                if stamped:
                    summary.repaired += 1
                summary.skipped += 1
                continue
            groups[record.symbol].append(record)
        return groups

    def _close_group(
        self,
        symbol: str,
        records: list[PredictionRecord],
        quote: PriceQuote,
        summary: VerificationSummary,
    ) -> None:
        for record in records:
            verification = evaluate(record, quote.price, self._policy)
            if verification is None:
                logger.info(
                    "Skipping prediction %s - invalid price at prediction: %s",
                    record.id, record.price_at_prediction,
                )
                summary.skipped += 1
                continue
            try:
                claimed = self._registry.record_verification(record.id, verification)
            except Exception:
                logger.exception("Error verifying prediction %s", record.id)
                summary.errors += 1
                continue
            if not claimed:
                logger.info("Prediction %s was already verified, leaving it untouched", record.id)
                summary.skipped += 1
                continue
            summary.verified += 1
            logger.info(
                "Verified prediction %s (%s): %s -> %s (%+.2f%%) %s",
                record.id,
                symbol,
                record.prediction.value,
                verification.actual_outcome.value,
                verification.price_change_percent,
                "ACCURATE" if verification.was_accurate else "INACCURATE",
            )
