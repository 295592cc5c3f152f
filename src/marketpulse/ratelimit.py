"""Rate limiters shared by the API surface, the price oracle and the LLM gateway."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    """Fixed-window limiter keyed by an arbitrary identifier.

    ``allow`` answers immediately and never blocks, so callers decide what a
    denial means (429 for HTTP clients, skipping a provider for the oracle).
    Swap in a distributed implementation by providing the same method.
    """

    def __init__(self, limit: int = 50, window_seconds: float = 60.0) -> None:
        if limit <= 0:
            raise ValueError(f"limit must be > 0, got {limit}")
        self._limit = limit
        self._window_seconds = window_seconds
        self._windows: dict[str, _Window] = {}
        self._next_sweep = 0.0

    def allow(self, identifier: str) -> bool:
        now = time.monotonic()
        if now >= self._next_sweep:
            self._sweep(now)
        window = self._windows.get(identifier)
        if window is None or now > window.reset_at:
            self._windows[identifier] = _Window(count=1, reset_at=now + self._window_seconds)
            return True
        if window.count >= self._limit:
            logger.debug("Rate limit hit for %s", identifier)
            return False
        window.count += 1
        return True

    def _sweep(self, now: float) -> None:
        """Drop expired windows, at most once per window length."""
        self._windows = {k: w for k, w in self._windows.items() if w.reset_at >= now}
        self._next_sweep = now + self._window_seconds


class UnlimitedRateLimiter(RateLimiter):
    """Limiter that always allows; the default when no limiter is injected."""

    def __init__(self) -> None:
        super().__init__(limit=1)

    def allow(self, identifier: str) -> bool:
        return True


@dataclass
class SlidingWindowLimiter:
    """Simple sliding window rate limiter that waits instead of denying."""

    rpm_limit: int
    _timestamps: list[float] = field(default_factory=list)

    async def acquire(self) -> None:
        """Wait until rate limit allows a request."""
        now = time.monotonic()
        self._timestamps = [t for t in self._timestamps if now - t < 60]
        if len(self._timestamps) >= self.rpm_limit:
            wait = 60 - (now - self._timestamps[0])
            if wait > 0:
                logger.info("Rate limit: waiting %.1fs", wait)
                await asyncio.sleep(wait)
        self._timestamps.append(time.monotonic())
