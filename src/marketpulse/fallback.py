"""Ordered first-success combinator for unreliable data sources."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def first_success(
    strategies: Sequence[tuple[str, Callable[[], Awaitable[T | None]]]],
) -> T | None:
    """Run named strategies in order and return the first non-None result.

    A strategy that raises or returns None is logged and the next one is
    tried. Returns None when every strategy fails.
    """
    for name, strategy in strategies:
        try:
            result = await strategy()
        except Exception as e:
            logger.warning("Source %s failed: %s", name, e)
            continue
        if result is not None:
            return result
        logger.debug("Source %s returned nothing", name)
    return None
