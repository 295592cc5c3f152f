"""Live quote retrieval with ordered provider fallback.

Providers are tried in a fixed order until one yields a usable quote:
Alpha Vantage when a key is configured, then Yahoo's chart endpoint through
several URL variants. Nothing here fabricates a price: when every source
fails the oracle returns None and callers skip the symbol.
"""

from __future__ import annotations

import logging
import math
import random
from typing import Any

import httpx

from marketpulse.fallback import first_success
from marketpulse.models.market import PriceQuote, infer_currency, is_usable_price
from marketpulse.ratelimit import RateLimiter, UnlimitedRateLimiter

logger = logging.getLogger(__name__)

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
]


def _to_float(value: Any) -> float | None:
    """Parse a provider number, tolerating strings like '1.23%'."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().rstrip("%")
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


def _pct_change(current: float, previous: float | None) -> float:
    if previous is None or previous <= 0:
        return 0.0
    return (current - previous) / previous * 100


class AlphaVantageProvider:
    """Premium GLOBAL_QUOTE provider, only used when an API key is configured."""

    name = "alpha_vantage"
    base_url = "https://www.alphavantage.co/query"

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key

    @staticmethod
    def provider_symbol(symbol: str) -> str:
        # Alpha Vantage lists NSE tickers under the BSE suffix.
        if symbol.upper().endswith(".NS"):
            return symbol[:-3] + ".BSE"
        return symbol

    async def fetch_quote(
        self, client: httpx.AsyncClient, symbol: str, timeout: float
    ) -> PriceQuote | None:
        response = await client.get(
            self.base_url,
            params={
                "function": "GLOBAL_QUOTE",
                "symbol": self.provider_symbol(symbol),
                "apikey": self._api_key,
            },
            timeout=timeout,
        )
        response.raise_for_status()
        return self.parse(symbol, response.json())

    def parse(self, symbol: str, data: Any) -> PriceQuote | None:
        quote = data.get("Global Quote") if isinstance(data, dict) else None
        if not isinstance(quote, dict) or not quote:
            return None

        price = _to_float(quote.get("05. price"))
        if price is None or not is_usable_price(price):
            return None

        change = _to_float(quote.get("10. change percent"))
        if change is None:
            change = _pct_change(price, _to_float(quote.get("08. previous close")))

        return PriceQuote(
            symbol=symbol,
            price=price,
            change_percent=change,
            provider="Alpha Vantage",
            currency=infer_currency(symbol),
        )


class YahooChartProvider:
    """Free chart-style provider queried through several mirrors."""

    name = "yahoo_chart"
    url_templates = (
        "https://query1.finance.yahoo.com/v8/finance/chart/{symbol}?interval=1d&range=5d",
        "https://query2.finance.yahoo.com/v8/finance/chart/{symbol}?interval=1d&range=5d",
        "https://query1.finance.yahoo.com/v8/finance/chart/{symbol}",
    )

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def urls(self, symbol: str) -> list[str]:
        return [t.format(symbol=symbol) for t in self.url_templates]

    def headers(self) -> dict[str, str]:
        return {
            "User-Agent": self._rng.choice(USER_AGENTS),
            "Accept": "application/json",
        }

    async def fetch_quote(
        self, client: httpx.AsyncClient, symbol: str, timeout: float
    ) -> PriceQuote | None:
        async def _from(url: str) -> PriceQuote | None:
            response = await client.get(url, headers=self.headers(), timeout=timeout)
            response.raise_for_status()
            return self.parse(symbol, response.json())

        return await first_success(
            [(url, lambda url=url: _from(url)) for url in self.urls(symbol)]
        )

    def parse(self, symbol: str, data: Any) -> PriceQuote | None:
        try:
            result = data["chart"]["result"][0]
        except (KeyError, IndexError, TypeError):
            return None
        if not isinstance(result, dict):
            return None

        meta = result.get("meta") or {}
        closes: list[float] = []
        try:
            raw_closes = result["indicators"]["quote"][0]["close"] or []
        except (KeyError, IndexError, TypeError):
            raw_closes = []
        for value in raw_closes:
            parsed = _to_float(value)
            if parsed is not None and parsed > 0:
                closes.append(parsed)

        price = _to_float(meta.get("regularMarketPrice"))
        if price is None or not is_usable_price(price):
            price = closes[-1] if closes else None
        if price is None or not is_usable_price(price):
            return None

        previous = _to_float(meta.get("previousClose"))
        if previous is None and len(closes) >= 2:
            previous = closes[-2]
        if previous is None:
            previous = _to_float(meta.get("chartPreviousClose"))

        return PriceQuote(
            symbol=symbol,
            price=price,
            change_percent=_pct_change(price, previous),
            provider="Yahoo Finance",
            currency=meta.get("currency") or infer_currency(symbol),
        )


class PriceOracle:
    """Resolve a current quote for a symbol from the first provider that works."""

    def __init__(
        self,
        providers: list,
        rate_limiter: RateLimiter | None = None,
        timeout_seconds: float = 8.0,
    ) -> None:
        self._providers = providers
        self._rate_limiter = rate_limiter or UnlimitedRateLimiter()
        self._timeout = timeout_seconds
        self._client: httpx.AsyncClient | None = None

    @property
    def provider_names(self) -> list[str]:
        return [p.name for p in self._providers]

    async def start(self) -> None:
        self._client = httpx.AsyncClient(follow_redirects=True)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def fetch_quote(self, symbol: str) -> PriceQuote | None:
        """Return a quote, or None when every provider failed."""
        symbol = symbol.strip().upper()
        if not symbol:
            raise ValueError("symbol is required")
        if not self._client:
            await self.start()

        async def _attempt(provider) -> PriceQuote | None:
            # Budget is only spent by providers that are actually reached.
            if not self._rate_limiter.allow(provider.name):
                logger.info("Provider %s rate limited, skipping %s", provider.name, symbol)
                return None
            return await provider.fetch_quote(self._client, symbol, self._timeout)

        quote = await first_success(
            [(p.name, lambda p=p: _attempt(p)) for p in self._providers]
        )
        if quote is None:
            logger.warning("No provider returned a usable quote for %s", symbol)
            return None

        logger.info(
            "%s quote for %s: %.4f %s (%+.2f%%)",
            quote.provider, symbol, quote.price, quote.currency, quote.change_percent,
        )
        return quote

    @classmethod
    def from_config(cls, config, rate_limiter: RateLimiter | None = None) -> PriceOracle:
        """Build the oracle with the provider order implied by the config."""
        providers: list = []
        if config.alpha_vantage_key:
            providers.append(AlphaVantageProvider(config.alpha_vantage_key))
        providers.append(YahooChartProvider())
        return cls(
            providers,
            rate_limiter=rate_limiter,
            timeout_seconds=config.quote_timeout_seconds,
        )
