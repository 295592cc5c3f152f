"""Tests for the quote providers and the fallback oracle.

HTTP is served by httpx.MockTransport so no network is touched.
"""

from __future__ import annotations

import asyncio
import random
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from marketpulse.data.price_oracle import (
    USER_AGENTS,
    AlphaVantageProvider,
    PriceOracle,
    YahooChartProvider,
)
from marketpulse.models.market import PriceQuote, infer_currency, is_usable_price
from marketpulse.ratelimit import RateLimiter


def _chart(price=None, previous=None, closes=None, currency="USD", chart_previous=None) -> dict:
    meta = {"currency": currency}
    if price is not None:
        meta["regularMarketPrice"] = price
    if previous is not None:
        meta["previousClose"] = previous
    if chart_previous is not None:
        meta["chartPreviousClose"] = chart_previous
    return {
        "chart": {
            "result": [
                {"meta": meta, "indicators": {"quote": [{"close": closes or []}]}}
            ]
        }
    }


def _av(price="187.4400", change="1.2500%", previous="185.1300") -> dict:
    return {
        "Global Quote": {
            "01. symbol": "AAPL",
            "05. price": price,
            "08. previous close": previous,
            "10. change percent": change,
        }
    }


def _oracle(handler, providers, rate_limiter=None) -> PriceOracle:
    oracle = PriceOracle(providers, rate_limiter=rate_limiter, timeout_seconds=1.0)
    oracle._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return oracle


class TestMarketHelpers:
    def test_infer_currency(self) -> None:
        assert infer_currency("RELIANCE.NS") == "INR"
        assert infer_currency("vod.l") == "GBP"
        assert infer_currency("7203.T") == "JPY"
        assert infer_currency("AAPL") == "USD"

    def test_is_usable_price(self) -> None:
        assert is_usable_price(1.5)
        assert is_usable_price(3)
        assert not is_usable_price(0)
        assert not is_usable_price(-2.0)
        assert not is_usable_price(float("nan"))
        assert not is_usable_price(float("inf"))
        assert not is_usable_price(True)
        assert not is_usable_price("12")
        assert not is_usable_price(None)


class TestAlphaVantageParse:
    def test_parses_global_quote(self) -> None:
        quote = AlphaVantageProvider("key").parse("AAPL", _av())
        assert quote == PriceQuote("AAPL", 187.44, 1.25, "Alpha Vantage", "USD")

    def test_change_from_previous_close_when_missing(self) -> None:
        quote = AlphaVantageProvider("key").parse("AAPL", _av(price="110", change=None, previous="100"))
        assert quote.change_percent == pytest.approx(10.0)

    def test_empty_global_quote_is_none(self) -> None:
        # Returned by the API for unknown symbols and on throttling notes.
        assert AlphaVantageProvider("key").parse("ZZZZ", {"Global Quote": {}}) is None
        assert AlphaVantageProvider("key").parse("ZZZZ", {"Note": "Thank you"}) is None

    def test_zero_price_is_none(self) -> None:
        assert AlphaVantageProvider("key").parse("AAPL", _av(price="0.0000")) is None

    def test_nse_symbol_mapped_to_bse(self) -> None:
        assert AlphaVantageProvider.provider_symbol("TCS.NS") == "TCS.BSE"
        assert AlphaVantageProvider.provider_symbol("AAPL") == "AAPL"

    def test_currency_inferred_from_suffix(self) -> None:
        quote = AlphaVantageProvider("key").parse("TCS.NS", _av())
        assert quote.currency == "INR"


class TestYahooChartParse:
    def test_meta_price_and_previous_close(self) -> None:
        quote = YahooChartProvider().parse("AAPL", _chart(price=102.0, previous=100.0))
        assert quote.price == 102.0
        assert quote.change_percent == pytest.approx(2.0)
        assert quote.provider == "Yahoo Finance"

    def test_falls_back_to_last_close(self) -> None:
        data = _chart(closes=[95.0, None, 98.0, 99.0])
        quote = YahooChartProvider().parse("AAPL", data)
        assert quote.price == 99.0
        # previous close taken from the second to last valid close
        assert quote.change_percent == pytest.approx((99.0 - 98.0) / 98.0 * 100)

    def test_chart_previous_close_last_resort(self) -> None:
        quote = YahooChartProvider().parse("AAPL", _chart(price=50.0, chart_previous=40.0))
        assert quote.change_percent == pytest.approx(25.0)

    def test_no_previous_close_gives_zero_change(self) -> None:
        quote = YahooChartProvider().parse("AAPL", _chart(price=50.0))
        assert quote.change_percent == 0.0

    def test_unusable_payloads(self) -> None:
        provider = YahooChartProvider()
        assert provider.parse("AAPL", {"chart": {"result": None}}) is None
        assert provider.parse("AAPL", {"chart": {"result": []}}) is None
        assert provider.parse("AAPL", _chart(price=0, closes=[])) is None
        assert provider.parse("AAPL", "garbage") is None

    def test_currency_from_meta_or_suffix(self) -> None:
        provider = YahooChartProvider()
        assert provider.parse("SAP.DE", _chart(price=1.0, currency="EUR")).currency == "EUR"
        assert provider.parse("VOD.L", _chart(price=1.0, currency=None)).currency == "GBP"

    def test_headers_rotate_user_agent(self) -> None:
        headers = YahooChartProvider(rng=random.Random(1)).headers()
        assert headers["User-Agent"] in USER_AGENTS


class TestPriceOracle:
    def test_primary_provider_wins(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.host == "www.alphavantage.co"
            assert request.url.params["function"] == "GLOBAL_QUOTE"
            return httpx.Response(200, json=_av())

        async def _run() -> PriceQuote | None:
            oracle = _oracle(handler, [AlphaVantageProvider("key"), YahooChartProvider()])
            try:
                return await oracle.fetch_quote("aapl")
            finally:
                await oracle.close()

        quote = asyncio.run(_run())
        assert quote.symbol == "AAPL"
        assert quote.provider == "Alpha Vantage"

    def test_falls_back_through_chart_mirrors(self) -> None:
        hosts: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            hosts.append(request.url.host)
            if request.url.host == "www.alphavantage.co":
                return httpx.Response(200, json={"Global Quote": {}})
            if request.url.host == "query1.finance.yahoo.com":
                return httpx.Response(503)
            return httpx.Response(200, json=_chart(price=101.0, previous=100.0))

        async def _run() -> PriceQuote | None:
            oracle = _oracle(handler, [AlphaVantageProvider("key"), YahooChartProvider()])
            try:
                return await oracle.fetch_quote("AAPL")
            finally:
                await oracle.close()

        quote = asyncio.run(_run())
        assert quote.provider == "Yahoo Finance"
        assert quote.price == 101.0
        assert hosts == [
            "www.alphavantage.co",
            "query1.finance.yahoo.com",
            "query2.finance.yahoo.com",
        ]

    def test_all_providers_fail_returns_none(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        async def _run() -> PriceQuote | None:
            oracle = _oracle(handler, [AlphaVantageProvider("key"), YahooChartProvider()])
            try:
                return await oracle.fetch_quote("AAPL")
            finally:
                await oracle.close()

        assert asyncio.run(_run()) is None

    def test_rate_limited_provider_is_skipped(self) -> None:
        av = MagicMock()
        av.name = "alpha_vantage"
        av.fetch_quote = AsyncMock(return_value=PriceQuote("AAPL", 1.0, 0.0, "Alpha Vantage"))
        yahoo = MagicMock()
        yahoo.name = "yahoo_chart"
        yahoo.fetch_quote = AsyncMock(return_value=PriceQuote("AAPL", 2.0, 0.0, "Yahoo Finance"))

        limiter = RateLimiter(limit=1, window_seconds=60)
        limiter.allow("alpha_vantage")

        async def _run() -> PriceQuote | None:
            oracle = PriceOracle([av, yahoo], rate_limiter=limiter)
            oracle._client = MagicMock()
            return await oracle.fetch_quote("AAPL")

        quote = asyncio.run(_run())
        assert quote.price == 2.0
        av.fetch_quote.assert_not_called()

    def test_unused_fallback_keeps_its_budget(self) -> None:
        av = MagicMock()
        av.name = "alpha_vantage"
        av.fetch_quote = AsyncMock(return_value=PriceQuote("AAPL", 1.0, 0.0, "Alpha Vantage"))
        yahoo = MagicMock()
        yahoo.name = "yahoo_chart"
        yahoo.fetch_quote = AsyncMock(return_value=PriceQuote("AAPL", 2.0, 0.0, "Yahoo Finance"))

        limiter = RateLimiter(limit=1, window_seconds=60)

        async def _run() -> tuple:
            oracle = PriceOracle([av, yahoo], rate_limiter=limiter)
            oracle._client = MagicMock()
            return await oracle.fetch_quote("AAPL"), await oracle.fetch_quote("AAPL")

        first, second = asyncio.run(_run())
        assert first.provider == "Alpha Vantage"
        assert second.provider == "Yahoo Finance"
        av.fetch_quote.assert_awaited_once()
        yahoo.fetch_quote.assert_awaited_once()

    def test_blank_symbol_rejected(self) -> None:
        oracle = PriceOracle([])
        with pytest.raises(ValueError):
            asyncio.run(oracle.fetch_quote("  "))

    def test_from_config_orders_providers(self) -> None:
        with_key = PriceOracle.from_config(
            SimpleNamespace(alpha_vantage_key="k", quote_timeout_seconds=5.0)
        )
        assert with_key.provider_names == ["alpha_vantage", "yahoo_chart"]
        without_key = PriceOracle.from_config(
            SimpleNamespace(alpha_vantage_key="", quote_timeout_seconds=5.0)
        )
        assert without_key.provider_names == ["yahoo_chart"]
