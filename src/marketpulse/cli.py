"""CLI entry point for MarketPulse.

Provides commands for the predict-then-verify loop:
  - predict: Forecast one or more symbols and store the predictions
  - verify: Close out pending predictions against live prices
  - stats: Show accuracy rollups
  - sentiment: Show the time-decayed sentiment report for a symbol
  - quote: Fetch a live quote through the provider chain
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncIterator

from marketpulse.agents.gateway import LLMGateway
from marketpulse.config import load_config
from marketpulse.data.price_oracle import PriceOracle
from marketpulse.forecast.service import ForecastService, build_service
from marketpulse.registry.db import Database
from marketpulse.registry.queries import Registry


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _print(data) -> None:
    print(json.dumps(data, indent=2, default=str))


@asynccontextmanager
async def _session(with_llm: bool = False) -> AsyncIterator[ForecastService]:
    """Open DB, quote client and (optionally) LLM gateway for one command."""
    config = load_config()
    db = Database(config.db_dsn)
    db.connect()
    registry = Registry(db)
    oracle = PriceOracle.from_config(config)
    gateway = LLMGateway.from_config(config) if with_llm else None
    try:
        await oracle.start()
        if gateway is not None:
            await gateway.start()
        yield build_service(config, registry, oracle, gateway)
    finally:
        if gateway is not None:
            await gateway.close()
        await oracle.close()
        db.close()


def cmd_predict(args: argparse.Namespace) -> None:
    """Forecast symbols and print the payloads."""

    async def _run() -> list[dict]:
        async with _session(with_llm=not args.algorithmic) as service:
            return [
                await service.predict(symbol, include_history=args.history)
                for symbol in args.symbols
            ]

    results = asyncio.run(_run())
    _print(results[0] if len(results) == 1 else results)
    if any(r.get("storageError") for r in results):
        logging.error("One or more predictions could not be stored")
        sys.exit(2)


def cmd_verify(args: argparse.Namespace) -> None:
    """Run one verification batch."""

    async def _run() -> dict:
        async with _session() as service:
            return await service.verify(force_all=args.force)

    _print(asyncio.run(_run()))


def cmd_stats(args: argparse.Namespace) -> None:
    """Print accuracy rollup for recent predictions."""

    async def _run() -> dict:
        async with _session() as service:
            return service.stats(symbol=args.symbol, limit=args.limit)

    _print(asyncio.run(_run()))


def cmd_sentiment(args: argparse.Namespace) -> None:
    """Print the decayed sentiment report for a symbol."""

    async def _run() -> dict:
        async with _session() as service:
            return service.sentiment(args.symbol, window_days=args.days)

    _print(asyncio.run(_run()))


def cmd_quote(args: argparse.Namespace) -> None:
    """Fetch a quote without touching the database."""
    config = load_config()

    async def _run():
        oracle = PriceOracle.from_config(config)
        try:
            return await oracle.fetch_quote(args.symbol)
        finally:
            await oracle.close()

    quote = asyncio.run(_run())
    if quote is None:
        print(f"No quote available for {args.symbol}", file=sys.stderr)
        sys.exit(1)
    _print(quote.to_dict())


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="marketpulse",
        description="Sentiment-driven market direction forecasts with verified accuracy",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    subs = parser.add_subparsers(dest="command", required=True)

    p_predict = subs.add_parser("predict", help="Forecast symbols and store predictions")
    p_predict.add_argument("symbols", nargs="+", help="Symbols to forecast")
    p_predict.add_argument("--history", action="store_true", help="Include recent predictions")
    p_predict.add_argument(
        "--algorithmic", action="store_true", help="Skip the LLM scorer even if configured"
    )

    p_verify = subs.add_parser("verify", help="Verify pending predictions")
    p_verify.add_argument(
        "--force", action="store_true", help="Ignore the staleness threshold"
    )

    p_stats = subs.add_parser("stats", help="Show accuracy statistics")
    p_stats.add_argument("--symbol", default=None, help="Restrict to one symbol")
    p_stats.add_argument("--limit", type=int, default=100, help="Most recent N predictions")

    p_sentiment = subs.add_parser("sentiment", help="Show decayed sentiment for a symbol")
    p_sentiment.add_argument("symbol")
    p_sentiment.add_argument("--days", type=int, default=30, help="Lookback window in days")

    p_quote = subs.add_parser("quote", help="Fetch a live quote")
    p_quote.add_argument("symbol")

    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    commands = {
        "predict": cmd_predict,
        "verify": cmd_verify,
        "stats": cmd_stats,
        "sentiment": cmd_sentiment,
        "quote": cmd_quote,
    }
    commands[args.command](args)


if __name__ == "__main__":
    main()
