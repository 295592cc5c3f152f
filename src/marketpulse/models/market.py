from __future__ import annotations

import math
from dataclasses import dataclass

# Exchange suffix -> listing currency, for providers that omit it.
SUFFIX_CURRENCIES: dict[str, str] = {
    ".NS": "INR",
    ".BO": "INR",
    ".BSE": "INR",
    ".L": "GBP",
    ".T": "JPY",
    ".HK": "HKD",
    ".TO": "CAD",
    ".AX": "AUD",
    ".DE": "EUR",
    ".PA": "EUR",
    ".AS": "EUR",
    ".MI": "EUR",
}


def infer_currency(symbol: str, default: str = "USD") -> str:
    """Guess the quote currency from the exchange suffix of a symbol."""
    upper = symbol.upper()
    for suffix, currency in SUFFIX_CURRENCIES.items():
        if upper.endswith(suffix):
            return currency
    return default


def is_usable_price(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


@dataclass(frozen=True)
class PriceQuote:
    symbol: str
    price: float
    change_percent: float
    provider: str
    currency: str = "USD"

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "price": self.price,
            "change": self.change_percent,
            "currency": self.currency,
            "source": self.provider,
        }
