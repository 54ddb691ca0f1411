from __future__ import annotations

from slotrank.pricing.cache import RateLimiter, TTLCache
from slotrank.pricing.oracle import (
    CircuitBreaker,
    MarketPriceOracle,
    PriceOracle,
    YFinanceQuoteSource,
    build_oracle,
    fetch_price,
    refresh_prices,
    yahoo_symbol,
)

__all__ = [
    "CircuitBreaker",
    "MarketPriceOracle",
    "PriceOracle",
    "RateLimiter",
    "TTLCache",
    "YFinanceQuoteSource",
    "build_oracle",
    "fetch_price",
    "refresh_prices",
    "yahoo_symbol",
]
