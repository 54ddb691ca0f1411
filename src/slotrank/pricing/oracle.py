from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol, runtime_checkable

import yfinance as yf

from slotrank.models.asset import Asset, AssetClass
from slotrank.pricing.cache import RateLimiter, TTLCache
from slotrank.registry.queries import Registry

logger = logging.getLogger(__name__)

# Catalogue ids for coins that Yahoo lists under their ticker instead.
_CRYPTO_TICKERS = {
    "bitcoin": "BTC",
    "ethereum": "ETH",
    "cardano": "ADA",
    "solana": "SOL",
    "polkadot": "DOT",
}


def _to_decimal(value: Any) -> Decimal | None:
    """Convert to a positive Decimal, or None."""
    if value is None:
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not result.is_finite() or result <= 0:
        return None
    return result


def yahoo_symbol(asset: Asset) -> str:
    """Map a catalogue symbol to the ticker Yahoo Finance quotes it under."""
    if asset.asset_class == AssetClass.CRYPTO:
        base = _CRYPTO_TICKERS.get(asset.symbol.lower(), asset.symbol.upper())
        return f"{base}-USD"
    if asset.asset_class == AssetClass.FOREX:
        return asset.symbol.replace("/", "").upper() + "=X"
    return asset.symbol.upper()


@runtime_checkable
class PriceOracle(Protocol):
    def get_live_price(self, symbol: str) -> Decimal | None: ...

    def get_cached_price(self, symbol: str) -> Decimal | None: ...


@dataclass
class CircuitBreaker:
    """Trips when failure rate exceeds threshold over a window."""

    threshold: float = 0.50
    window_seconds: int = 300
    min_calls: int = 10
    _successes: deque[float] = field(default_factory=deque)
    _failures: deque[float] = field(default_factory=deque)

    def record_success(self) -> None:
        self._prune()
        self._successes.append(time.monotonic())

    def record_failure(self) -> None:
        self._prune()
        self._failures.append(time.monotonic())

    def _prune(self) -> None:
        cutoff = time.monotonic() - self.window_seconds
        while self._successes and self._successes[0] < cutoff:
            self._successes.popleft()
        while self._failures and self._failures[0] < cutoff:
            self._failures.popleft()

    @property
    def is_tripped(self) -> bool:
        self._prune()
        total = len(self._successes) + len(self._failures)
        if total < self.min_calls:
            return False
        return self.failure_rate >= self.threshold

    @property
    def failure_rate(self) -> float:
        self._prune()
        total = len(self._successes) + len(self._failures)
        if total == 0:
            return 0.0
        return len(self._failures) / total

    def reset(self) -> None:
        self._successes.clear()
        self._failures.clear()


class YFinanceQuoteSource:
    """Live quotes for crypto, stocks and forex from Yahoo Finance."""

    name = "yfinance"

    def __init__(
        self,
        circuit_breaker: CircuitBreaker | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self._circuit_breaker = circuit_breaker or CircuitBreaker()
        self._rate_limiter = rate_limiter or RateLimiter(max_calls=60, window_seconds=60)

    def get_quote(self, asset: Asset) -> Decimal | None:
        if self._circuit_breaker.is_tripped:
            logger.warning(
                "Circuit breaker tripped (failure_rate=%.2f), skipping %s",
                self._circuit_breaker.failure_rate,
                asset.symbol,
            )
            return None
        if not self._rate_limiter.allow(self.name):
            logger.warning("Rate limit reached, skipping live quote for %s", asset.symbol)
            return None

        ticker = yahoo_symbol(asset)
        try:
            info = yf.Ticker(ticker).info
            price = _to_decimal(info.get("currentPrice") or info.get("regularMarketPrice"))
        except Exception:
            self._circuit_breaker.record_failure()
            logger.exception("Error fetching quote for %s (%s)", asset.symbol, ticker)
            return None

        if price is None:
            self._circuit_breaker.record_failure()
            logger.debug("No price returned for %s (%s)", asset.symbol, ticker)
            return None
        self._circuit_breaker.record_success()
        return price

    @property
    def is_healthy(self) -> bool:
        return not self._circuit_breaker.is_tripped


class MarketPriceOracle:
    """Live quotes through a quote source, with a two-level fallback.

    Every live price lands in the in-memory cache and in ``asset_prices``.
    ``get_cached_price`` answers from memory first, then from the newest
    persisted row.
    """

    def __init__(self, registry: Registry, source: YFinanceQuoteSource, cache: TTLCache) -> None:
        self._registry = registry
        self._source = source
        self._cache = cache

    def get_live_price(self, symbol: str) -> Decimal | None:
        asset = self._registry.get_asset(symbol)
        if asset is None:
            logger.warning("No catalogue entry for %s, cannot quote", symbol)
            return None
        price = self._source.get_quote(asset)
        if price is None:
            return None
        self._cache.set(symbol, price)
        try:
            self._registry.store_price(symbol, price, self._source.name)
        except Exception:
            logger.warning("Failed to persist price for %s", symbol, exc_info=True)
        return price

    def get_cached_price(self, symbol: str) -> Decimal | None:
        price = self._cache.get(symbol)
        if price is not None:
            return price
        return self._registry.get_latest_price(symbol)

    @property
    def is_healthy(self) -> bool:
        return self._source.is_healthy


def fetch_price(oracle: PriceOracle, symbol: str) -> Decimal | None:
    """Live price, falling back to the last cached one. None if neither exists."""
    try:
        price = oracle.get_live_price(symbol)
    except Exception:
        logger.warning("Live price lookup failed for %s", symbol, exc_info=True)
        price = None
    if price is not None:
        return price

    price = oracle.get_cached_price(symbol)
    if price is not None:
        logger.info("Using cached price for %s", symbol)
    return price


def refresh_prices(oracle: PriceOracle, registry: Registry) -> dict[str, Decimal]:
    """Pull a live quote for every active asset. Returns the ones that succeeded."""
    prices: dict[str, Decimal] = {}
    assets = registry.get_active_assets()
    for asset in assets:
        try:
            price = oracle.get_live_price(asset.symbol)
        except Exception:
            logger.exception("Price refresh failed for %s", asset.symbol)
            continue
        if price is not None:
            prices[asset.symbol] = price
    logger.info("Refreshed %d/%d asset prices", len(prices), len(assets))
    return prices


def build_oracle(registry: Registry, cache_ttl_seconds: float = 300) -> MarketPriceOracle:
    """Production oracle: yfinance quotes with an in-memory cache in front of the database."""
    return MarketPriceOracle(registry, YFinanceQuoteSource(), TTLCache(cache_ttl_seconds))
