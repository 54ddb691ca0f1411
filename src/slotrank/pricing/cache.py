"""In-memory keyed stores with expiry.

``TTLCache`` holds recent prices so the oracle can answer without a network
round trip; ``RateLimiter`` counts calls per key inside a fixed window on top
of the same store. Both take an injectable clock (seconds, monotonic).
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class TTLCache:
    """Thread-safe mapping whose entries expire ``ttl_seconds`` after being set.

    When full, the least recently used entry is evicted.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[Any, float]] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return default
            self._entries.move_to_end(key)
            return value

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        ttl = self._ttl if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)
            self._entries.move_to_end(key)
            self._evict()

    def incr(self, key: str, amount: int = 1) -> int:
        """Add to a counter, keeping the expiry of a live entry."""
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)
            if entry is None or now >= entry[1]:
                value, expires_at = amount, now + self._ttl
            else:
                value, expires_at = entry[0] + amount, entry[1]
            self._entries[key] = (value, expires_at)
            self._entries.move_to_end(key)
            self._evict()
            return value

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        with self._lock:
            now = self._clock()
            stale = [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def _evict(self) -> None:
        while len(self._entries) > self._max_entries:
            key, _ = self._entries.popitem(last=False)
            logger.debug("Evicted %s from cache", key)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RateLimiter:
    """Fixed-window limiter: at most ``max_calls`` per key per window."""

    def __init__(
        self,
        max_calls: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_calls = max_calls
        self._counts = TTLCache(window_seconds, clock=clock)

    def allow(self, key: str = "default") -> bool:
        """Consume one call for ``key``. False once the window is exhausted."""
        used = self._counts.incr(key)
        if used > self._max_calls:
            logger.debug("Rate limit reached for %s (%d/%d)", key, used, self._max_calls)
            return False
        return True

    def reset(self) -> None:
        self._counts.clear()
