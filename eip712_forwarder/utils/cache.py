"""
Thread-safe bounded cache for pure hash results.

Domain separators and similar values never go stale, so entries are evicted
by recency only.
"""

import threading
from collections import OrderedDict
from typing import Any, Callable, Hashable, Optional
import logging

logger = logging.getLogger(__name__)


class LRUCache:
    """
    Thread-safe LRU cache.

    O(1) get/set using OrderedDict: most recently used entries sit at the end,
    the least recently used one is popped from the front when full.
    """

    def __init__(self, max_size: int = 256):
        """
        Initialize cache.

        Args:
            max_size: Maximum entries before LRU eviction
        """
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        self.max_size = max_size
        self._cache: OrderedDict[Hashable, Any] = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    def get(self, key: Hashable) -> Optional[Any]:
        """
        Get value from cache.

        Returns:
            Cached value or None if missing
        """
        with self._lock:
            if key not in self._cache:
                self._misses += 1
                return None

            self._cache.move_to_end(key)
            self._hits += 1
            return self._cache[key]

    def set(self, key: Hashable, value: Any) -> None:
        """Set value, evicting the least recently used entry when full."""
        with self._lock:
            if key in self._cache:
                self._cache.move_to_end(key)
            elif len(self._cache) >= self.max_size:
                lru_key, _ = self._cache.popitem(last=False)
                logger.debug(f"Cache LRU eviction: {lru_key!r} (size: {len(self._cache)})")

            self._cache[key] = value

    def get_or_compute(self, key: Hashable, compute_fn: Callable[[], Any]) -> Any:
        """
        Get from cache or compute on miss.

        compute_fn runs outside the lock: cached values here are pure, so two
        threads racing on the same miss store the same result.
        """
        value = self.get(key)
        if value is not None:
            return value

        value = compute_fn()
        self.set(key, value)
        return value

    def clear(self) -> None:
        """Clear all cache entries."""
        with self._lock:
            self._cache.clear()
            logger.debug("Cache cleared")

    def size(self) -> int:
        """Get number of cached entries."""
        with self._lock:
            return len(self._cache)

    def stats(self) -> dict[str, int]:
        """Hit/miss counters."""
        with self._lock:
            return {"hits": self._hits, "misses": self._misses, "size": len(self._cache)}
