"""
Process-Local Book Cache

First tier of the book cache: a thread-safe TTL + LRU map held in process
memory. Request threads and background workers share one instance.

Entries are CachedBook projections keyed by whatever id the caller looked
up (canonical UUID, provider id, or ISBN); the same book can sit under
several keys at once.
"""

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable

from bookrec.schemas.book import CachedBook

logger = logging.getLogger(__name__)


class CacheMetrics:
    """Thread-safe hit/miss/eviction counters."""

    hits: int
    misses: int
    evictions: int
    _lock: threading.Lock

    def __init__(self):
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def record_hit(self):
        with self._lock:
            self.hits += 1

    def record_miss(self):
        with self._lock:
            self.misses += 1

    def record_eviction(self):
        with self._lock:
            self.evictions += 1

    def hit_rate(self) -> float:
        """Return cache hit rate as percentage (0-100)."""
        with self._lock:
            total = self.hits + self.misses
            if total == 0:
                return 0.0
            return (self.hits / total) * 100


class LocalBookCache:
    """
    TTL + LRU cache of CachedBook entries.

    Args:
        max_entries: Entries kept before the least recently used is evicted
        ttl_seconds: Age after which an entry counts as a miss
        clock: Time source, injectable for tests
    """

    _cache: OrderedDict[str, tuple[float, CachedBook]]

    def __init__(
        self,
        max_entries: int = 2000,
        ttl_seconds: int = 600,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._cache = OrderedDict()
        self._lock = threading.Lock()
        self._max_entries = max_entries
        self._ttl = ttl_seconds
        self._clock = clock
        self._metrics = CacheMetrics()
        self._open = False

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    def open(self) -> None:
        self._open = True
        logger.info(
            f"Local book cache ready (max_entries={self._max_entries}, ttl={self._ttl}s)"
        )

    def close(self) -> None:
        self.clear()
        self._open = False

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------
    def get(self, key: str) -> CachedBook | None:
        """Return the entry for key and record the hit, or None."""
        with self._lock:
            hit = self._cache.get(key)
            if hit is None:
                self._metrics.record_miss()
                return None
            stored_at, cached = hit
            if stored_at + self._ttl < self._clock():
                del self._cache[key]
                self._metrics.record_miss()
                return None
            self._cache.move_to_end(key)
            self._metrics.record_hit()
            return cached.touch()

    def put(self, key: str, cached: CachedBook) -> None:
        if not key:
            return
        with self._lock:
            if key in self._cache:
                del self._cache[key]
            self._cache[key] = (self._clock(), cached)
            if len(self._cache) > self._max_entries:
                oldest_key = next(iter(self._cache))
                del self._cache[oldest_key]
                self._metrics.record_eviction()

    def evict(self, key: str) -> bool:
        with self._lock:
            return self._cache.pop(key, None) is not None

    def contains(self, key: str) -> bool:
        """True when key holds a live entry. Does not count as a hit."""
        with self._lock:
            hit = self._cache.get(key)
            return hit is not None and hit[0] + self._ttl >= self._clock()

    def clear(self) -> None:
        with self._lock:
            self._cache = OrderedDict()

    def size(self) -> int:
        with self._lock:
            return len(self._cache)

    @property
    def metrics(self) -> CacheMetrics:
        return self._metrics
