"""
AggregationCache - TTL cache in front of the aggregation read path

One instance per application (kept on app.state), never a module global.
The ledger invalidates an owner's entries after every committed write, so
TTL expiry only bounds staleness for writes made by other processes.
"""
import logging
import threading
import time
from typing import Callable, Hashable

from fintrack.config import get_settings

logger = logging.getLogger(__name__)


class AggregationCache:
    """
    Args:
        ttl_seconds: entry lifetime (default: settings.AGGREGATION_CACHE_TTL_SECONDS)
        clock: monotonic seconds source, injectable for tests

    Keys are tuples whose second element is the owner id.
    """

    def __init__(self, ttl_seconds: float | None = None, clock: Callable[[], float] = time.monotonic):
        if ttl_seconds is None:
            ttl_seconds = get_settings().AGGREGATION_CACHE_TTL_SECONDS
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[Hashable, tuple[float, list]] = {}
        self._generations: dict[int, int] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get_or_load(self, key: tuple, loader: Callable[[], list]) -> list:
        owner_id = key[1]
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and now - entry[0] < self.ttl_seconds:
                self.hits += 1
                return list(entry[1])
            self.misses += 1
            generation = self._generations.get(owner_id, 0)

        rows = loader()
        with self._lock:
            # An invalidation during the load means `rows` may already be stale
            if self._generations.get(owner_id, 0) == generation:
                self._entries[key] = (now, list(rows))
        return rows

    def invalidate(self, owner_id: int) -> int:
        """Drop every cached entry of the owner. Returns number of dropped entries."""
        with self._lock:
            self._generations[owner_id] = self._generations.get(owner_id, 0) + 1
            stale = [key for key in self._entries if key[1] == owner_id]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.debug(f"Invalidated {len(stale)} cached aggregation ranges for owner {owner_id}")
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
