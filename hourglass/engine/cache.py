"""
hourglass.engine.cache — Bounded TTL Caches
============================================

Two caches, both plain objects handed to whoever needs them (the bot builds
one of each at startup; tests build fresh ones per test):

* :class:`TTLCache` — thread-safe, size-bounded, time-expiring key/value
  store.  Used for member → timezone lookups.
* :class:`StatsCache` — a :class:`TTLCache` with the key scheme for stats
  and leaderboards, plus the invalidation calls every write path fires.

Key scheme::

    user_stats:{member_id}
    leaderboard:monthly | leaderboard:alltime
    house_leaderboard:monthly | house_leaderboard:alltime
    house_stats:{house_name}
"""

from __future__ import annotations

import fnmatch
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Hashable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()


class TTLCache:
    """Thread-safe LRU cache whose entries expire after ``ttl_seconds``.

    Usage::

        cache = TTLCache(max_size=5000, ttl_seconds=300)
        cache.set(123, "Europe/London")
        cache.get(123)                    # "Europe/London"
        cache.invalidate_pattern("user_stats:*")
    """

    def __init__(
        self,
        max_size: int = 5000,
        ttl_seconds: float = 300.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self._max_size = max_size
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._data: OrderedDict[Hashable, tuple[float, Any]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    # -------------------------------------------------------------------
    # Core operations
    # -------------------------------------------------------------------
    def get(self, key: Hashable, default: Any = None) -> Any:
        now = self._clock()
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                self.misses += 1
                return default
            expires_at, value = entry
            if expires_at <= now:
                del self._data[key]
                self.misses += 1
                return default
            self._data.move_to_end(key)
            self.hits += 1
            return value

    def set(self, key: Hashable, value: Any, ttl_seconds: float | None = None) -> None:
        ttl = self._ttl if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._data[key] = (self._clock() + ttl, value)
            self._data.move_to_end(key)
            while len(self._data) > self._max_size:
                self._data.popitem(last=False)

    def delete(self, key: Hashable) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def invalidate_pattern(self, pattern: str) -> int:
        """Drop every string key matching the glob *pattern*.  Returns the count."""
        with self._lock:
            doomed = [
                k for k in self._data
                if isinstance(k, str) and fnmatch.fnmatchcase(k, pattern)
            ]
            for k in doomed:
                del self._data[k]
        if doomed:
            logger.debug("Invalidated %d cache keys matching %r", len(doomed), pattern)
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def get_or_compute(self, key: Hashable, compute: Callable[[], T]) -> T:
        """Return the cached value for *key*, computing and storing it on a miss.

        *compute* runs outside the lock; two concurrent misses may both
        compute, and the later result wins.
        """
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value
        value = compute()
        self.set(key, value)
        return value


# ---------------------------------------------------------------------------
# Stats read cache
# ---------------------------------------------------------------------------
def user_stats_key(member_id: int) -> str:
    return f"user_stats:{member_id}"


def leaderboard_key(period: str) -> str:
    return f"leaderboard:{period}"


def house_leaderboard_key(period: str) -> str:
    return f"house_leaderboard:{period}"


def house_stats_key(house: str) -> str:
    return f"house_stats:{house}"


class StatsCache(TTLCache):
    """Read cache for stats/leaderboards, invalidated on every write."""

    def __init__(self, max_size: int = 2000, ttl_seconds: float = 60.0, **kwargs) -> None:
        super().__init__(max_size=max_size, ttl_seconds=ttl_seconds, **kwargs)

    def invalidate_member(self, member_id: int) -> None:
        self.delete(user_stats_key(member_id))

    def invalidate_leaderboards(self) -> None:
        self.invalidate_pattern("leaderboard:*")

    def invalidate_houses(self, house: str | None = None) -> None:
        self.invalidate_pattern("house_leaderboard:*")
        if house:
            self.delete(house_stats_key(house))
        else:
            self.invalidate_pattern("house_stats:*")

    def invalidate_after_accrual(self, member_id: int, house: str | None) -> None:
        """Everything a closed session can change."""
        self.invalidate_member(member_id)
        self.invalidate_leaderboards()
        if house:
            self.invalidate_houses(house)
