"""
tests/test_cache.py — TTLCache / StatsCache Unit Tests
=======================================================

Expiry with an injected clock, LRU eviction, glob invalidation, and the
invalidation calls the write paths fire.
"""

from __future__ import annotations

import threading

import pytest

from hourglass.engine.cache import (
    StatsCache,
    TTLCache,
    house_leaderboard_key,
    house_stats_key,
    leaderboard_key,
    user_stats_key,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


class TestTTLCache:
    def test_get_set_delete(self, clock):
        cache = TTLCache(max_size=10, ttl_seconds=60, clock=clock)
        cache.set("a", 1)
        assert cache.get("a") == 1
        assert "a" in cache
        assert cache.delete("a")
        assert not cache.delete("a")
        assert cache.get("a", "missing") == "missing"

    def test_entries_expire(self, clock):
        cache = TTLCache(max_size=10, ttl_seconds=60, clock=clock)
        cache.set("a", 1)
        clock.now = 59.9
        assert cache.get("a") == 1
        clock.now = 60.0
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_per_entry_ttl(self, clock):
        cache = TTLCache(max_size=10, ttl_seconds=60, clock=clock)
        cache.set("short", 1, ttl_seconds=5)
        clock.now = 6
        assert "short" not in cache

    def test_least_recently_used_is_evicted(self, clock):
        cache = TTLCache(max_size=2, ttl_seconds=60, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")          # a is now most recent
        cache.set("c", 3)
        assert "b" not in cache
        assert "a" in cache
        assert "c" in cache

    def test_hit_and_miss_counters(self, clock):
        cache = TTLCache(clock=clock)
        cache.get("x")
        cache.set("x", 1)
        cache.get("x")
        assert (cache.hits, cache.misses) == (1, 1)

    def test_get_or_compute_caches_the_result(self, clock):
        cache = TTLCache(clock=clock)
        calls = []

        def compute():
            calls.append(1)
            return "value"

        assert cache.get_or_compute("k", compute) == "value"
        assert cache.get_or_compute("k", compute) == "value"
        assert len(calls) == 1

    def test_pattern_invalidation_only_touches_matching_string_keys(self, clock):
        cache = TTLCache(clock=clock)
        cache.set("user_stats:1", {})
        cache.set("user_stats:2", {})
        cache.set("leaderboard:monthly", [])
        cache.set(123, "Asia/Tokyo")
        assert cache.invalidate_pattern("user_stats:*") == 2
        assert "leaderboard:monthly" in cache
        assert 123 in cache

    def test_rejects_non_positive_size(self):
        with pytest.raises(ValueError):
            TTLCache(max_size=0)

    def test_concurrent_writers_respect_the_bound(self):
        cache = TTLCache(max_size=50, ttl_seconds=60)

        def writer(offset):
            for i in range(200):
                cache.set(offset + i, i)

        threads = [threading.Thread(target=writer, args=(n * 1000,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(cache) == 50


class TestStatsCache:
    def _filled(self) -> StatsCache:
        cache = StatsCache()
        cache.set(user_stats_key(1), {})
        cache.set(user_stats_key(2), {})
        cache.set(leaderboard_key("monthly"), [])
        cache.set(leaderboard_key("alltime"), [])
        cache.set(house_leaderboard_key("monthly"), [])
        cache.set(house_stats_key("Ravenclaw"), {})
        cache.set(house_stats_key("Slytherin"), {})
        return cache

    def test_accrual_invalidates_member_boards_and_house(self):
        cache = self._filled()
        cache.invalidate_after_accrual(1, "Ravenclaw")
        assert user_stats_key(1) not in cache
        assert user_stats_key(2) in cache
        assert leaderboard_key("monthly") not in cache
        assert leaderboard_key("alltime") not in cache
        assert house_leaderboard_key("monthly") not in cache
        assert house_stats_key("Ravenclaw") not in cache
        assert house_stats_key("Slytherin") in cache

    def test_accrual_without_house_keeps_house_keys(self):
        cache = self._filled()
        cache.invalidate_after_accrual(2, None)
        assert house_leaderboard_key("monthly") in cache

    def test_invalidate_all_houses(self):
        cache = self._filled()
        cache.invalidate_houses()
        assert house_stats_key("Ravenclaw") not in cache
        assert house_stats_key("Slytherin") not in cache
        assert leaderboard_key("monthly") in cache
