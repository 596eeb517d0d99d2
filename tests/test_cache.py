from __future__ import annotations

import pytest

from cache import TTLCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_least_recently_used_is_evicted():
    cache = TTLCache(max_size=2, ttl=60)
    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.get("a") == 1
    cache.set("c", 3)
    assert "b" not in cache
    assert cache.get("a") == 1
    assert cache.get("c") == 3
    assert len(cache) == 2


def test_entries_expire():
    clock = FakeClock()
    cache = TTLCache(max_size=10, ttl=10, clock=clock)
    cache.set("q", "intent")
    clock.now = 5
    assert cache.get("q") == "intent"
    clock.now = 11
    assert cache.get("q") is None
    assert len(cache) == 0


def test_overwrite_refreshes_timestamp():
    clock = FakeClock()
    cache = TTLCache(max_size=10, ttl=10, clock=clock)
    cache.set("q", 1)
    clock.now = 8
    cache.set("q", 2)
    clock.now = 15
    assert cache.get("q") == 2


def test_stats_and_clear():
    cache = TTLCache(max_size=3, ttl=60)
    cache.set("a", 1)
    cache.get("a")
    stats = cache.stats()
    assert stats["size"] == 1
    assert stats["entries"][0]["access_count"] == 2
    cache.clear()
    assert len(cache) == 0


def test_rejects_empty_capacity():
    with pytest.raises(ValueError):
        TTLCache(max_size=0)
