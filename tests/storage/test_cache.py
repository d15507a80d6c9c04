"""Tests for the TTL cache."""

import pytest

from cardvault.storage.cache import MISS, TTLCache, record_cache_key, set_cache_key


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> TTLCache:
    return TTLCache(default_ttl=30, clock=clock)


def test_zero_ttl_is_never_readable(cache: TTLCache) -> None:
    cache.set("card:1", {"name": "Charizard"}, ttl=0)

    assert cache.get("card:1") is MISS
    assert "card:1" not in cache


def test_entry_readable_until_expiry(cache: TTLCache, clock: FakeClock) -> None:
    cache.set("card:1", "value", ttl=60)

    clock.now += 59
    assert cache.get("card:1") == "value"

    clock.now += 1
    assert cache.get("card:1") is MISS


def test_default_ttl_applies(cache: TTLCache, clock: FakeClock) -> None:
    cache.set("card:2", "value")

    clock.now += 29
    assert "card:2" in cache
    clock.now += 1
    assert "card:2" not in cache


def test_last_write_wins(cache: TTLCache) -> None:
    cache.set("set:1:cards", [1])
    cache.set("set:1:cards", [1, 2])

    assert cache.get("set:1:cards") == [1, 2]


def test_falsy_values_are_hits(cache: TTLCache) -> None:
    cache.set("card:3", None)
    cache.set("card:4", [])

    assert cache.get("card:3") is None
    assert cache.get("card:4") == []
    assert not MISS


def test_negative_ttl_rejected(cache: TTLCache) -> None:
    with pytest.raises(ValueError):
        cache.set("card:1", "value", ttl=-1)
    with pytest.raises(ValueError):
        TTLCache(default_ttl=-5)


def test_invalidate(cache: TTLCache) -> None:
    cache.set(record_cache_key(7), "value")

    assert cache.invalidate(record_cache_key(7)) is True
    assert cache.invalidate(record_cache_key(7)) is False
    assert cache.get(record_cache_key(7)) is MISS


def test_invalidate_prefix(cache: TTLCache) -> None:
    cache.set(set_cache_key(1), "a")
    cache.set("set:1:meta", "b")
    cache.set(set_cache_key(2), "c")

    assert cache.invalidate_prefix("set:1:") == 2
    assert cache.get(set_cache_key(2)) == "c"


def test_sweep_drops_only_expired(cache: TTLCache, clock: FakeClock) -> None:
    cache.set("short", 1, ttl=5)
    cache.set("long", 2, ttl=50)

    clock.now += 10

    assert cache.sweep() == 1
    assert cache.stats()["size"] == 1
    assert cache.get("long") == 2


def test_get_or_set_computes_once(cache: TTLCache) -> None:
    calls = []

    def factory():
        calls.append(1)
        return {"cards": 3}

    assert cache.get_or_set("set:9:cards", factory) == {"cards": 3}
    assert cache.get_or_set("set:9:cards", factory) == {"cards": 3}
    assert len(calls) == 1


def test_stats_and_clear(cache: TTLCache) -> None:
    cache.set("a", 1)
    cache.get("a")
    cache.get("b")

    assert cache.stats() == {"size": 1, "hits": 1, "misses": 1}

    cache.clear()
    assert cache.stats()["size"] == 0


def test_key_helpers() -> None:
    assert record_cache_key(12) == "card:12"
    assert set_cache_key(3) == "set:3:cards"
