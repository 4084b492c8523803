import pytest

from tokentrader.infrastructure.cache.ttl_cache import TTLCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


def test_entries_expire(clock):
    cache = TTLCache(default_ttl_sec=10, clock=clock)
    cache.set("SOL", 1.5)
    clock.now = 9.9
    assert cache.get("SOL") == 1.5
    clock.now = 10.0
    assert cache.get("SOL") is None
    assert len(cache) == 0


def test_per_entry_ttl_and_default(clock):
    cache = TTLCache(default_ttl_sec=10, clock=clock)
    cache.set("short", 1, ttl_sec=1)
    cache.set("long", 2)
    clock.now = 5
    assert "short" not in cache
    assert "long" in cache
    assert cache.get("short", "gone") == "gone"


def test_least_recently_used_is_evicted(clock):
    cache = TTLCache(max_entries=2, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.get("a")
    cache.set("c", 3)
    assert "b" not in cache
    assert cache.get("a") == 1
    assert cache.stats()["evictions"] == 1


def test_sweep_and_stats(clock):
    cache = TTLCache(default_ttl_sec=5, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2, ttl_sec=50)
    cache.get("a")
    cache.get("missing")
    clock.now = 6
    assert cache.sweep() == 1
    stats = cache.stats()
    assert stats["entries"] == 1
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["hit_rate"] == 0.5


def test_delete_and_clear(clock):
    cache = TTLCache(clock=clock)
    cache.set("a", 1)
    assert cache.delete("a")
    assert not cache.delete("a")
    cache.set("b", 2)
    cache.clear()
    assert len(cache) == 0


@pytest.mark.parametrize("kwargs", [{"default_ttl_sec": 0}, {"max_entries": 0}])
def test_rejects_bad_limits(kwargs):
    with pytest.raises(ValueError):
        TTLCache(**kwargs)
