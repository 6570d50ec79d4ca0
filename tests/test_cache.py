"""
Tests para rag/query/cache.py — TTLCache.

El reloj se inyecta para no depender de sleeps.
"""

import sys
from pathlib import Path

import pytest

# Agregar raíz del proyecto al path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from rag.query.cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return TTLCache(ttl_seconds=10, max_size=3, clock=clock)


class TestTTLCache:
    def test_set_and_get(self, cache):
        cache.set("k", [1.0, 2.0])
        assert cache.get("k") == [1.0, 2.0]
        assert cache.hits == 1

    def test_miss_returns_default(self, cache):
        assert cache.get("missing", "default") == "default"
        assert cache.misses == 1

    def test_entry_expires(self, cache, clock):
        cache.set("k", "v")
        clock.advance(10)
        assert cache.get("k") is None
        assert "k" not in cache

    def test_per_entry_ttl(self, cache, clock):
        cache.set("short", "v", ttl_seconds=1)
        cache.set("long", "v")
        clock.advance(5)
        assert cache.get("short") is None
        assert cache.get("long") == "v"

    def test_lru_eviction(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        cache.get("a")  # "b" pasa a ser el menos usado
        cache.set("d", 4)

        assert "b" not in cache
        assert "a" in cache
        assert len(cache) == 3

    def test_add_only_when_absent(self, cache, clock):
        assert cache.add(("whatsapp", "wamid.1")) is True
        assert cache.add(("whatsapp", "wamid.1")) is False

        clock.advance(11)
        assert cache.add(("whatsapp", "wamid.1")) is True

    def test_cleanup_removes_expired(self, cache, clock):
        cache.set("a", 1)
        clock.advance(5)
        cache.set("b", 2)
        clock.advance(6)

        assert cache.cleanup() == 1
        assert "b" in cache

    def test_delete(self, cache):
        cache.set("a", 1)
        assert cache.delete("a") is True
        assert cache.delete("a") is False

    def test_stats_and_clear(self, cache):
        cache.set("a", 1)
        cache.get("a")
        cache.get("zzz")

        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == "50.0%"

        cache.clear()
        assert len(cache) == 0
        assert cache.hits == 0

    def test_invalid_config(self):
        with pytest.raises(ValueError):
            TTLCache(ttl_seconds=0)
        with pytest.raises(ValueError):
            TTLCache(max_size=0)
