"""Tests for the injected TTL response cache."""
from __future__ import annotations

from dronehub.engine.cache import ResponseCache


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_entry_expires_after_ttl():
    clock = _Clock()
    cache = ResponseCache(ttl_seconds=5, clock=clock)
    cache.set("/api/drones", {"drones": []})
    clock.now = 4.9
    assert cache.get("/api/drones") == {"drones": []}
    clock.now = 5.1
    assert cache.get("/api/drones") is None
    assert len(cache) == 0


def test_zero_ttl_disables_cache():
    cache = ResponseCache(ttl_seconds=0)
    cache.set("k", 1)
    assert cache.get("k") is None


def test_invalidate_and_clear():
    cache = ResponseCache(ttl_seconds=60)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.invalidate("a")
    assert cache.get("a") is None
    assert cache.get("b") == 2
    cache.clear()
    assert len(cache) == 0
