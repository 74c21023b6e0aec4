"""Tests for the TTL result cache."""

from medflow.services.cache import DEFAULT_TTL_SECONDS, ResultCache


def test_default_ttl_is_five_minutes():
    assert DEFAULT_TTL_SECONDS == 300
    assert ResultCache().ttl_seconds == 300


def test_hit_within_ttl(clock):
    cache = ResultCache(ttl_seconds=300, clock=clock)
    cache.set("classify:chest pain", {"department": "Cardiology"})
    clock.advance(299)
    assert cache.get("classify:chest pain") == {"department": "Cardiology"}


def test_entry_at_exact_ttl_still_served(clock):
    cache = ResultCache(ttl_seconds=300, clock=clock)
    cache.set("k", 1)
    clock.advance(300)
    assert cache.get("k") == 1


def test_expired_entry_is_evicted_on_lookup(clock):
    cache = ResultCache(ttl_seconds=300, clock=clock)
    cache.set("k", 1)
    clock.advance(301)
    assert "k" in cache
    assert cache.get("k") is None
    assert "k" not in cache
    assert len(cache) == 0


def test_miss_returns_none(clock):
    assert ResultCache(clock=clock).get("missing") is None


def test_set_records_creation_time(clock):
    cache = ResultCache(clock=clock)
    entry = cache.set("k", "v")
    assert entry.key == "k"
    assert entry.payload == "v"
    assert entry.created_at == clock.now


def test_set_replaces_entry_and_restarts_ttl(clock):
    cache = ResultCache(ttl_seconds=10, clock=clock)
    cache.set("k", "old")
    clock.advance(8)
    cache.set("k", "new")
    clock.advance(8)
    assert cache.get("k") == "new"


def test_clear(clock):
    cache = ResultCache(clock=clock)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.clear()
    assert len(cache) == 0
