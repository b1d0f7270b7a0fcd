"""Tests for the TTL cache."""

import pytest

from biowell_service.core.cache import CacheService, cache_key
from biowell_service.schemas.metrics import MetricType


class TestCacheKey:
    """Tests for deterministic key construction."""

    def test_parameter_order_does_not_matter(self) -> None:
        assert cache_key("recipes", query="pasta", diet="vegan") == cache_key(
            "recipes", diet="vegan", query="pasta"
        )

    def test_none_parameters_are_skipped(self) -> None:
        assert cache_key("nutrition", "user-1", food="apple", meal=None) == (
            "nutrition:user-1?food=apple"
        )

    def test_missing_scope_segment_keeps_its_position(self) -> None:
        assert cache_key("chat", "user-1", None, message="hi") == "chat:user-1:-?message=hi"

    def test_values_are_escaped(self) -> None:
        key = cache_key("nutrition", "user-1", food="apple", quantity="1 cup")
        assert key == "nutrition:user-1?food=apple&quantity=1%20cup"

    def test_enum_uses_its_value(self) -> None:
        assert cache_key("metrics", "u", type=MetricType.GLUCOSE) == "metrics:u?type=glucose"

    def test_long_text_is_hashed_in_full(self) -> None:
        base = "How did my glucose respond to lunch yesterday? " * 3
        first = cache_key("chat", "u", "s", message=base + "A")
        second = cache_key("chat", "u", "s", message=base + "B")

        assert first != second
        assert "sha256-" in first
        assert len(first) < len(base)


class TestCacheService:
    """Tests for CacheService expiry, staleness and capacity."""

    @pytest.fixture
    def cache(self, clock) -> CacheService:
        return CacheService(max_entries=3, default_ttl_seconds=60, clock=clock)

    def test_get_returns_stored_value(self, cache: CacheService) -> None:
        cache.set("a", {"value": 1}, ttl_seconds=30)
        assert cache.get("a") == {"value": 1}

    def test_entry_expires_after_ttl(self, cache: CacheService, clock) -> None:
        cache.set("a", 1, ttl_seconds=30)

        clock.advance(29)
        assert cache.get("a") == 1

        clock.advance(1)
        assert cache.get("a") is None
        assert "a" not in cache
        assert len(cache) == 0

    def test_expired_lookup_counts_as_miss(self, cache: CacheService, clock) -> None:
        cache.set("a", 1, ttl_seconds=10)
        cache.get("a")
        clock.advance(11)
        cache.get("a")

        stats = cache.stats()
        assert stats.hits == 1
        assert stats.misses == 1
        assert stats.hit_rate == 0.5

    def test_has_does_not_touch_counters(self, cache: CacheService) -> None:
        cache.set("a", 1)
        assert cache.has("a")
        assert not cache.has("b")
        assert cache.stats().hits == 0
        assert cache.stats().misses == 0

    def test_stale_write_is_discarded(self, cache: CacheService, clock) -> None:
        slow_started = clock()
        clock.advance(5)
        cache.set("a", "fresh", computed_at=clock())

        # The slow response finishes after the fresh one was stored
        clock.advance(5)
        accepted = cache.set("a", "stale", computed_at=slow_started)

        assert accepted is False
        assert cache.get("a") == "fresh"
        assert cache.stats().stale_writes == 1

    def test_newer_write_replaces_entry(self, cache: CacheService, clock) -> None:
        cache.set("a", "old")
        clock.advance(1)
        assert cache.set("a", "new") is True
        assert cache.get("a") == "new"

    def test_oldest_entry_is_evicted_at_capacity(self, cache: CacheService, clock) -> None:
        for key in ("a", "b", "c"):
            cache.set(key, key)
            clock.advance(1)

        cache.set("d", "d")

        assert len(cache) == 3
        assert "a" not in cache
        assert all(key in cache for key in ("b", "c", "d"))
        assert cache.stats().evictions == 1

    def test_expired_entries_go_before_live_ones(self, cache: CacheService, clock) -> None:
        cache.set("short", 1, ttl_seconds=1)
        clock.advance(0.5)
        cache.set("b", 2, ttl_seconds=100)
        cache.set("c", 3, ttl_seconds=100)
        clock.advance(1)

        cache.set("d", 4, ttl_seconds=100)

        assert "short" not in cache
        assert all(key in cache for key in ("b", "c", "d"))

    def test_invalidate_prefix(self, cache: CacheService) -> None:
        cache.set("metrics:u1?limit=5", 1)
        cache.set("metrics:u1?limit=10", 2)
        cache.set("metrics:u2?limit=5", 3)

        removed = cache.invalidate_prefix("metrics:u1?")

        assert removed == 2
        assert "metrics:u2?limit=5" in cache

    def test_purge_expired(self, cache: CacheService, clock) -> None:
        cache.set("a", 1, ttl_seconds=1)
        cache.set("b", 2, ttl_seconds=100)
        clock.advance(2)

        assert cache.purge_expired() == 1
        assert len(cache) == 1

    def test_delete_and_clear(self, cache: CacheService) -> None:
        cache.set("a", 1)
        assert cache.delete("a") is True
        assert cache.delete("a") is False

        cache.set("b", 2)
        cache.get("b")
        cache.clear()
        assert len(cache) == 0
        assert cache.stats().hits == 0

    async def test_get_or_fetch_fetches_once(self, cache: CacheService) -> None:
        calls = 0

        async def fetch() -> str:
            nonlocal calls
            calls += 1
            return "value"

        assert await cache.get_or_fetch("a", fetch, ttl_seconds=30) == "value"
        assert await cache.get_or_fetch("a", fetch, ttl_seconds=30) == "value"
        assert calls == 1

    def test_invalid_configuration(self, clock) -> None:
        with pytest.raises(ValueError):
            CacheService(max_entries=0)
        with pytest.raises(ValueError):
            CacheService(clock=clock).set("a", 1, ttl_seconds=0)
