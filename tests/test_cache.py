"""Behaviour of the in-process fetch cache."""

from __future__ import annotations

import pytest

from zenix.cache import FetchCache
from zenix.utils import build_cache_key


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_value_is_served_until_ttl_elapses() -> None:
    clock = FakeClock()
    cache = FetchCache(default_ttl=300, clock=clock)

    cache.set("movie/popular", {"page": 1})
    clock.advance(299)
    assert cache.get("movie/popular") == {"page": 1}

    clock.advance(1)
    assert cache.get("movie/popular") is None
    # Expired entries are evicted on read.
    assert len(cache) == 0


def test_per_entry_ttl_overrides_default() -> None:
    clock = FakeClock()
    cache = FetchCache(default_ttl=300, clock=clock)

    cache.set("genre/movie/list", ["Action"], ttl=3_600)
    clock.advance(1_000)

    assert "genre/movie/list" in cache
    entry = cache.entry("genre/movie/list")
    assert entry is not None
    assert entry.expires_at == pytest.approx(1_000.0 + 3_600)


def test_set_replaces_existing_entry() -> None:
    cache = FetchCache()
    cache.set("key", 1)
    cache.set("key", 2)

    assert cache.get("key") == 2
    assert len(cache) == 1


def test_get_returns_default_on_miss() -> None:
    cache = FetchCache()

    assert cache.get("missing", "fallback") == "fallback"


def test_non_positive_ttl_is_rejected() -> None:
    cache = FetchCache()

    with pytest.raises(ValueError):
        cache.set("key", 1, ttl=0)
    with pytest.raises(ValueError):
        FetchCache(default_ttl=-1)


def test_parameter_order_does_not_change_cache_key() -> None:
    cache = FetchCache()
    first = build_cache_key("/discover/movie", {"with_genres": "27", "page": 2})
    second = build_cache_key("/discover/movie", {"page": 2, "with_genres": "27"})

    cache.set(first, ["result"])

    assert first == second
    assert cache.get(second) == ["result"]


def test_invalidate_by_pattern_and_everything() -> None:
    cache = FetchCache()
    cache.set("/movie/popular", 1)
    cache.set("/movie/top_rated", 2)
    cache.set("/tv/popular", 3)

    assert cache.invalidate("/movie/") == 2
    assert "/tv/popular" in cache
    assert "/movie/popular" not in cache

    assert cache.invalidate() == 1
    assert len(cache) == 0
