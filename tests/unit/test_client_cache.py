"""Unit tests for client_cache module."""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from client_cache import ClientCache, TTLCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestTTLCache:
    """Tests for TTLCache."""

    def test_get_and_set(self):
        cache = TTLCache(ttl_seconds=10)
        cache.set("a", 1)
        assert cache.get("a") == 1
        assert cache.get("missing") is None

    def test_entries_expire(self):
        clock = FakeClock()
        cache = TTLCache(ttl_seconds=10, clock=clock)
        cache.set("a", 1)
        clock.now = 9.9
        assert cache.get("a") == 1
        clock.now = 10.0
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_lru_eviction(self):
        cache = TTLCache(ttl_seconds=10, max_entries=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)
        assert cache.get("b") is None
        assert cache.get("a") == 1
        assert cache.get("c") == 3

    def test_get_or_create_calls_factory_once(self):
        cache = TTLCache(ttl_seconds=10)
        factory = MagicMock(return_value="v")
        assert cache.get_or_create("k", factory) == "v"
        assert cache.get_or_create("k", factory) == "v"
        factory.assert_called_once()

    def test_purge_expired(self):
        clock = FakeClock()
        cache = TTLCache(ttl_seconds=5, clock=clock)
        cache.set("a", 1)
        clock.now = 3
        cache.set("b", 2)
        clock.now = 6
        assert cache.purge_expired() == 1
        assert cache.get("b") == 2

    @pytest.mark.parametrize("ttl,entries", [(0, 1), (-1, 1), (1, 0)])
    def test_invalid_arguments(self, ttl, entries):
        with pytest.raises(ValueError):
            TTLCache(ttl_seconds=ttl, max_entries=entries)


class TestClientCache:
    """Tests for ClientCache."""

    def test_reuses_client_per_endpoint_and_key(self):
        factory = MagicMock(side_effect=lambda **kw: object())
        cache = ClientCache(factory=factory)
        first = cache.get_client("http://llm/v1", "key-1")
        assert cache.get_client("http://llm/v1/", "key-1") is first
        assert cache.get_client("http://llm/v1", "key-2") is not first
        assert factory.call_count == 2

    def test_invalidate_forces_rebuild(self):
        factory = MagicMock(side_effect=lambda **kw: object())
        cache = ClientCache(factory=factory)
        first = cache.get_client("http://llm/v1", "k")
        cache.invalidate("http://llm/v1", "k")
        assert cache.get_client("http://llm/v1", "k") is not first

    def test_instances_do_not_share_entries(self):
        factory = MagicMock(side_effect=lambda **kw: object())
        ClientCache(factory=factory).get_client("http://llm/v1", "k")
        assert len(ClientCache(factory=factory)) == 0
