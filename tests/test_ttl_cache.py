"""Tests for the bounded TTL cache backing every in-memory map."""

import threading

import pytest

from sessionguard.storage.ttl_cache import BoundedTTLCache


class TestExpiry:
    def test_entry_visible_until_ttl(self, clock):
        cache = BoundedTTLCache(10, 60, clock=clock)
        cache.set("a", 1)

        clock.advance(59)
        assert cache.get("a") == 1

        clock.advance(1)
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_purge_expired_reclaims_unread_entries(self, clock):
        cache = BoundedTTLCache(10, 60, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        clock.advance(30)
        cache.set("c", 3)
        clock.advance(40)

        assert cache.purge_expired() == 2
        assert [key for key, _ in cache.items()] == ["c"]

    def test_update_restarts_ttl(self, clock):
        cache = BoundedTTLCache(10, 60, clock=clock)
        cache.set("a", 1)
        clock.advance(50)
        cache.update("a", lambda current: (current or 0) + 1)
        clock.advance(50)

        assert cache.get("a") == 2

    def test_update_sees_none_for_expired_entry(self, clock):
        cache = BoundedTTLCache(10, 60, clock=clock)
        cache.set("a", 5)
        clock.advance(61)
        seen = []

        cache.update("a", lambda current: seen.append(current) or 1)

        assert seen == [None]
        assert cache.get("a") == 1


class TestCapacity:
    def test_least_recently_used_is_evicted(self, clock):
        cache = BoundedTTLCache(2, 60, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)

        assert cache.peek("a") == 1
        assert cache.peek("b") is None
        assert len(cache) == 2

    def test_peek_does_not_refresh_recency(self, clock):
        cache = BoundedTTLCache(2, 60, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.peek("a")
        cache.set("c", 3)

        assert cache.peek("a") is None

    def test_rejects_non_positive_bounds(self):
        with pytest.raises(ValueError):
            BoundedTTLCache(0, 60)
        with pytest.raises(ValueError):
            BoundedTTLCache(10, 0)


def test_pop(clock):
    cache = BoundedTTLCache(10, 60, clock=clock)
    cache.set("b", 2)

    assert cache.pop("b") == 2
    assert cache.pop("b", "gone") == "gone"


def test_concurrent_updates_are_not_lost():
    cache = BoundedTTLCache(10, 60)
    cache.set("counter", 0)

    def bump():
        for _ in range(500):
            cache.update("counter", lambda current: (current or 0) + 1)

    threads = [threading.Thread(target=bump) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert cache.get("counter") == 4000
