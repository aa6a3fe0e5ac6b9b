import logging

import pytest

from addressable.core.cache import (
    FileCache,
    MemoryCache,
    ResultCache,
    current_cache_stats,
    make_search_key,
    record_cache_stats,
)
from addressable.core.errors import CacheUnavailableError
from addressable.domain.models import GeoPoint, RadiusQuery


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class BrokenBackend:
    supports_prefix_delete = True

    def get(self, key):
        raise CacheUnavailableError("down")

    def set(self, key, value, ttl_seconds):
        raise CacheUnavailableError("down")

    def delete(self, key):
        raise CacheUnavailableError("down")

    def delete_prefix(self, prefix):
        raise CacheUnavailableError("down")


def test_memory_cache_expires_after_ttl():
    clock = FakeClock()
    cache = MemoryCache(clock=clock)
    cache.set("k", {"v": 1}, ttl_seconds=10)

    clock.now = 9
    assert cache.get("k") == {"v": 1}

    clock.now = 10
    with record_cache_stats() as stats:
        assert cache.get("k") is None
    assert stats.expired == 1
    assert len(cache) == 0


def test_memory_cache_delete_prefix():
    cache = MemoryCache()
    cache.set("p:a", 1, 60)
    cache.set("p:b", 2, 60)
    cache.set("q:c", 3, 60)
    assert cache.delete_prefix("p:") == 2
    assert cache.get("q:c") == 3
    assert cache.get("p:a") is None


def test_file_cache_round_trip_and_expiry(tmp_path):
    clock = FakeClock(1000)
    cache = FileCache(tmp_path, clock=clock)
    cache.set("radius_search_x", {"hits": []}, ttl_seconds=5)
    assert cache.get("radius_search_x") == {"hits": []}

    clock.now = 1006
    assert cache.get("radius_search_x") is None


def test_file_cache_treats_corrupt_file_as_miss(tmp_path):
    cache = FileCache(tmp_path)
    cache.set("k", 1, ttl_seconds=60)
    path = cache._key_path("k")
    path.write_text("{not json", encoding="utf-8")
    assert cache.get("k") is None


def test_result_cache_warns_when_prefix_delete_unsupported(tmp_path, caplog):
    cache = ResultCache(FileCache(tmp_path))
    with caplog.at_level(logging.WARNING, logger="addressable.core.cache"):
        assert cache.forget_prefix() is False
    assert "does not support prefix deletes" in caplog.text


def test_result_cache_degrades_when_backend_fails(caplog):
    cache = ResultCache(BrokenBackend())
    with caplog.at_level(logging.WARNING, logger="addressable.core.cache"), record_cache_stats() as stats:
        assert cache.get("k") is None
        assert cache.put("k", 1) is False
        assert cache.forget("k") is False
        assert cache.forget_prefix() is False
    assert stats.errors == 4
    assert "continuing without cache" in caplog.text


def test_result_cache_get_or_set_builds_once():
    cache = ResultCache(MemoryCache())
    calls = []

    def builder():
        calls.append(1)
        return {"v": 42}

    assert cache.get_or_set("k", builder) == {"v": 42}
    assert cache.get_or_set("k", builder) == {"v": 42}
    assert len(calls) == 1


def test_disabled_result_cache_stores_nothing():
    backend = MemoryCache()
    cache = ResultCache(backend, enabled=False)
    assert cache.put("k", 1) is False
    assert cache.get("k") is None
    assert len(backend) == 0


def test_search_keys_round_center_to_four_decimals():
    def key(lat, lon):
        q = RadiusQuery(center=GeoPoint(lat=lat, lon=lon), radius=10)
        return make_search_key("radius_search_", q.cache_payload())

    assert key(40.71281, -74.00601) == key(40.71284, -74.00604)
    assert key(40.7128, -74.0060) != key(40.7130, -74.0060)
    assert key(40.7128, -74.0060).startswith("radius_search_search:")
    assert len(key(1, 2)) == len(key(-45.5, 170.25))


def test_search_keys_include_filters_and_radius():
    center = GeoPoint(lat=1, lon=2)
    base = RadiusQuery(center=center, radius=10)
    other_radius = RadiusQuery(center=center, radius=11)
    filtered = RadiusQuery(center=center, radius=10, filters={"owner_type": "user", "owner_id": "7"})
    keys = {make_search_key("p_", q.cache_payload()) for q in (base, other_radius, filtered)}
    assert len(keys) == 3


def test_file_cache_prefix_delete_raises_cache_error(tmp_path):
    cache = FileCache(tmp_path)
    assert not cache.supports_prefix_delete
    with pytest.raises(CacheUnavailableError):
        cache.delete_prefix("radius_search_")


def test_current_cache_stats_follows_the_recording_context():
    assert current_cache_stats() is None
    with record_cache_stats() as outer:
        assert current_cache_stats() is outer
        with record_cache_stats() as inner:
            MemoryCache().get("missing")
            assert current_cache_stats() is inner
        assert current_cache_stats() is outer
    assert current_cache_stats() is None
    assert (inner.misses, outer.misses) == (1, 0)
