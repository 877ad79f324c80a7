from __future__ import annotations

import pytest
from ats.cache import (
    CACHE_TTL_SECONDS,
    JOBS_CACHE_VERSION_KEY,
    RedisCacheGateway,
    VersionedJobCache,
)
from ats.errors import CacheError
from ats.metrics import MetricsStore
from redis.exceptions import ConnectionError as RedisConnectionError

pytestmark = pytest.mark.unit


def test_key_treats_empty_and_missing_filters_alike() -> None:
    omitted = VersionedJobCache.key_for(3, 1, 10)
    empty = VersionedJobCache.key_for(3, 1, 10, search="", location="")

    assert omitted == empty
    assert omitted == "jobs:v3:page=1:limit=10:search=all:location=all"


def test_key_embeds_every_query_parameter() -> None:
    key = VersionedJobCache.key_for(7, 2, 25, search="engineer", location="Berlin")

    assert key == "jobs:v7:page=2:limit=25:search=engineer:location=Berlin"
    assert key != VersionedJobCache.key_for(8, 2, 25, search="engineer", location="Berlin")
    assert key != VersionedJobCache.key_for(7, 3, 25, search="engineer", location="Berlin")


def test_key_keeps_literal_filter_values_distinct() -> None:
    unfiltered = VersionedJobCache.key_for(1, 1, 10)
    literal_all = VersionedJobCache.key_for(1, 1, 10, search="all", location="all")
    with_colon = VersionedJobCache.key_for(1, 1, 10, search="a:location=b")
    split_filters = VersionedJobCache.key_for(1, 1, 10, search="a", location="b")

    assert literal_all != unfiltered
    assert literal_all == "jobs:v1:page=1:limit=10:search=%61ll:location=%61ll"
    assert with_colon != split_filters
    assert with_colon == "jobs:v1:page=1:limit=10:search=a%3Alocation%3Db:location=all"


def test_current_version_initializes_counter_to_zero(fake_cache) -> None:
    cache = VersionedJobCache(fake_cache)

    assert cache.current_version() == 0
    assert fake_cache.values[JOBS_CACHE_VERSION_KEY] == "0"
    assert cache.current_version() == 0


def test_bump_version_is_monotonic(fake_cache) -> None:
    cache = VersionedJobCache(fake_cache)

    assert cache.bump_version() == 1
    assert cache.bump_version() == 2
    assert cache.current_version() == 2


def test_bump_version_creates_counter_when_absent(fake_cache) -> None:
    cache = VersionedJobCache(fake_cache)

    assert cache.bump_version() == 1
    assert ("set_if_absent", JOBS_CACHE_VERSION_KEY) in fake_cache.calls


def test_disabled_cache_bypasses_everything() -> None:
    cache = VersionedJobCache(None)

    assert cache.enabled is False
    assert cache.current_version() is None
    assert cache.bump_version() is None
    assert cache.get_listing("jobs:v0:page=1") is None
    assert cache.store_listing("jobs:v0:page=1", {"jobs": []}) is False


def test_cache_failures_are_swallowed(fake_cache) -> None:
    metrics = MetricsStore()
    cache = VersionedJobCache(fake_cache, metrics=metrics)
    fake_cache.fail = True

    assert cache.current_version() is None
    assert cache.bump_version() is None
    assert cache.get_listing("some-key") is None
    assert cache.store_listing("some-key", {"jobs": []}) is False
    assert metrics.snapshot().totals["cache_errors"] == 2


def test_store_listing_uses_ttl_and_round_trips(fake_cache) -> None:
    metrics = MetricsStore()
    cache = VersionedJobCache(fake_cache, metrics=metrics)
    payload = {"jobs": [], "pagination": {"total": 0, "page": 1, "limit": 10, "total_pages": 0}}

    assert cache.get_listing("k") is None
    assert cache.store_listing("k", payload) is True
    assert fake_cache.ttls["k"] == CACHE_TTL_SECONDS
    assert cache.get_listing("k") == payload

    totals = metrics.snapshot().totals
    assert totals["cache_misses"] == 1
    assert totals["cache_hits"] == 1


def test_undecodable_entry_is_treated_as_miss(fake_cache) -> None:
    fake_cache.values["k"] = "{not json"
    cache = VersionedJobCache(fake_cache)

    assert cache.get_listing("k") is None


def test_unparseable_version_bypasses_cache(fake_cache) -> None:
    fake_cache.values[JOBS_CACHE_VERSION_KEY] = "garbage"
    cache = VersionedJobCache(fake_cache)

    assert cache.current_version() is None


class BrokenRedis:
    def __getattr__(self, name: str):
        def _fail(*args, **kwargs):
            raise RedisConnectionError("connection refused")

        return _fail


def test_redis_gateway_translates_transport_errors() -> None:
    gateway = RedisCacheGateway(BrokenRedis())

    with pytest.raises(CacheError):
        gateway.get("k")
    with pytest.raises(CacheError):
        gateway.set("k", "v", 10)
    with pytest.raises(CacheError):
        gateway.set_if_absent("k", "0")
    with pytest.raises(CacheError):
        gateway.increment("k")
    assert gateway.ping() is False
