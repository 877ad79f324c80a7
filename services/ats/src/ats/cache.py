"""Job-listing cache.

Listings are cached under keys that embed a version counter. A write never
deletes cached pages; it bumps the counter, which makes every older key
unreachable. Orphaned entries expire through their TTL.

Filter values are percent-encoded inside the key, so a ":" in a search term
or a literal search for "all" cannot collide with another query.

Cache failures never fail a request: reads degrade to the store and writes
keep their result when the bump or populate step fails.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol
from urllib.parse import quote

import redis
from redis.exceptions import RedisError

from ats.errors import CacheError
from ats.metrics import MetricsStore

JOBS_CACHE_VERSION_KEY = "jobs_cache_version"
JOBS_CACHE_KEY_PREFIX = "jobs"
CACHE_TTL_SECONDS = 300
ALL_TOKEN = "all"
LOGGER = logging.getLogger("ats.cache")


def _key_part(value: str | None) -> str:
    if not value:
        return ALL_TOKEN
    encoded = quote(value, safe="")
    if encoded == ALL_TOKEN:
        # A literal "all" must not read as the no-filter token.
        return f"%{ord(encoded[0]):02X}{encoded[1:]}"
    return encoded


class CacheGateway(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None: ...

    def set_if_absent(self, key: str, value: str) -> bool: ...

    def increment(self, key: str) -> int: ...


class RedisCacheGateway:
    """CacheGateway over redis-py. Every RedisError surfaces as CacheError."""

    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str, *, timeout_seconds: float = 5.0) -> RedisCacheGateway:
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=timeout_seconds,
            socket_timeout=timeout_seconds,
        )
        return cls(client)

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except RedisError as exc:
            LOGGER.warning("Redis ping failed: %s", exc)
            return False

    def get(self, key: str) -> str | None:
        try:
            return self.client.get(key)
        except RedisError as exc:
            raise CacheError(f"GET {key} failed: {exc}") from exc

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        try:
            self.client.set(key, value, ex=ttl_seconds)
        except RedisError as exc:
            raise CacheError(f"SET {key} failed: {exc}") from exc

    def set_if_absent(self, key: str, value: str) -> bool:
        try:
            return bool(self.client.set(key, value, nx=True))
        except RedisError as exc:
            raise CacheError(f"SETNX {key} failed: {exc}") from exc

    def increment(self, key: str) -> int:
        try:
            return int(self.client.incr(key))
        except RedisError as exc:
            raise CacheError(f"INCR {key} failed: {exc}") from exc

    def close(self) -> None:
        self.client.close()


class VersionedJobCache:
    def __init__(
        self,
        gateway: CacheGateway | None,
        *,
        ttl_seconds: int = CACHE_TTL_SECONDS,
        version_key: str = JOBS_CACHE_VERSION_KEY,
        metrics: MetricsStore | None = None,
    ) -> None:
        self.gateway = gateway
        self.ttl_seconds = ttl_seconds
        self.version_key = version_key
        self.metrics = metrics

    def _count(self, counter: str) -> None:
        if self.metrics is not None:
            self.metrics.increment(counter)

    @property
    def enabled(self) -> bool:
        return self.gateway is not None

    def current_version(self) -> int | None:
        """Return the listing version, or None when the cache should be bypassed."""
        if self.gateway is None:
            return None
        try:
            raw = self.gateway.get(self.version_key)
            if raw is None:
                self.gateway.set_if_absent(self.version_key, "0")
                return 0
            return int(raw)
        except (CacheError, ValueError) as exc:
            LOGGER.warning("Could not read %s, bypassing cache: %s", self.version_key, exc)
            self._count("cache_errors")
            return None

    def bump_version(self) -> int | None:
        if self.gateway is None:
            LOGGER.warning("Cache disabled, skipping %s increment", self.version_key)
            return None
        try:
            self.gateway.set_if_absent(self.version_key, "0")
            version = self.gateway.increment(self.version_key)
        except CacheError as exc:
            LOGGER.error("Failed to increment %s: %s", self.version_key, exc)
            return None
        LOGGER.info("Incremented %s to %s", self.version_key, version)
        return version

    @staticmethod
    def key_for(
        version: int,
        page: int,
        limit: int,
        search: str | None = None,
        location: str | None = None,
    ) -> str:
        return (
            f"{JOBS_CACHE_KEY_PREFIX}:v{version}:page={page}:limit={limit}"
            f":search={_key_part(search)}:location={_key_part(location)}"
        )

    def get_listing(self, key: str) -> dict[str, Any] | None:
        if self.gateway is None:
            return None
        try:
            cached = self.gateway.get(key)
        except CacheError as exc:
            LOGGER.warning("Cache read failed for %s: %s", key, exc)
            self._count("cache_errors")
            return None
        if cached is None:
            LOGGER.debug("Cache miss for %s", key)
            self._count("cache_misses")
            return None
        try:
            payload = json.loads(cached)
        except json.JSONDecodeError as exc:
            LOGGER.warning("Discarding undecodable cache entry %s: %s", key, exc)
            self._count("cache_errors")
            return None
        LOGGER.debug("Cache hit for %s", key)
        self._count("cache_hits")
        return payload

    def store_listing(self, key: str, payload: dict[str, Any]) -> bool:
        if self.gateway is None:
            return False
        try:
            self.gateway.set(key, json.dumps(payload), self.ttl_seconds)
        except CacheError as exc:
            LOGGER.warning("Cache write failed for %s: %s", key, exc)
            return False
        LOGGER.debug("Cached %s for %ss", key, self.ttl_seconds)
        return True
