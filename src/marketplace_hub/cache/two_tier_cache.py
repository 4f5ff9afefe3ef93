"""
Two-tier cache: Redis first, in-process store as availability fallback.

The local tier is not a performance layer. Writes go to Redis and only land
locally when Redis refuses them; reads consult the local tier on a remote
miss or failure. There is no reconciliation between tiers, except that a
successful remote write discards the local copy of the same key, so a value
written during an outage stays visible at most until the key is written
again or its local TTL runs out.
"""

import json
import math
from datetime import timedelta
from typing import Any, Dict, Optional, Union

import redis
from redis.connection import ConnectionPool

from marketplace_hub.cache.local_store import LocalTTLStore
from marketplace_hub.utils.exceptions import CacheUnavailableError
from marketplace_hub.utils.logger import get_logger

logger = get_logger(__name__)

TTL = Union[int, float, timedelta, None]


class _RawValue:
    """Local-tier wrapper for values that cannot be JSON encoded."""

    __slots__ = ("value",)

    def __init__(self, value: Any):
        self.value = value


def _ttl_seconds(ttl: TTL) -> Optional[int]:
    if ttl is None:
        return None
    if isinstance(ttl, timedelta):
        return int(ttl.total_seconds())
    return int(ttl)


def _decode(payload: Any) -> Any:
    """JSON-decode a stored payload, falling back to the raw string."""
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8")
    try:
        return json.loads(payload)
    except (TypeError, ValueError):
        return payload


class TwoTierCache:
    """
    Redis-backed cache with an in-process fallback tier.

    Supports:
    - get/set/delete with TTL and JSON serialization
    - pattern deletion, expiry and TTL inspection (Redis only)
    - counters for rate limiting
    - stats and per-tier health
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        client: Optional[redis.Redis] = None,
        default_ttl: int = 3600,
        max_connections: int = 50,
        socket_timeout: float = 2.0,
    ):
        """
        Initialize the cache.

        Args:
            redis_url: Redis connection URL, ignored when ``client`` is given
            client: Pre-built Redis client (tests inject a double here)
            default_ttl: TTL in seconds for local entries set without one
            max_connections: Maximum pool connections
            socket_timeout: Connect/read timeout so an outage fails fast
        """
        self.redis_url = redis_url
        self.default_ttl = default_ttl
        self.local = LocalTTLStore(default_ttl=default_ttl)
        self.pool: Optional[ConnectionPool] = None

        if client is None and redis_url:
            self.pool = ConnectionPool.from_url(
                redis_url,
                max_connections=max_connections,
                decode_responses=True,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_timeout,
            )
            client = redis.Redis(connection_pool=self.pool)

        self.client: Optional[redis.Redis] = client
        self._hits = 0
        self._misses = 0
        self._fallback_writes = 0

        if self.client is not None:
            try:
                self.client.ping()
            except Exception as e:
                logger.warning(f"Redis unavailable at startup, using in-process cache only: {e}")
                self.client = None

        logger.info(
            f"Cache initialized (redis={'on' if self.client is not None else 'off'}, "
            f"local_ttl={default_ttl}s)"
        )

    @property
    def remote_available(self) -> bool:
        return self.client is not None

    def _require_remote(self, operation: str) -> redis.Redis:
        if self.client is None:
            raise CacheUnavailableError(operation)
        return self.client

    # Core operations

    def set(self, key: str, value: Any, ttl: TTL = None) -> bool:
        """
        Store a value, Redis first, local tier on any failure.

        Args:
            key: Cache key
            value: Value to cache; JSON-encoded for Redis
            ttl: Seconds or timedelta; defaults to the cache default TTL

        Returns:
            True once the value is stored in either tier
        """
        seconds = _ttl_seconds(ttl)
        if seconds is None:
            seconds = self.default_ttl

        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.warning(f"Cache value for {key} is not JSON serializable, keeping it locally: {e}")
            self.local.set(key, _RawValue(value), seconds)
            self._fallback_writes += 1
            return True

        if self.client is not None:
            try:
                if seconds > 0:
                    self.client.setex(key, seconds, payload)
                else:
                    self.client.set(key, payload)
                self.local.delete(key)
                logger.debug(f"Cache set: {key} (ttl={seconds}s)")
                return True
            except Exception as e:
                logger.warning(f"Redis set failed for {key}, falling back to local cache: {e}")

        self.local.set(key, payload, seconds)
        self._fallback_writes += 1
        return True

    def get(self, key: str) -> Optional[Any]:
        """
        Get a value: Redis first, then the local tier.

        Returns:
            Decoded value, the raw string when the payload is not JSON, or
            None when absent from both tiers
        """
        if self.client is not None:
            try:
                payload = self.client.get(key)
                if payload is not None:
                    self._hits += 1
                    logger.debug(f"Cache hit: {key}")
                    return _decode(payload)
            except Exception as e:
                logger.warning(f"Redis get failed for {key}, checking local cache: {e}")

        stored = self.local.get(key)
        if stored is None:
            self._misses += 1
            logger.debug(f"Cache miss: {key}")
            return None

        self._hits += 1
        if isinstance(stored, _RawValue):
            return stored.value
        return _decode(stored)

    def delete(self, key: str) -> bool:
        """Delete a key from both tiers. Redis errors are logged, not raised."""
        deleted = False
        if self.client is not None:
            try:
                deleted = self.client.delete(key) > 0
            except Exception as e:
                logger.warning(f"Redis delete failed for {key}: {e}")

        deleted = self.local.delete(key) or deleted
        logger.debug(f"Cache delete: {key} (deleted={deleted})")
        return deleted

    def delete_pattern(self, pattern: str) -> int:
        """
        Delete all Redis keys matching a glob pattern.

        Returns:
            Number of keys deleted

        Raises:
            CacheUnavailableError: If Redis is not available
        """
        client = self._require_remote("pattern deletion")
        try:
            keys = client.keys(pattern)
            if not keys:
                return 0
            deleted = client.delete(*keys)
        except redis.RedisError as e:
            logger.error(f"Cache pattern delete failed for {pattern}: {e}")
            raise CacheUnavailableError("pattern deletion") from e

        logger.info(f"Cache invalidated: {pattern} ({deleted} keys)")
        return deleted

    def exists(self, key: str) -> bool:
        if self.client is not None:
            try:
                if self.client.exists(key) > 0:
                    return True
            except Exception as e:
                logger.warning(f"Redis exists failed for {key}: {e}")
        return self.local.contains(key)

    def increment(self, key: str, delta: int = 1) -> int:
        """
        Increment a counter.

        Atomic on Redis. The local fallback is a read-modify-write and can
        undercount under concurrent access; rate-limit counters tolerate it.

        Returns:
            The new counter value
        """
        if self.client is not None:
            try:
                return int(self.client.incrby(key, delta))
            except Exception as e:
                logger.warning(f"Redis increment failed for {key}, using local counter: {e}")

        current = self.local.get(key)
        if current is not None and not isinstance(current, _RawValue):
            current = _decode(current)
            if isinstance(current, int) and not isinstance(current, bool):
                new_value = current + delta
                remaining = self.local.remaining_ttl(key)
                # Keep the window the counter was seeded with
                ttl = max(1, math.ceil(remaining)) if remaining is not None else 0
                self.local.set(key, json.dumps(new_value), ttl)
                return new_value

        self.local.set(key, json.dumps(delta))
        return delta

    def set_expiration(self, key: str, ttl: TTL) -> bool:
        """
        Set expiration for an existing key (Redis only).

        Raises:
            CacheUnavailableError: If Redis is not available
        """
        client = self._require_remote("setting expiration")
        try:
            return bool(client.expire(key, _ttl_seconds(ttl)))
        except redis.RedisError as e:
            raise CacheUnavailableError("setting expiration") from e

    def ttl(self, key: str) -> int:
        """
        Remaining TTL for a key (Redis only).

        Returns:
            Seconds; -2 if the key does not exist, -1 if it has no expiry

        Raises:
            CacheUnavailableError: If Redis is not available
        """
        client = self._require_remote("TTL")
        try:
            return int(client.ttl(key))
        except redis.RedisError as e:
            raise CacheUnavailableError("TTL") from e

    # Administrative

    def flush_all(self) -> None:
        """
        Clear both tiers.

        Raises:
            CacheUnavailableError: If Redis refuses the flush (local tier is
                cleared regardless)
        """
        self.local.flush()
        if self.client is not None:
            try:
                self.client.flushdb()
            except redis.RedisError as e:
                logger.error(f"Redis flush failed: {e}")
                raise CacheUnavailableError("flush") from e
        logger.info("Cache flushed")

    def stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {
            "memory_items": len(self.local),
            "hits": self._hits,
            "misses": self._misses,
            "fallback_writes": self._fallback_writes,
            "redis_available": self.client is not None,
        }
        if self.client is not None:
            try:
                info = self.client.info("memory")
                stats["redis_used_memory"] = info.get("used_memory_human")
            except Exception as e:
                logger.warning(f"Redis info failed: {e}")
        return stats

    def health(self) -> Dict[str, bool]:
        """
        Liveness of each tier.

        The cache as a whole is healthy while the local tier works, because
        every operation except the Redis-only ones has a local fallback.
        """
        health = {"memory_cache": True, "redis": False}

        try:
            probe = "__health__"
            self.local.set(probe, "1", 5)
            health["memory_cache"] = self.local.get(probe) == "1"
            self.local.delete(probe)
        except Exception as e:
            logger.error(f"Local cache health probe failed: {e}")
            health["memory_cache"] = False

        if self.client is not None:
            try:
                health["redis"] = bool(self.client.ping())
            except Exception as e:
                logger.error(f"Redis ping failed: {e}")

        health["healthy"] = health["memory_cache"]
        return health

    def close(self) -> None:
        """Close Redis connection pool."""
        if self.client is None:
            return
        try:
            self.client.close()
            if self.pool is not None:
                self.pool.disconnect()
            logger.info("Redis cache closed")
        except Exception as e:
            logger.error(f"Redis close error: {e}")
