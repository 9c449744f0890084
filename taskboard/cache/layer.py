import asyncio
import json
import logging
import re
from typing import Any, Awaitable, Callable, Optional

from cachetools import TTLCache
from redis.asyncio import Redis, RedisError

from taskboard.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def _escape_glob(value: str) -> str:
    """Escape Redis MATCH metacharacters so a prefix is matched literally."""
    return _GLOB_SPECIAL.sub(r"\\\1", value)


class CacheLayer:
    """
    Read-aside cache for project and task projections.

    Reads go to Redis, then to the loader the caller supplies. A Redis
    entry lives for ``l2_ttl_seconds`` after its last read. Without Redis
    (disabled, or unreachable at startup) a process-local TTLCache takes
    its place; it is never layered in front of Redis, where an eviction
    on one worker would leave stale copies on the others.

    List pages are dropped by key prefix when a write touches their scope,
    single items by exact key. A failed Redis call is logged and counted,
    and the request carries on without the cache. Concurrent misses on one
    key share a lock so only one of them runs the loader.
    """

    def __init__(self, settings: Settings | None = None, redis: Redis | None = None):
        self._settings = settings
        self._redis: Redis | None = redis
        self.l1: TTLCache | None = None
        self._initialized = False

        # Per-key loader locks, forgotten five minutes after creation
        self._locks: TTLCache = TTLCache(maxsize=10_000, ttl=300)

        self.stats = {
            "l1_hits": 0,
            "l2_hits": 0,
            "misses": 0,
            "errors": 0,
        }

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @property
    def redis_available(self) -> bool:
        return self._redis is not None

    async def init_cache(self):
        """Connect to Redis, or create the local tier without it; safe to call repeatedly."""
        if self._initialized:
            return

        settings = self.settings

        if self._redis is None and settings.redis_enabled:
            redis = Redis.from_url(
                settings.redis_dsn,
                encoding="utf-8",
                decode_responses=True,
                max_connections=settings.redis_pool_size,
                socket_connect_timeout=5,
                socket_keepalive=True,
                health_check_interval=30,
            )
            try:
                await redis.ping()
                self._redis = redis
                logger.info("Redis connection established")
            except RedisError as e:
                logger.error("Redis initialization failed, running L1 only: %s", e)
                await redis.aclose()

        # Local entries are invisible to other workers' evictions
        if self._redis is None and self.l1 is None and settings.l1_maxsize > 0:
            self.l1 = TTLCache(maxsize=settings.l1_maxsize, ttl=settings.l1_ttl_seconds)

        self._initialized = True
        logger.info("Cache layer initialized")

    def _l1_key(self, key: str) -> str:
        return f"{self.settings.cache_namespace}l1:{key}"

    def _l2_key(self, key: str) -> str:
        return f"{self.settings.cache_namespace}l2:{key}"

    def _serialize(self, value: Any) -> str:
        # Values are model_dump(mode="json") output
        return json.dumps(value)

    def _deserialize(self, raw: str) -> Any:
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring undecodable L2 entry")
            return None

    def _l1_get(self, key: str) -> Any:
        if self.l1 is None:
            return None
        return self.l1.get(self._l1_key(key))

    def _l1_set(self, key: str, value: Any):
        if self.l1 is not None:
            self.l1[self._l1_key(key)] = value

    async def _l2_get(self, key: str) -> Any:
        if not self._redis:
            return None
        try:
            # GETEX refreshes the TTL, which makes the expiration sliding
            raw = await self._redis.getex(
                self._l2_key(key), ex=self.settings.l2_ttl_seconds
            )
        except RedisError as e:
            logger.error("Redis GET error for %s: %s", key, e)
            self.stats["errors"] += 1
            return None
        if raw is None:
            return None
        return self._deserialize(raw)

    async def get(
        self,
        key: str,
        loader: Optional[Callable[[], Awaitable[Any]]] = None,
        l2_ttl: Optional[int] = None,
    ):
        """
        Look ``key`` up locally, then in Redis, then call ``loader``.

        A loaded value is written to both tiers unless it is None. Exceptions
        raised by the loader propagate and nothing is cached. Returns None on
        a miss without a loader.
        """
        await self.init_cache()

        value = self._l1_get(key)
        if value is not None:
            self.stats["l1_hits"] += 1
            logger.debug("L1 hit for %s", key)
            return value

        value = await self._l2_get(key)
        if value is not None:
            self.stats["l2_hits"] += 1
            logger.debug("L2 hit for %s", key)
            self._l1_set(key, value)
            return value

        if loader is None:
            self.stats["misses"] += 1
            logger.debug("Cache miss, no loader for %s", key)
            return None

        lock = self._get_lock_for_key(key)
        async with lock:
            # Another caller may have loaded it while this one waited
            value = self._l1_get(key)
            if value is None:
                value = await self._l2_get(key)
            if value is not None:
                self._l1_set(key, value)
                return value

            self.stats["misses"] += 1
            logger.debug("Loading %s from source", key)
            value = await loader()

            if value is None:
                return None

            await self._set_both_layers(key, value, l2_ttl)
            return value

    async def _set_both_layers(self, key: str, value: Any, l2_ttl: int | None = None):
        self._l1_set(key, value)

        if self._redis:
            try:
                ttl = l2_ttl or self.settings.l2_ttl_seconds
                data = self._serialize(value)
                await self._redis.set(self._l2_key(key), data, ex=ttl)
                logger.debug("Stored %s in L2 for %ss", key, ttl)
            except RedisError as e:
                logger.error("Redis SET error for %s: %s", key, e)
                self.stats["errors"] += 1

    async def set(self, key: str, value: Any, l2_ttl: Optional[int] = None):
        """Write a JSON-compatible value to both tiers."""
        await self.init_cache()
        await self._set_both_layers(key, value, l2_ttl)

    async def delete(self, *keys: str):
        """
        Delete keys from both cache layers.

        Failures are logged and counted, never raised. An entry that survives
        a failed delete expires after its TTL.
        """
        await self.init_cache()
        if not keys:
            return

        if self.l1 is not None:
            for key in keys:
                self.l1.pop(self._l1_key(key), None)

        if self._redis:
            try:
                await self._redis.delete(*(self._l2_key(key) for key in keys))
                logger.debug("Deleted %s from both layers", ", ".join(keys))
            except RedisError as e:
                logger.error("Redis DELETE error for %s: %s", ", ".join(keys), e)
                self.stats["errors"] += 1

    async def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix`` from both layers."""
        await self.init_cache()
        deleted_count = 0

        if self.l1 is not None:
            l1_prefix = self._l1_key(prefix)
            stale = [key for key in list(self.l1.keys()) if key.startswith(l1_prefix)]
            for key in stale:
                self.l1.pop(key, None)
            deleted_count += len(stale)

        if not self._redis:
            return deleted_count

        try:
            l2_pattern = _escape_glob(self._l2_key(prefix)) + "*"
            cursor = 0

            while True:
                cursor, keys = await self._redis.scan(cursor, match=l2_pattern, count=100)
                if keys:
                    await self._redis.delete(*keys)
                    deleted_count += len(keys)
                if cursor == 0:
                    break

            logger.debug("Prefix delete of %s removed %d keys", prefix, deleted_count)

        except RedisError as e:
            logger.error("Prefix delete error for %s: %s", prefix, e)
            self.stats["errors"] += 1

        return deleted_count

    async def ping(self) -> bool:
        """Whether the shared tier answers; True when running L1 only."""
        await self.init_cache()
        if not self._redis:
            return True
        try:
            return bool(await self._redis.ping())
        except RedisError as e:
            logger.error("Redis ping failed: %s", e)
            return False

    async def close(self):
        if self._redis:
            try:
                await self._redis.aclose()
                logger.info("Redis connection closed")
            except RedisError as e:
                logger.error("Error closing Redis: %s", e)
            self._redis = None
        self._initialized = False

    def get_stats(self) -> dict:
        total = sum(
            [self.stats["l1_hits"], self.stats["l2_hits"], self.stats["misses"]]
        )

        return {
            **self.stats,
            "l1_size": len(self.l1) if self.l1 is not None else 0,
            "l1_maxsize": self.l1.maxsize if self.l1 is not None else 0,
            "redis": self.redis_available,
            "hit_rate": (
                (self.stats["l1_hits"] + self.stats["l2_hits"]) / total
                if total > 0
                else 0
            ),
        }

    def _get_lock_for_key(self, key: str) -> asyncio.Lock:
        return self._locks.setdefault(key, asyncio.Lock())


# One per worker process
cache_layer = CacheLayer()
