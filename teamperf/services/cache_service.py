"""
Performance Cache Service.

Memoizes per-user, per-period aggregates and leaderboards.

Supports:
1. Redis (preferred for production)
2. In-memory fallback (for development/testing)

Usage:
    cache = get_cache()

    perf = await cache.remember(
        f"personal:{user_id}:{period}",
        lambda: calculator.compute(user_id, period),
        ttl=300,
        tags=[f"user:{user_id}"],
        model=PersonalPerformance,
    )

    # Drop everything cached for one user
    await cache.invalidate_tags([f"user:{user_id}"])

A backend outage never reaches the caller: reads degrade to misses and the
value is recomputed.
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Set

from pydantic import BaseModel, TypeAdapter

from teamperf.config import settings, Settings

logger = logging.getLogger(__name__)

# Tag sets must outlive every member they index
TAG_TTL = 86400


class CacheBackend(ABC):
    """Abstract cache backend interface."""

    name = "abstract"

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        """Set value in cache with TTL (seconds)."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete key from cache."""
        pass

    @abstractmethod
    async def clear_pattern(self, pattern: str) -> int:
        """Clear all keys matching pattern."""
        pass

    @abstractmethod
    async def count_pattern(self, pattern: str) -> Optional[int]:
        """Count keys matching pattern, or None if unknown."""
        pass

    @abstractmethod
    async def tag(self, key: str, tags: Iterable[str], ttl: int = 3600) -> bool:
        """Record key under each tag."""
        pass

    @abstractmethod
    async def invalidate_tag(self, tag: str) -> int:
        """Delete every key recorded under tag. Returns number of keys deleted."""
        pass


class InMemoryCache(CacheBackend):
    """
    In-memory cache for development/fallback.

    Note: does not share across multiple server instances.
    """

    name = "memory"

    def __init__(self):
        self._cache: Dict[str, tuple[Any, datetime]] = {}
        self._tags: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            if key in self._cache:
                value, expires_at = self._cache[key]
                if expires_at > datetime.now(timezone.utc):
                    return value
                else:
                    del self._cache[key]
            return None

    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        async with self._lock:
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl)
            self._cache[key] = (value, expires_at)
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            if key in self._cache:
                del self._cache[key]
                return True
            return False

    async def clear_pattern(self, pattern: str) -> int:
        """Clear keys matching pattern (simple prefix match)."""
        async with self._lock:
            prefix = pattern.rstrip('*')
            keys_to_delete = [k for k in self._cache.keys() if k.startswith(prefix)]
            for key in keys_to_delete:
                del self._cache[key]
            for tag in [t for t in self._tags if t.startswith(prefix)]:
                del self._tags[tag]
            return len(keys_to_delete)

    async def count_pattern(self, pattern: str) -> Optional[int]:
        async with self._lock:
            prefix = pattern.rstrip('*')
            now = datetime.now(timezone.utc)
            return sum(
                1 for k, (_, expires_at) in self._cache.items()
                if k.startswith(prefix) and expires_at > now
            )

    async def tag(self, key: str, tags: Iterable[str], ttl: int = 3600) -> bool:
        async with self._lock:
            for tag in tags:
                self._tags.setdefault(tag, set()).add(key)
            return True

    async def invalidate_tag(self, tag: str) -> int:
        async with self._lock:
            keys = self._tags.pop(tag, set())
            deleted = 0
            for key in keys:
                if self._cache.pop(key, None) is not None:
                    deleted += 1
            return deleted

    async def cleanup_expired(self) -> int:
        """Remove expired entries. Call periodically to prevent memory bloat."""
        async with self._lock:
            now = datetime.now(timezone.utc)
            expired_keys = [
                k for k, (_, expires_at) in self._cache.items()
                if expires_at <= now
            ]
            for key in expired_keys:
                del self._cache[key]
            for tag in list(self._tags):
                self._tags[tag] = {k for k in self._tags[tag] if k in self._cache}
                if not self._tags[tag]:
                    del self._tags[tag]
            return len(expired_keys)


class RedisCache(CacheBackend):
    """
    Redis cache backend for production.

    Every operation logs and swallows connection errors so that an outage
    looks like an empty cache to the caller.
    """

    name = "redis"

    def __init__(self, redis_url: str, client=None):
        self._redis_url = redis_url
        self._client = client
        self.errors = 0

    async def _get_client(self):
        if self._client is None:
            import redis.asyncio as redis
            self._client = redis.from_url(self._redis_url, decode_responses=True)
        return self._client

    def _degraded(self, operation: str, key: str, e: Exception) -> None:
        self.errors += 1
        logger.warning(f"Redis {operation} failed for {key}, treating as cache miss: {e}")

    async def get(self, key: str) -> Optional[Any]:
        try:
            client = await self._get_client()
            value = await client.get(key)
            if value:
                return json.loads(value)
            return None
        except Exception as e:
            self._degraded("get", key, e)
            return None

    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        try:
            client = await self._get_client()
            await client.set(key, json.dumps(value), ex=ttl)
            return True
        except Exception as e:
            self._degraded("set", key, e)
            return False

    async def delete(self, key: str) -> bool:
        try:
            client = await self._get_client()
            await client.delete(key)
            return True
        except Exception as e:
            self._degraded("delete", key, e)
            return False

    async def _scan(self, pattern: str):
        client = await self._get_client()
        cursor = 0
        while True:
            cursor, keys = await client.scan(cursor, match=pattern, count=100)
            if keys:
                yield keys
            if cursor == 0:
                break

    async def clear_pattern(self, pattern: str) -> int:
        try:
            client = await self._get_client()
            deleted = 0
            async for keys in self._scan(pattern):
                await client.delete(*keys)
                deleted += len(keys)
            return deleted
        except Exception as e:
            self._degraded("clear_pattern", pattern, e)
            return 0

    async def count_pattern(self, pattern: str) -> Optional[int]:
        try:
            count = 0
            async for keys in self._scan(pattern):
                count += len(keys)
            return count
        except Exception as e:
            self._degraded("count_pattern", pattern, e)
            return None

    async def tag(self, key: str, tags: Iterable[str], ttl: int = 3600) -> bool:
        try:
            client = await self._get_client()
            pipe = client.pipeline()
            for tag in tags:
                pipe.sadd(tag, key)
                pipe.expire(tag, max(ttl, TAG_TTL))
            await pipe.execute()
            return True
        except Exception as e:
            self._degraded("tag", key, e)
            return False

    async def invalidate_tag(self, tag: str) -> int:
        try:
            client = await self._get_client()
            keys = await client.smembers(tag)
            deleted = 0
            if keys:
                deleted = await client.delete(*keys)
            await client.delete(tag)
            return deleted
        except Exception as e:
            self._degraded("invalidate_tag", tag, e)
            return 0


class CacheService:
    """
    Namespaced cache with tags and compute-and-cache.

    Keys follow the format:

        {namespace}:{resource}:{identifier}:{period}

    Examples:
        teamperf:personal:u123:2024-01
        teamperf:leaderboard:team:2024-01:50

    Features:
    - remember(): a miss falls through to the compute function; concurrent
      misses for the same key share one computation (single-flight)
    - Tag invalidation (e.g. every entry of one user)
    - JSON serialization, pydantic models restored on read
    - TTL management
    """

    def __init__(self, backend: CacheBackend, namespace: str = "teamperf"):
        self._backend = backend
        self._namespace = namespace
        self._inflight: Dict[str, asyncio.Future] = {}
        self._adapters: Dict[Any, TypeAdapter] = {}
        self.hits = 0
        self.misses = 0

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    def _make_key(self, key: str) -> str:
        """Create namespaced cache key."""
        return f"{self._namespace}:{key}"

    def _make_tag(self, tag: str) -> str:
        return f"{self._namespace}:tag:{tag}"

    @staticmethod
    def _to_jsonable(value: Any) -> Any:
        if isinstance(value, BaseModel):
            return value.model_dump(mode="json")
        if isinstance(value, (list, tuple)):
            return [CacheService._to_jsonable(v) for v in value]
        if isinstance(value, dict):
            return {k: CacheService._to_jsonable(v) for k, v in value.items()}
        return value

    def _load(self, raw: Any, model: Any) -> Any:
        if model is None:
            return raw
        adapter = self._adapters.get(model)
        if adapter is None:
            adapter = self._adapters[model] = TypeAdapter(model)
        return adapter.validate_python(raw)

    async def get(self, key: str, model: Any = None) -> Optional[Any]:
        """Get value from cache, validated into model when given."""
        raw = await self._backend.get(self._make_key(key))
        if raw is None:
            return None
        return self._load(raw, model)

    async def set(
        self,
        key: str,
        value: Any,
        ttl: int = 3600,
        tags: Iterable[str] = ()
    ) -> bool:
        """Set value in cache and record it under tags."""
        full_key = self._make_key(key)
        stored = await self._backend.set(full_key, self._to_jsonable(value), ttl)
        tags = [self._make_tag(t) for t in tags]
        if stored and tags:
            await self._backend.tag(full_key, tags, ttl)
        return stored

    async def delete(self, key: str) -> bool:
        """Delete key from cache."""
        return await self._backend.delete(self._make_key(key))

    async def clear_pattern(self, pattern: str) -> int:
        """Clear all keys matching pattern."""
        return await self._backend.clear_pattern(self._make_key(pattern))

    async def clear_all(self) -> int:
        """Clear ALL cached data in this namespace."""
        return await self._backend.clear_pattern(f"{self._namespace}:*")

    async def invalidate_tags(self, tags: Iterable[str]) -> int:
        """Delete every entry recorded under any of tags."""
        count = 0
        for tag in tags:
            count += await self._backend.invalidate_tag(self._make_tag(tag))
        return count

    async def remember(
        self,
        key: str,
        compute: Callable[[], Awaitable[Any]],
        ttl: int = 3600,
        tags: Iterable[str] = (),
        model: Any = None,
    ) -> Any:
        """
        Return the cached value for key, computing and caching it on a miss.

        Concurrent callers that miss on the same key wait for the first
        caller's computation instead of starting their own. Errors raised by
        compute propagate to every waiter and nothing is cached. If the first
        caller is cancelled, its waiters compute the value themselves.
        """
        cached = await self.get(key, model)
        if cached is not None:
            self.hits += 1
            return cached

        full_key = self._make_key(key)
        pending = self._inflight.get(full_key)
        if pending is not None:
            try:
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                # Owner cancelled, not this caller: compute afresh
                if not pending.cancelled():
                    raise
                return await self.remember(key, compute, ttl, tags, model)

        self.misses += 1
        future = asyncio.get_running_loop().create_future()
        self._inflight[full_key] = future
        try:
            value = await compute()
            if value is not None:
                await self.set(key, value, ttl, tags)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unawaited failure is not reported twice
            future.exception()
            raise
        else:
            future.set_result(value)
        finally:
            self._inflight.pop(full_key, None)
        return value

    async def stats(self) -> dict:
        """Backend name, live key count and hit/miss counters."""
        return {
            "backend": self._backend.name,
            "namespace": self._namespace,
            "keys": await self._backend.count_pattern(f"{self._namespace}:*"),
            "hits": self.hits,
            "misses": self.misses,
            "errors": getattr(self._backend, "errors", 0),
        }


def build_cache(config: Settings = settings) -> CacheService:
    """Create a cache service for the configured backend."""
    if config.REDIS_URL and config.CACHE_ENABLED:
        backend = RedisCache(config.REDIS_URL)
        logger.info("Cache initialized with Redis backend")
    else:
        backend = InMemoryCache()
        logger.info("Cache initialized with in-memory backend")
    return CacheService(backend, namespace=config.CACHE_NAMESPACE)


# Default instance for background jobs; services take the cache as a constructor argument
_cache_instance: Optional[CacheService] = None


def get_cache() -> CacheService:
    """Get the shared cache service."""
    global _cache_instance

    if _cache_instance is None:
        _cache_instance = build_cache(settings)

    return _cache_instance
