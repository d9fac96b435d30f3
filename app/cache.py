import json
import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.config import settings

logger = logging.getLogger(__name__)


class CacheError(Exception):
    """The cache could not serve or store a value (transport, codec, disabled)."""


class CacheMiss(CacheError):
    """The key is absent.  Callers fall back to the store."""


class CacheManager:
    """
    Cache-aside manager backed by Redis.

    The cache is never authoritative.  Reads raise ``CacheMiss`` for an
    absent key and ``CacheError`` for anything else (including Redis being
    unavailable), so callers can tell a cold key from an outage while still
    falling back to the store in both cases.  Writes and deletes raise
    ``CacheError``; callers log it and carry on, a cache failure must never
    fail a request whose store work succeeded.
    """

    def __init__(self) -> None:
        self._redis: redis.Redis | None = None
        self._hits: int = 0
        self._misses: int = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection pool.  Called once at application startup."""
        self._redis = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        # Ping to surface mis-configuration early (non-fatal).
        try:
            await self._redis.ping()
            logger.info("Redis connected: %s", settings.REDIS_URL)
        except (RedisError, OSError) as exc:  # pragma: no cover
            logger.warning("Redis ping failed, serving from the database only: %s", exc)

    async def disconnect(self) -> None:
        """Close the connection pool.  Called once at application shutdown."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    def _client(self) -> redis.Redis:
        if self._redis is None:
            raise CacheError("cache is not connected")
        return self._redis

    # ------------------------------------------------------------------
    # Core cache operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> dict | list:
        """Return the decoded value for *key*; raise ``CacheMiss`` if absent."""
        try:
            data = await self._client().get(key)
        except CacheError:
            self._misses += 1
            raise
        except (RedisError, OSError) as exc:
            self._misses += 1
            raise CacheError(f"GET {key!r} failed: {exc}") from exc

        if data is None:
            self._misses += 1
            raise CacheMiss(key)
        try:
            value = json.loads(data)
        except ValueError as exc:
            self._misses += 1
            raise CacheError(f"undecodable value under {key!r}") from exc
        self._hits += 1
        return value

    async def set(self, key: str, value: dict | list, ttl: int | None = None) -> None:
        """Persist *value* under *key* with an optional TTL (seconds)."""
        client = self._client()
        try:
            serialised = json.dumps(value, default=str)
            await client.set(key, serialised, ex=ttl)
        except (RedisError, OSError, TypeError, ValueError) as exc:
            raise CacheError(f"SET {key!r} failed: {exc}") from exc

    async def delete(self, *keys: str) -> None:
        if not keys:
            return
        client = self._client()
        try:
            await client.delete(*keys)
        except (RedisError, OSError) as exc:
            raise CacheError(f"DEL {keys!r} failed: {exc}") from exc

    async def delete_pattern(self, pattern: str) -> int:
        """
        Delete all keys matching *pattern* using SCAN (avoids blocking KEYS).

        Returns the number of keys removed.
        """
        client = self._client()
        try:
            keys: list[str] = []
            async for key in client.scan_iter(match=pattern):
                keys.append(key)
            if keys:
                await client.delete(*keys)
                logger.debug("Cache invalidated %d key(s) matching %r", len(keys), pattern)
            return len(keys)
        except (RedisError, OSError) as exc:
            raise CacheError(f"DELETE_PATTERN {pattern!r} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Post keys
    # ------------------------------------------------------------------

    @staticmethod
    def post_key(post_id: int) -> str:
        return f"posts:detail:{post_id}"

    @staticmethod
    def post_list_key(page: int, page_size: int, search: str, sort_field: str, sort_dir: str) -> str:
        return f"posts:list:{page}:{page_size}:{sort_field}:{sort_dir}:{search}"

    async def invalidate_post(self, post_id: int | None = None) -> None:
        """
        Invalidate post caches after a write.

        Always purges the listing pages (totals and ``comments_count`` are
        stale after any create/delete).  When *post_id* is provided the
        detail entry for that post is removed as well.
        """
        await self.delete_pattern("posts:list:*")
        if post_id is not None:
            await self.delete(self.post_key(post_id))

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    @property
    def stats(self) -> dict:
        """Return a snapshot of hit/miss counters for metrics endpoints."""
        total = self._hits + self._misses
        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total * 100, 1) if total > 0 else 0.0,
        }


# Module-level singleton shared across all request handlers.
cache = CacheManager()
