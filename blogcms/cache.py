import json
import logging

import redis.asyncio as redis

from blogcms.config import settings

logger = logging.getLogger(__name__)

POST_LIST_PREFIX = "posts:list"
POST_DETAIL_PREFIX = "posts:detail"


def post_list_key(page: int, page_size: int, sort_by: str, sort_order: str) -> str:
    return f"{POST_LIST_PREFIX}:{page}:{page_size}:{sort_by}:{sort_order}"


def post_detail_key(slug: str) -> str:
    return f"{POST_DETAIL_PREFIX}:{slug}"


class CacheManager:
    """
    Cache-aside store for rendered post payloads, backed by Redis.

    Every method tolerates Redis being down: reads miss, writes and
    invalidations are skipped.  Post pages must render without Redis.
    """

    def __init__(self) -> None:
        self._redis: redis.Redis | None = None
        self._hits: int = 0
        self._misses: int = 0

    async def connect(self) -> None:
        self._redis = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        try:
            await self._redis.ping()
            logger.info("Redis connected: %s", settings.REDIS_URL)
        except Exception as exc:  # pragma: no cover
            logger.warning("Redis unavailable, post cache disabled: %s", exc)
            await self._redis.aclose()
            self._redis = None

    async def disconnect(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    @property
    def connected(self) -> bool:
        return self._redis is not None

    async def get(self, key: str) -> dict | None:
        """Return the cached payload for *key*; None on miss or error."""
        if not self._redis:
            self._misses += 1
            return None
        try:
            data = await self._redis.get(key)
        except Exception as exc:
            logger.debug("Cache GET error for key=%r: %s", key, exc)
            self._misses += 1
            return None
        if data is None:
            self._misses += 1
            return None
        self._hits += 1
        return json.loads(data)

    async def set(self, key: str, value: dict, ttl: int | None = None) -> None:
        if not self._redis:
            return
        try:
            await self._redis.set(key, json.dumps(value, default=str), ex=ttl)
        except Exception as exc:
            logger.debug("Cache SET error for key=%r: %s", key, exc)

    async def delete_pattern(self, pattern: str) -> None:
        """Delete all keys matching *pattern* (SCAN-based, non-blocking)."""
        if not self._redis:
            return
        try:
            keys = [key async for key in self._redis.scan_iter(match=pattern)]
            if keys:
                await self._redis.delete(*keys)
                logger.debug("Cache invalidated %d key(s) matching %r", len(keys), pattern)
        except Exception as exc:
            logger.debug("Cache DELETE_PATTERN error for pattern=%r: %s", pattern, exc)

    async def invalidate_post(self, slug: str | None = None) -> None:
        """
        Drop every cached list page, plus the detail entry for *slug*
        when given.  Called after any post write.
        """
        await self.delete_pattern(f"{POST_LIST_PREFIX}:*")
        if slug is not None:
            await self.delete_pattern(post_detail_key(slug))

    @property
    def stats(self) -> dict:
        total = self._hits + self._misses
        return {
            "connected": self.connected,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total * 100, 1) if total > 0 else 0.0,
        }


# Module-level singleton shared across all request handlers.
cache = CacheManager()
