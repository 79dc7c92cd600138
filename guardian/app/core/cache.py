"""
Redis cache layer — optional JSON cache in front of slow upstream lookups.

Only the flood outlook uses it today: the endpoint and the scheduled sweep
ask for the same rounded coordinates, and the provider is rate limited.

    key = "<namespace>:<part>:<part>..."    e.g. "flood:29.95:-90.07"

With CACHE_ENABLED false, or Redis unreachable, every read is a miss and
every write a no-op. Cache errors are logged and never raised.

Usage:
    from guardian.app.core.cache import cache_get, cache_key, cache_set

    key = cache_key("flood", 29.95, -90.07)
    await cache_set(key, outlook.to_dict(), ttl=900)
    cached = await cache_get(key)
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from guardian.app.core.config import settings

logger = logging.getLogger(__name__)

_redis_client = None


def cache_key(namespace: str, *parts: Any) -> str:
    return ":".join([namespace, *(str(p) for p in parts)])


async def _client():
    """Redis client, created on first use; None when caching is off."""
    global _redis_client
    if not settings.CACHE_ENABLED:
        return None
    if _redis_client is None:
        try:
            import redis.asyncio as aioredis
            _redis_client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
        except Exception as e:
            logger.warning("Redis client unavailable (%s), caching disabled", e)
            return None
        logger.info("Redis cache at %s", settings.REDIS_URL)
    return _redis_client


async def cache_get(key: str) -> Optional[Any]:
    client = await _client()
    if client is None:
        return None
    try:
        raw = await client.get(key)
    except Exception as e:
        logger.warning("Cache read failed for %s: %s", key, e)
        return None
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Discarding unreadable cache entry %s", key)
        return None


async def cache_set(key: str, value: Any, ttl: Optional[int] = None) -> bool:
    client = await _client()
    if client is None:
        return False
    try:
        await client.set(key, json.dumps(value, default=str), ex=ttl or settings.REDIS_CACHE_TTL)
    except Exception as e:
        logger.warning("Cache write failed for %s: %s", key, e)
        return False
    return True


async def cache_ping() -> Optional[bool]:
    """None when caching is off, else whether Redis answered PING."""
    client = await _client()
    if client is None:
        return None if not settings.CACHE_ENABLED else False
    try:
        return bool(await client.ping())
    except Exception as e:
        logger.warning("Redis ping failed: %s", e)
        return False


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")
