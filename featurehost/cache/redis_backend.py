"""
Redis Cache Backend.

Shared cache for multi-worker deployments. Expiry is delegated to Redis
(`SET ... PX`), which gives the same hard-TTL semantics as InMemoryCache.

Storage Format:
    - Key: f"{key_prefix}:{key}"
    - Value: JSON serialized payload (values must be JSON-serializable)
"""

from __future__ import annotations

import json
import logging
from typing import Any

from .base import MISS, validate_ttl

logger = logging.getLogger(__name__)


class RedisCache:
    """
    Redis-backed TTL cache.

    Example:
        cache = RedisCache(redis_url="redis://localhost:6379")
        await cache.set("gas-tracker:solana", {"fee": 5000}, ttl_seconds=30)
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        key_prefix: str = "featurehost:cache",
        client: Any = None,
    ) -> None:
        """
        Initialize Redis cache.

        Args:
            redis_url: Redis connection URL
            key_prefix: Prefix for all keys
            client: Existing redis.asyncio.Redis client (optional)
        """
        self._redis_url = redis_url
        self._key_prefix = key_prefix
        self._client: Any = client

    async def _get_client(self) -> Any:
        """Get or create Redis client."""
        if self._client is None:
            try:
                import redis.asyncio as aioredis
            except ImportError:
                raise ImportError(
                    "redis package required for RedisCache. Install with: pip install redis"
                )
            self._client = aioredis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._client

    def _key(self, key: str) -> str:
        return f"{self._key_prefix}:{key}"

    async def get(self, key: str) -> Any:
        client = await self._get_client()
        data = await client.get(self._key(key))
        if data is None:
            return MISS
        try:
            return json.loads(data)
        except json.JSONDecodeError as e:
            logger.warning(f"[cache:redis] Dropping undecodable entry {key}: {e}")
            await client.delete(self._key(key))
            return MISS

    async def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        ttl_ms = max(1, int(validate_ttl(ttl_seconds) * 1000))
        client = await self._get_client()
        await client.set(self._key(key), json.dumps(value), px=ttl_ms)

    async def delete(self, key: str) -> bool:
        client = await self._get_client()
        return bool(await client.delete(self._key(key)))

    async def clear(self) -> None:
        client = await self._get_client()
        keys = [k async for k in client.scan_iter(match=f"{self._key_prefix}:*")]
        if keys:
            await client.delete(*keys)
        logger.debug(f"[cache:redis] Cleared {len(keys)} keys")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
