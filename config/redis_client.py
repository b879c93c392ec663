"""
config/redis_client.py
Redis connection used for the admin token deny-list and the per-IP
throttle on public forms. Nothing else lives in Redis.
"""

from typing import Optional

import redis.asyncio as aioredis

from config.settings import settings

redis_client: Optional[aioredis.Redis] = None


async def init_redis() -> None:
    global redis_client
    redis_client = aioredis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )
    await redis_client.ping()


async def close_redis() -> None:
    global redis_client
    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None


def get_redis() -> aioredis.Redis:
    """Route dependency; fails loudly if the lifespan hook has not run."""
    if redis_client is None:
        raise RuntimeError("Redis client is not initialised")
    return redis_client


class RedisCache:
    """Key helpers for the token deny-list and request counters."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    async def revoke_token(self, jti: str, ttl_seconds: int) -> None:
        # Keep the entry only as long as the token could still be presented
        await self.client.setex(f"jwt_revoked:{jti}", max(ttl_seconds, 1), "1")

    async def is_token_revoked(self, jti: str) -> bool:
        return await self.client.exists(f"jwt_revoked:{jti}") == 1

    async def check_rate_limit(self, key: str, limit: int, window_seconds: int = 60) -> bool:
        """Fixed-window counter. True while the caller is under ``limit``."""
        hits = await self.client.incr(key)
        if hits == 1:
            await self.client.expire(key, window_seconds)
        return hits <= limit
