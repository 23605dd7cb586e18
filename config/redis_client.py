"""
config/redis_client.py
Async Redis client for caching, booking locks, admin idempotency keys
and the JWT deny-list.
"""

import json
from typing import Any, Optional
import redis.asyncio as aioredis

from config.settings import settings


# ── Global client (initialized on startup) ───────────────────
redis_client: Optional[aioredis.Redis] = None


async def init_redis() -> None:
    """Initialize the Redis connection pool."""
    global redis_client
    redis_client = aioredis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )
    # Test connection
    await redis_client.ping()


async def close_redis() -> None:
    """Close Redis connection pool."""
    global redis_client
    if redis_client:
        await redis_client.aclose()


def get_redis() -> aioredis.Redis:
    """FastAPI dependency to get Redis client."""
    if not redis_client:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return redis_client


# ── Cache Helpers ─────────────────────────────────────────────
class RedisCache:
    """Helper class for common Redis caching patterns."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    async def get(self, key: str) -> Optional[Any]:
        value = await self.client.get(key)
        if value:
            return json.loads(value)
        return None

    async def set(self, key: str, value: Any, ttl: int = settings.REDIS_CACHE_TTL) -> None:
        await self.client.setex(key, ttl, json.dumps(value, default=str))

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    # ── Booking Locks ────────────────────────────────────────
    async def lock_listing_day(self, listing_id: str, day: str, owner: str) -> bool:
        """
        Atomic lock on a listing's calendar day using SET NX (set if not exists).
        Held while a booking is checked for overlaps and written.
        Returns True if lock acquired, False if someone else holds it.
        """
        key = f"booking_lock:{listing_id}:{day}"
        result = await self.client.set(
            key,
            owner,
            ex=settings.BOOKING_LOCK_TTL,
            nx=True,  # Only set if key doesn't exist
        )
        return result is True

    async def release_listing_day(self, listing_id: str, day: str, owner: str) -> None:
        key = f"booking_lock:{listing_id}:{day}"
        holder = await self.client.get(key)
        if holder == owner:
            await self.client.delete(key)

    # ── Admin Idempotency ────────────────────────────────────
    async def get_idempotent_response(self, scope: str, key: str) -> Optional[dict]:
        return await self.get(f"idempotency:{scope}:{key}")

    async def remember_response(self, scope: str, key: str, response: dict) -> None:
        await self.set(
            f"idempotency:{scope}:{key}",
            response,
            ttl=settings.IDEMPOTENCY_TTL_SECONDS,
        )

    # ── JWT Deny List ─────────────────────────────────────────
    async def revoke_token(self, jti: str, ttl_seconds: int) -> None:
        """Add JWT ID to deny list until it expires."""
        await self.client.setex(f"jwt_revoked:{jti}", ttl_seconds, "1")

    async def is_token_revoked(self, jti: str) -> bool:
        return await self.client.exists(f"jwt_revoked:{jti}") == 1
