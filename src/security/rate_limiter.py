"""Per-user throttle for inbound channel events (Redis fixed window).

The first hit on a key opens a window of ``window`` seconds; hits past
``limit`` inside it are refused until the key expires. If Redis cannot
be reached the event is let through.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from src.db.engine import redis_client

logger = logging.getLogger(__name__)


def event_key(user_id: str) -> str:
    return f"rate:{user_id}:event"


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    retry_after: int = 0


class RateLimiter:
    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    async def check(self, key: str, limit: int, window: int) -> RateDecision:
        """Count one hit against ``key``; ``retry_after`` is seconds left in the window."""
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.expire(key, window, nx=True)
                pipe.ttl(key)
                count, _, ttl = await pipe.execute()
        except (RedisError, OSError) as exc:
            logger.warning("Rate limiter unavailable for %s, allowing: %s", key, exc)
            return RateDecision(allowed=True)

        if count <= limit:
            return RateDecision(allowed=True)
        return RateDecision(allowed=False, retry_after=max(int(ttl), 1))


rate_limiter = RateLimiter(redis_client)
