"""Redis fixed-window rate limiter guarding coupon validation.

Coupon codes are short and guessable; the limiter caps how many codes a
single user can try per window. INCR, EXPIRE NX and TTL run in one MULTI
so a counter can never be left without an expiry.

Usage:
    allowed, retry_after = await limiter.check(coupon_key(user_id), limit=10, window=60)
"""

from __future__ import annotations

import logging
import uuid

from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


def coupon_key(user_id: uuid.UUID) -> str:
    return f"rate:{user_id}:coupon"


class RateLimiter:
    """Fixed-window counter per key."""

    def __init__(self, redis: object) -> None:
        self._redis = redis

    async def check(self, key: str, limit: int, window: int) -> tuple[bool, int]:
        """Count one attempt against ``key``.

        Returns:
            (allowed, retry_after): seconds until the window resets when
            denied, 0 when allowed. Redis failures allow the attempt.
        """
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.expire(key, window, nx=True)
                pipe.ttl(key)
                count, _, ttl = await pipe.execute()
        except (RedisError, OSError):
            logger.exception("Rate limiter unavailable for %s, allowing", key)
            return True, 0

        if count > limit:
            logger.info("Rate limit hit: key=%s count=%d limit=%d", key, count, limit)
            return False, max(int(ttl), 1)
        return True, 0
