"""
Fixed-window request rate limiter.

Uses a redis counter (INCR + EXPIRE per one-minute window) when REDIS_URL is
configured, otherwise an in-process dict.  A redis failure is reported as
503 rather than silently letting traffic through.
"""
from __future__ import annotations

import logging
import time
from typing import Dict, Optional

import redis.asyncio as aioredis
from fastapi import status
from redis.exceptions import RedisError

from ecocomply.config import settings
from ecocomply.utils.api_response import ApiError

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60


class RateLimiter:
    """Counts requests per key per window; raises ApiError when over the limit."""

    def __init__(self, redis_url: str = "", limit: int = 300) -> None:
        self.redis_url = redis_url
        self.limit = limit
        self._client: Optional[aioredis.Redis] = None
        # Counts for the current window only
        self._window: Optional[int] = None
        self._state: Dict[str, int] = {}

    def _redis(self) -> aioredis.Redis:
        if self._client is None:
            self._client = aioredis.from_url(self.redis_url, decode_responses=True)
        return self._client

    async def hit(self, key: str) -> int:
        """Record one request for *key* and return the count in the current window."""
        window = int(time.time() // WINDOW_SECONDS)
        window_key = f"ratelimit:{key}:{window}"

        if self.redis_url:
            client = self._redis()
            count = await client.incr(window_key)
            if count == 1:
                await client.expire(window_key, WINDOW_SECONDS)
            return int(count)

        if window != self._window:
            self._state.clear()
            self._window = window
        count = self._state.get(key, 0) + 1
        self._state[key] = count
        return count

    async def check(self, key: str) -> None:
        if not settings.RATE_LIMIT_ENABLED:
            return
        try:
            count = await self.hit(key)
        except RedisError as exc:
            logger.error("Rate limiter unavailable: %s", exc)
            raise ApiError(
                status.HTTP_503_SERVICE_UNAVAILABLE,
                "Rate limiting service unavailable",
            )
        if count > self.limit:
            raise ApiError(
                status.HTTP_429_TOO_MANY_REQUESTS,
                "Rate limit exceeded",
                details={"limit": self.limit, "window_seconds": WINDOW_SECONDS},
            )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# Module-level singleton
rate_limiter = RateLimiter(settings.REDIS_URL, settings.RATE_LIMIT_PER_MINUTE)
