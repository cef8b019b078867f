"""Per-client rate limiting and short-lived response caching, both in Redis.

RapidAPI has a small monthly quota, so its proxy routes are limited per client
IP and GET responses are cached briefly to collapse duplicate requests.
Both fail open: if Redis is unreachable the request goes through uncached.
"""

import json
import logging
import time

import redis.asyncio as aioredis
from fastapi import HTTPException, Request
from redis.exceptions import RedisError

from app.config import settings

logger = logging.getLogger(__name__)

REDIS_PREFIX = "gridlock"


def client_ip(request: Request) -> str:
    """Socket peer address. Behind a proxy, run uvicorn with ``--proxy-headers``
    and ``--forwarded-allow-ips`` so the trusted proxy sets it; raw
    ``X-Forwarded-For`` is client-controlled and never read here.
    """
    return request.client.host if request.client else "unknown"


class RateLimiter:
    """Fixed-window request counter keyed by client IP. Use as a route dependency."""

    def __init__(self, name: str, limit: int, window_seconds: int = 60) -> None:
        self.name = name
        self.limit = limit
        self.window_seconds = window_seconds

    def _key(self, ip: str) -> str:
        window = int(time.time() // self.window_seconds)
        return f"{REDIS_PREFIX}:ratelimit:{self.name}:{ip}:{window}"

    async def __call__(self, request: Request) -> None:
        key = self._key(client_ip(request))
        r = aioredis.from_url(settings.redis_url, decode_responses=True)
        try:
            count = await r.incr(key)
            if count == 1:
                await r.expire(key, self.window_seconds)
        except (RedisError, OSError) as e:
            logger.warning("Rate limiter unavailable, allowing request: %s", e)
            return
        finally:
            await r.aclose()

        if count > self.limit:
            raise HTTPException(status_code=429, detail="Too many requests, please try again later.")


class ResponseCache:
    """JSON response cache with a fixed TTL."""

    def __init__(self, name: str, ttl_seconds: int) -> None:
        self.name = name
        self.ttl_seconds = ttl_seconds

    def _key(self, key: str) -> str:
        return f"{REDIS_PREFIX}:cache:{self.name}:{key}"

    async def get(self, key: str) -> dict | list | None:
        r = aioredis.from_url(settings.redis_url, decode_responses=True)
        try:
            raw = await r.get(self._key(key))
        except (RedisError, OSError) as e:
            logger.warning("Response cache read failed: %s", e)
            return None
        finally:
            await r.aclose()
        if raw is None:
            return None
        logger.debug("Cache hit for %s", key)
        return json.loads(raw)

    async def set(self, key: str, value: dict | list) -> None:
        r = aioredis.from_url(settings.redis_url, decode_responses=True)
        try:
            await r.set(self._key(key), json.dumps(value), ex=self.ttl_seconds)
        except (RedisError, OSError) as e:
            logger.warning("Response cache write failed: %s", e)
        finally:
            await r.aclose()


rapidapi_limiter = RateLimiter("rapidapi", settings.rate_limit_per_minute)
rapidapi_cache = ResponseCache("rapidapi", settings.response_cache_ttl_seconds)
