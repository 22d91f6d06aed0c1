"""Fixed-window request limiter keyed by client IP.

Counters live in Redis when ``REDIS_URL`` points at a reachable server, so
several API processes share one count per client. Otherwise each process
counts on its own in a ``TTLCache``. The Redis client is the asyncio one and
connects on first use; the limiter runs on the event loop.
"""

import time
from typing import Iterable, Optional

import redis.asyncio as aioredis
from cachetools import TTLCache
from fastapi import Request
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware

from storefront.core import get_logger

logger = get_logger(__name__)

RATE_LIMIT_MESSAGE = "Too many requests, please try again later."

# seconds to count in process after Redis fails before trying it again
REDIS_RETRY_SECONDS = 30


class FixedWindowCounter:
    def __init__(self, max_requests: int, window_seconds: int, redis_url: str = ""):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.redis_url = redis_url
        self.local_counts = TTLCache(maxsize=10000, ttl=window_seconds)
        self.redis_client: Optional[aioredis.Redis] = None
        self.redis_retry_at = 0.0

    def _window(self, now: float) -> int:
        return int(now // self.window_seconds)

    def _redis(self, now: float) -> Optional[aioredis.Redis]:
        if not self.redis_url or now < self.redis_retry_at:
            return None
        if self.redis_client is None:
            self.redis_client = aioredis.from_url(self.redis_url, decode_responses=True, socket_connect_timeout=1)
        return self.redis_client

    async def hit(self, client_id: str, now: Optional[float] = None) -> int:
        """Count one request and return the total for the current window."""
        now = time.time() if now is None else now
        key = f"ratelimit:{client_id}:{self._window(now)}"
        client = self._redis(now)
        if client is not None:
            try:
                async with client.pipeline() as pipe:
                    pipe.incr(key)
                    pipe.expire(key, self.window_seconds)
                    count, _ = await pipe.execute()
                return int(count)
            except RedisError as e:
                logger.warning(f"Redis rate limit counter failed, counting in process: {e}")
                self.redis_retry_at = now + REDIS_RETRY_SECONDS
        count = self.local_counts.get(key, 0) + 1
        self.local_counts[key] = count
        return count

    def retry_after(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        return int((self._window(now) + 1) * self.window_seconds - now) or 1


class FixedWindowRateLimiter(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        max_requests: int = 100,
        window_seconds: int = 900,
        redis_url: str = "",
        exempt_prefixes: Iterable[str] = ("/health", "/metrics"),
    ):
        super().__init__(app)
        self.counter = FixedWindowCounter(max_requests, window_seconds, redis_url)
        self.exempt_prefixes = tuple(exempt_prefixes)

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS" or request.url.path.startswith(self.exempt_prefixes):
            return await call_next(request)

        client_id = request.client.host if request.client else "unknown"
        count = await self.counter.hit(client_id)
        remaining = max(self.counter.max_requests - count, 0)
        if count > self.counter.max_requests:
            logger.warning(
                f"Rate limit exceeded for {client_id}",
                extra={'extra_fields': {'client_host': client_id, 'path': request.url.path}}
            )
            return JSONResponse(
                status_code=429,
                content={"success": False, "error": RATE_LIMIT_MESSAGE},
                headers={
                    "Retry-After": str(self.counter.retry_after()),
                    "RateLimit-Limit": str(self.counter.max_requests),
                    "RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["RateLimit-Limit"] = str(self.counter.max_requests)
        response.headers["RateLimit-Remaining"] = str(remaining)
        return response
