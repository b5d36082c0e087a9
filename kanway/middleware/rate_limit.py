"""Rate limiting middleware"""

import asyncio
import logging
import time
import uuid
from typing import Callable

import redis.asyncio as redis
from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from kanway.config import settings

logger = logging.getLogger(__name__)


class InMemoryRateLimiter:
    """Fixed-window limiter used when Redis is not reachable"""

    def __init__(self, clock: Callable[[], float] = time.time):
        # Store: {client_key: (request_count, window_start_time)}
        self.clients: dict[str, tuple[int, float]] = {}
        self._clock = clock
        self._lock = asyncio.Lock()

    async def is_allowed(self, client_id: str, limit: int, window_seconds: int) -> tuple[bool, int, int]:
        """Check if request is allowed. Returns (allowed, remaining, reset_time)"""
        async with self._lock:
            current_time = self._clock()
            count, window_start = self.clients.get(client_id, (0, current_time))

            if current_time - window_start >= window_seconds:
                count = 0
                window_start = current_time

            reset_time = int(window_start + window_seconds)
            if count >= limit:
                return False, 0, reset_time

            count += 1
            self.clients[client_id] = (count, window_start)
            return True, limit - count, reset_time


class RedisRateLimiter:
    """Sliding-window limiter shared across workers"""

    def __init__(self, redis_client: redis.Redis, prefix: str = "kanway:ratelimit:"):
        self.redis = redis_client
        self.prefix = prefix

    async def is_allowed(self, client_id: str, limit: int, window_seconds: int) -> tuple[bool, int, int]:
        key = f"{self.prefix}{client_id}"
        current_time = time.time()

        pipe = self.redis.pipeline()
        pipe.zremrangebyscore(key, 0, current_time - window_seconds)
        pipe.zcard(key)
        # Unique member so requests in the same second are counted separately
        pipe.zadd(key, {f"{current_time}:{uuid.uuid4().hex}": current_time})
        pipe.expire(key, window_seconds)
        results = await pipe.execute()

        current_requests = results[1]
        reset_time = int(current_time) + window_seconds
        if current_requests >= limit:
            return False, 0, reset_time
        return True, limit - current_requests - 1, reset_time


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-client minute and hour limits, Redis first with in-memory fallback"""

    def __init__(
        self,
        app,
        requests_per_minute: int = 60,
        requests_per_hour: int = 1000,
        enable_rate_limiting: bool = True,
    ):
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.requests_per_hour = requests_per_hour
        self.enable_rate_limiting = enable_rate_limiting
        self.redis_limiter: RedisRateLimiter | None = None
        self.memory_limiter = InMemoryRateLimiter()
        self._redis_setup_attempted = False

    async def _setup_redis(self) -> None:
        if self._redis_setup_attempted or not settings.redis_url:
            return
        self._redis_setup_attempted = True
        try:
            redis_client = redis.from_url(str(settings.redis_url))
            await redis_client.ping()
            self.redis_limiter = RedisRateLimiter(redis_client)
            logger.info("Rate limiting backed by Redis")
        except (redis.RedisError, OSError) as e:
            logger.warning(f"Redis unavailable for rate limiting, using in-memory limiter: {e}")

    def _get_client_id(self, request: Request) -> str:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        return request.client.host if request.client else "unknown"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enable_rate_limiting or request.url.path.startswith("/health"):
            return await call_next(request)

        await self._setup_redis()

        client_id = self._get_client_id(request)
        limiter = self.redis_limiter or self.memory_limiter

        allowed_minute, remaining_minute, reset_minute = await limiter.is_allowed(
            f"{client_id}:minute", self.requests_per_minute, 60
        )
        allowed_hour, remaining_hour, reset_hour = await limiter.is_allowed(
            f"{client_id}:hour", self.requests_per_hour, 3600
        )

        remaining = min(remaining_minute, remaining_hour)
        reset_time = min(reset_minute, reset_hour)
        headers = {
            "X-RateLimit-Limit-Minute": str(self.requests_per_minute),
            "X-RateLimit-Limit-Hour": str(self.requests_per_hour),
            "X-RateLimit-Remaining": str(remaining),
            "X-RateLimit-Reset": str(reset_time),
        }

        if not (allowed_minute and allowed_hour):
            logger.warning(f"Rate limit exceeded for {client_id}")
            headers["Retry-After"] = str(max(reset_time - int(time.time()), 0))
            # Exceptions raised inside BaseHTTPMiddleware bypass the exception handlers
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"error": "RateLimitExceeded", "detail": "Rate limit exceeded", "field": None},
                headers=headers,
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response
