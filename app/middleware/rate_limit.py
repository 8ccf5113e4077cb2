from fastapi import Request, status
from fastapi.responses import JSONResponse
import time
import redis
import structlog
from app.core.config import settings

logger = structlog.get_logger()

# Paths never rate limited
EXEMPT_PATHS = {"/health"}


class RedisTokenBucket:
    """Redis sliding-window rate limiter with an in-memory token bucket fallback"""

    def __init__(self, rate: int, period: int, redis_url: str):
        """
        Args:
            rate: Number of requests allowed
            period: Time period in seconds
            redis_url: Redis connection URL
        """
        self.rate = rate
        self.period = period
        self.buckets: dict[str, dict[str, float]] = {}
        self._last_sweep = time.time()
        try:
            self.redis_client = redis.from_url(redis_url, decode_responses=False)
            self.redis_client.ping()
            self.use_redis = True
            logger.info("rate_limiter_using_redis")
        except redis.RedisError as e:
            logger.warning("rate_limiter_redis_failed_using_memory", error=str(e))
            self.redis_client = None
            self.use_redis = False

    def is_allowed(self, key: str) -> bool:
        """
        Check if a request is allowed for the given key

        Args:
            key: Identifier (API key or client IP)

        Returns:
            True if allowed, False if rate limit exceeded
        """
        if self.use_redis:
            return self._is_allowed_redis(key)
        return self._is_allowed_memory(key)

    def _is_allowed_redis(self, key: str) -> bool:
        redis_key = f"rate_limit:{key}"
        now = time.time()

        pipe = self.redis_client.pipeline()
        pipe.zremrangebyscore(redis_key, 0, now - self.period)
        pipe.zcard(redis_key)
        pipe.zadd(redis_key, {str(now): now})
        pipe.expire(redis_key, self.period)
        results = pipe.execute()

        # Count before the current request was added
        return results[1] < self.rate

    def _evict_idle(self, now: float) -> None:
        """Drop buckets untouched for a full period; such a bucket is back at full rate"""
        if now - self._last_sweep < self.period:
            return

        self._last_sweep = now
        idle = [key for key, bucket in self.buckets.items() if now - bucket["last_update"] >= self.period]
        for key in idle:
            del self.buckets[key]

    def _is_allowed_memory(self, key: str) -> bool:
        now = time.time()
        self._evict_idle(now)
        bucket = self.buckets.setdefault(key, {"tokens": self.rate, "last_update": now})

        # Refill proportionally to elapsed time
        elapsed = now - bucket["last_update"]
        bucket["last_update"] = now
        bucket["tokens"] = min(self.rate, bucket["tokens"] + (elapsed / self.period) * self.rate)

        if bucket["tokens"] >= 1:
            bucket["tokens"] -= 1
            return True
        return False

    def get_remaining(self, key: str) -> int:
        """Remaining requests for a key in the current window"""
        if self.use_redis:
            now = time.time()
            count = self.redis_client.zcount(f"rate_limit:{key}", now - self.period, now)
            return max(0, self.rate - count)

        bucket = self.buckets.get(key)
        return self.rate if bucket is None else int(bucket["tokens"])


rate_limiter = RedisTokenBucket(
    rate=settings.rate_limit_requests,
    period=settings.rate_limit_period,
    redis_url=settings.redis_url
)


def rate_limit_headers(remaining: int) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(rate_limiter.rate),
        "X-RateLimit-Remaining": str(max(0, remaining)),
        "X-RateLimit-Reset": str(rate_limiter.period),
    }


async def rate_limit_middleware(request: Request, call_next):
    """Limit requests per API key, or per client IP without one"""
    if request.url.path in EXEMPT_PATHS:
        return await call_next(request)

    api_key = request.headers.get("X-API-Key")
    if api_key and settings.api_key and api_key == settings.api_key:
        rate_limit_key = f"api_key:{api_key}"
    else:
        client_ip = request.client.host if request.client else "unknown"
        rate_limit_key = f"ip:{client_ip}"

    if not rate_limiter.is_allowed(rate_limit_key):
        remaining = rate_limiter.get_remaining(rate_limit_key)

        logger.warning(
            "rate_limit_exceeded",
            key=rate_limit_key,
            path=request.url.path,
            remaining=remaining
        )

        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={
                "detail": "Rate limit exceeded. Please try again later.",
                "retry_after": rate_limiter.period
            },
            headers={
                **rate_limit_headers(remaining),
                "Retry-After": str(rate_limiter.period)
            }
        )

    response = await call_next(request)
    response.headers.update(rate_limit_headers(rate_limiter.get_remaining(rate_limit_key)))

    return response
