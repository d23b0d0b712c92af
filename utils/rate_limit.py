import json
from time import time
from typing import Dict, Optional, Tuple
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
import logging
import redis

from config import settings
from utils.responses import error_response

logger = logging.getLogger(__name__)

_redis_client = None
_redis_available = False

redis_url = settings.redis_url
if redis_url:
    try:
        # Parse Redis URL (supports redis:// and redis://:password@host:port)
        _redis_client = redis.from_url(redis_url, decode_responses=True)
        # Test connection
        _redis_client.ping()
        _redis_available = True
        logger.info("Redis connected successfully for rate limiting")
    except redis.RedisError as e:
        logger.warning(f"Redis connection failed: {e}. Falling back to in-memory rate limiting.")
        _redis_client = None
        _redis_available = False
else:
    logger.info("REDIS_URL not set. Using in-memory rate limiting.")

# Provider callbacks and liveness probes bypass the per-IP limit
EXEMPT_PATHS = {"/api/billing/webhook", "/health"}


class TokenBucketLimiter:
    """
    Token bucket keyed by an arbitrary string (client IP, user id, ...).

    Buckets live in Redis when it is reachable so limits hold across workers;
    otherwise they are kept in process memory. A capacity of 0 or less
    disables the limiter.
    """

    def __init__(self, capacity: int, refill_time_window: float, namespace: str = "rate_limit"):
        self.capacity = capacity
        self.refill_time_window = refill_time_window
        self.namespace = namespace
        # Fallback: in-memory storage (key -> (tokens, last_refill_ts))
        self._buckets: Dict[str, Tuple[float, float]] = {}
        self._use_redis = _redis_available and _redis_client is not None

    @property
    def enabled(self) -> bool:
        return self.capacity > 0

    def _get_redis_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def _refill(self, tokens: float, last_refill: float, now: float) -> float:
        elapsed = max(0.0, now - last_refill)
        refill = (elapsed / self.refill_time_window) * self.capacity
        return min(self.capacity, tokens + refill)

    async def _check_redis(self, key: str) -> Optional[bool]:
        """
        Returns True if allowed, False if limited, None if Redis failed.
        """
        try:
            redis_key = self._get_redis_key(key)
            now = time()

            bucket_data = _redis_client.get(redis_key)
            if bucket_data:
                # Parse stored data: {"tokens": float, "last_refill": float}
                data = json.loads(bucket_data)
                tokens = float(data.get("tokens", 0))
                last_refill = float(data.get("last_refill", now))
            else:
                tokens = float(self.capacity)
                last_refill = now

            tokens = self._refill(tokens, last_refill, now)
            if tokens < 1.0:
                return False

            tokens -= 1.0
            bucket_data = json.dumps({"tokens": tokens, "last_refill": now})
            _redis_client.setex(redis_key, int(self.refill_time_window) + 10, bucket_data)
            return True
        except (redis.RedisError, ValueError) as e:
            logger.warning(f"Redis rate limit check failed: {e}. Falling back to in-memory.")
            return None

    def _check_memory(self, key: str) -> bool:
        now = time()
        tokens, last_refill = self._buckets.get(key, (float(self.capacity), now))
        tokens = self._refill(tokens, last_refill, now)

        if tokens < 1.0:
            return False

        # Consume a token and store
        self._buckets[key] = (tokens - 1.0, now)
        return True

    async def allow(self, key: str) -> bool:
        """Consume one token for `key`; False when the bucket is empty."""
        if not self.enabled:
            return True
        if self._use_redis:
            allowed = await self._check_redis(key)
            if allowed is not None:
                return allowed
        return self._check_memory(key)


class RateLimiterMiddleware(BaseHTTPMiddleware):
    """
    Per-IP rate limiter for the whole API.
    Default: settings.rate_limit_per_minute requests per 60 seconds per IP.
    """

    def __init__(self, app, requests_per_minute: Optional[int] = None):
        super().__init__(app)
        capacity = settings.rate_limit_per_minute if requests_per_minute is None else requests_per_minute
        self.limiter = TokenBucketLimiter(capacity, 60.0, namespace="rate_limit")

    def _get_client_ip(self, request: Request) -> str:
        xff = request.headers.get("x-forwarded-for")
        if xff:
            # Take first IP in the list
            return xff.split(",")[0].strip()
        client = request.client
        return client.host if client else "unknown"

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        ip = self._get_client_ip(request)

        if not await self.limiter.allow(ip):
            return error_response(
                "rate_limited",
                status=429,
                message="Rate limit exceeded. Try again shortly.",
            )

        return await call_next(request)
