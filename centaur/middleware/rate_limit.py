"""
Rate Limiting Middleware

Token bucket per foundry, stored in Redis so every worker shares the
same buckets. Foundries may override the default rate and burst.

TRADEOFF: if Redis is unreachable the limiter fails open. We choose
availability over strict limiting; the outage is logged.
"""
import time
from typing import Optional, Tuple

import redis
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from centaur.config import get_settings
from centaur.utils.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

BUCKET_TTL_SECONDS = 60


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Must sit inside FoundryMiddleware: it reads request.state.foundry.
    Requests without a foundry context are not limited.
    """

    def __init__(self, app, redis_client: Optional["redis.Redis"] = None, enabled: Optional[bool] = None):
        super().__init__(app)
        self.enabled = settings.RATE_LIMIT_ENABLED if enabled is None else enabled
        self.redis_client = redis_client
        self.redis_available = False

        if self.enabled:
            self._connect()

        self.excluded_paths = [
            "/docs",
            "/redoc",
            "/openapi.json",
            "/health",
        ]

    def _connect(self) -> None:
        try:
            if self.redis_client is None:
                self.redis_client = redis.from_url(
                    settings.REDIS_URL,
                    decode_responses=True,
                    socket_connect_timeout=5
                )
            self.redis_client.ping()
            self.redis_available = True
            logger.info("Redis connection established for rate limiting")
        except (redis.ConnectionError, redis.TimeoutError) as e:
            logger.error(f"Redis connection failed: {e}")
            self.redis_available = False

    async def dispatch(self, request: Request, call_next):
        if not self.enabled:
            return await call_next(request)

        if any(request.url.path.startswith(path) for path in self.excluded_paths):
            return await call_next(request)

        if not self.redis_available:
            logger.warning("Rate limiting disabled - Redis unavailable")
            return await call_next(request)

        foundry = getattr(request.state, "foundry", None)
        if foundry is None:
            return await call_next(request)

        allowed, retry_after = self.check_rate_limit(foundry)
        if not allowed:
            logger.warning(
                f"Rate limit exceeded for foundry {foundry.slug}",
                extra={"foundry_id": foundry.id}
            )
            return JSONResponse(
                status_code=429,
                content={
                    "detail": "Rate limit exceeded",
                    "type": "rate_limit_exceeded",
                    "retry_after": retry_after
                },
                headers={"Retry-After": str(retry_after)}
            )

        return await call_next(request)

    def check_rate_limit(self, foundry, now: Optional[float] = None) -> Tuple[bool, int]:
        """
        Consume one token from the foundry's bucket.

        Returns (allowed, retry_after_seconds).

        - the bucket holds at most ``burst`` tokens
        - it refills at ``rate_limit / 60`` tokens per second
        """
        rate_limit = foundry.rate_limit_per_minute or settings.RATE_LIMIT_PER_MINUTE
        burst = foundry.rate_limit_burst or settings.RATE_LIMIT_BURST
        per_second = rate_limit / 60.0

        key = f"rate_limit:{foundry.id}"
        key_timestamp = f"{key}:timestamp"
        now = time.time() if now is None else now

        try:
            current_tokens = self.redis_client.get(key)
            last_update = self.redis_client.get(key_timestamp)

            if current_tokens is None:
                self._store(key, key_timestamp, burst - 1, now)
                return True, 0

            last = float(last_update) if last_update else now
            tokens = min(burst, float(current_tokens) + (now - last) * per_second)

            if tokens >= 1:
                self._store(key, key_timestamp, tokens - 1, now)
                return True, 0

            retry_after = int((1 - tokens) / per_second) + 1
            return False, retry_after

        except redis.RedisError as e:
            logger.error(f"Redis error in rate limiting: {e}")
            return True, 0

    def _store(self, key: str, key_timestamp: str, tokens: float, now: float) -> None:
        pipe = self.redis_client.pipeline()
        pipe.setex(key, BUCKET_TTL_SECONDS, tokens)
        pipe.setex(key_timestamp, BUCKET_TTL_SECONDS, now)
        pipe.execute()
