"""Rate limiting service using Redis."""
import redis
import structlog
from datetime import datetime
from typing import Tuple

logger = structlog.get_logger()


class RateLimiter:
    """Redis-based fixed window rate limiter for the public funnel endpoints."""

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    def check_rate_limit(
        self,
        key: str,
        limit: int = 600,
        window: int = 60
    ) -> Tuple[bool, int]:
        """
        Check if request is within rate limit.

        Uses fixed window algorithm:
        - Window resets every `window` seconds
        - Allows up to `limit` requests per window

        Tracking calls must never be lost because Redis is down, so any Redis
        error allows the request.

        Args:
            key: Unique identifier (e.g., client IP)
            limit: Maximum requests allowed per window
            window: Time window in seconds (default: 60)

        Returns:
            Tuple of (allowed: bool, current_count: int)

        Example:
            >>> limiter = RateLimiter(redis_client)
            >>> allowed, count = limiter.check_rate_limit("203.0.113.7", limit=600, window=60)
            >>> if not allowed:
            >>>     raise HTTPException(429, "Rate limit exceeded")
        """
        window_key = self._get_window_key(key, window)

        try:
            current = self.redis.get(window_key)

            if current and int(current) >= limit:
                return False, int(current)

            # Increment counter atomically
            pipe = self.redis.pipeline()
            pipe.incr(window_key)
            pipe.expire(window_key, window)
            results = pipe.execute()
        except redis.RedisError as e:
            logger.warning("rate_limiter_unavailable", key=key, error=str(e))
            return True, 0

        new_count = int(results[0])
        return new_count <= limit, new_count

    def _get_window_key(self, key: str, window: int) -> str:
        """Generate Redis key for current time window."""
        now = datetime.utcnow()

        if window == 3600:  # 1 hour
            window_id = now.strftime('%Y%m%d%H')
        elif window == 60:  # 1 minute
            window_id = now.strftime('%Y%m%d%H%M')
        elif window == 86400:  # 1 day
            window_id = now.strftime('%Y%m%d')
        else:
            # For custom windows, use timestamp divided by window
            window_id = str(int(now.timestamp()) // window)

        return f"rate_limit:funnel:{key}:{window_id}"

    def get_remaining(self, key: str, limit: int = 600, window: int = 60) -> int:
        """Get remaining requests in current window."""
        window_key = self._get_window_key(key, window)
        try:
            current = self.redis.get(window_key)
        except redis.RedisError:
            return limit
        used = int(current) if current else 0
        return max(0, limit - used)
