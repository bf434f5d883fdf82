"""Shared API dependencies: Redis-backed services and rate limiting."""
from fastapi import Depends, HTTPException, Request, Response
from typing import Optional
import redis

from funnellab.config import get_settings
from funnellab.middleware.logging import get_logger
from funnellab.services.campaign_cache import CampaignCache
from funnellab.services.rate_limiter import RateLimiter

settings = get_settings()
logger = get_logger()

# Connections are opened lazily on first command
redis_client = redis.from_url(settings.redis_url)


def get_campaign_cache() -> Optional[CampaignCache]:
    """Campaign weight cache, or None when caching is disabled."""
    if not settings.cache_enabled:
        return None
    return CampaignCache(redis_client, ttl_seconds=settings.campaign_cache_ttl_seconds)


def get_rate_limiter() -> Optional[RateLimiter]:
    """Public endpoint rate limiter, or None when rate limiting is disabled."""
    if not settings.rate_limit_enabled:
        return None
    return RateLimiter(redis_client)


def enforce_rate_limit(
    request: Request,
    response: Response,
    rate_limiter: Optional[RateLimiter] = Depends(get_rate_limiter)
) -> None:
    """
    Reject public funnel calls from a client IP over its window budget and
    report the remaining budget in X-RateLimit headers.
    """
    if rate_limiter is None:
        return

    client_ip = request.client.host if request.client else "unknown"
    allowed, count = rate_limiter.check_rate_limit(
        client_ip,
        limit=settings.rate_limit_requests,
        window=settings.rate_limit_window
    )

    if not allowed:
        logger.warning("rate_limit_exceeded", client_ip=client_ip, count=count)
        raise HTTPException(
            status_code=429,
            detail=f"Rate limit exceeded. Limit: {settings.rate_limit_requests} requests per {settings.rate_limit_window}s",
            headers={"X-RateLimit-Limit": str(settings.rate_limit_requests), "X-RateLimit-Remaining": "0"}
        )

    remaining = rate_limiter.get_remaining(
        client_ip,
        limit=settings.rate_limit_requests,
        window=settings.rate_limit_window
    )
    response.headers["X-RateLimit-Limit"] = str(settings.rate_limit_requests)
    response.headers["X-RateLimit-Remaining"] = str(remaining)
