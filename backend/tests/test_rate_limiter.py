"""Tests for the public endpoint rate limiter."""
import pytest
import redis
from fastapi import HTTPException, Response
from unittest.mock import MagicMock

from funnellab.api.deps import enforce_rate_limit
from funnellab.services.rate_limiter import RateLimiter


@pytest.fixture
def mock_redis():
    """Create a mock Redis client."""
    redis_mock = MagicMock()
    redis_mock.get.return_value = None
    pipe_mock = MagicMock()
    pipe_mock.execute.return_value = [1, True]
    redis_mock.pipeline.return_value = pipe_mock
    return redis_mock


def test_allows_first_request(mock_redis):
    """Test that a fresh window allows the request."""
    limiter = RateLimiter(mock_redis)

    allowed, count = limiter.check_rate_limit("203.0.113.7", limit=5, window=60)

    assert allowed is True
    assert count == 1
    mock_redis.pipeline.return_value.incr.assert_called_once()
    mock_redis.pipeline.return_value.expire.assert_called_once()


def test_rejects_when_at_limit(mock_redis):
    """Test that requests are rejected once the window is full."""
    mock_redis.get.return_value = b"5"
    limiter = RateLimiter(mock_redis)

    allowed, count = limiter.check_rate_limit("203.0.113.7", limit=5, window=60)

    assert allowed is False
    assert count == 5
    mock_redis.pipeline.assert_not_called()


def test_allows_when_redis_is_down(mock_redis):
    """Test that tracking is never lost because Redis is unavailable."""
    mock_redis.get.side_effect = redis.ConnectionError("down")
    limiter = RateLimiter(mock_redis)

    assert limiter.check_rate_limit("203.0.113.7", limit=5) == (True, 0)


def test_window_keys_are_scoped_per_client(mock_redis):
    limiter = RateLimiter(mock_redis)

    key_a = limiter._get_window_key("203.0.113.7", 60)
    key_b = limiter._get_window_key("198.51.100.2", 60)

    assert key_a.startswith("rate_limit:funnel:203.0.113.7:")
    assert key_a != key_b


def test_get_remaining(mock_redis):
    mock_redis.get.return_value = b"3"
    limiter = RateLimiter(mock_redis)

    assert limiter.get_remaining("203.0.113.7", limit=5) == 2


def client_request(host="203.0.113.7"):
    request = MagicMock()
    request.client.host = host
    return request


def test_enforce_rate_limit_reports_remaining_budget(mock_redis):
    """Test that allowed requests carry the remaining window budget."""
    mock_redis.get.side_effect = [b"3", b"4"]
    response = Response()

    enforce_rate_limit(client_request(), response, RateLimiter(mock_redis))

    assert response.headers["X-RateLimit-Limit"] == "600"
    assert response.headers["X-RateLimit-Remaining"] == "596"


def test_enforce_rate_limit_rejects_full_window(mock_redis):
    mock_redis.get.return_value = b"600"

    with pytest.raises(HTTPException) as exc_info:
        enforce_rate_limit(client_request(), Response(), RateLimiter(mock_redis))

    assert exc_info.value.status_code == 429
    assert exc_info.value.headers["X-RateLimit-Remaining"] == "0"
