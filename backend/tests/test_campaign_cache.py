"""Tests for the campaign weight cache."""
import json

import pytest
import redis
from unittest.mock import MagicMock

from funnellab.services.campaign_cache import CampaignCache


@pytest.fixture
def mock_redis():
    """Create a mock Redis client."""
    redis_mock = MagicMock()
    redis_mock.get.return_value = None
    return redis_mock


def test_miss_returns_none(mock_redis):
    cache = CampaignCache(mock_redis)

    assert cache.get_weights(1) is None
    mock_redis.get.assert_called_once_with("campaign:weights:1")


def test_hit_returns_weight_pairs(mock_redis):
    """Test that cached JSON is decoded into (id, weight) pairs."""
    mock_redis.get.return_value = b"[[3, 1], [4, 3]]"
    cache = CampaignCache(mock_redis)

    assert cache.get_weights(1) == [(3, 1), (4, 3)]


def test_set_weights_uses_ttl(mock_redis):
    """Test that weights are stored with an expiry."""
    cache = CampaignCache(mock_redis, ttl_seconds=15)

    cache.set_weights(7, [(3, 1), (4, 3)])

    key, ttl, value = mock_redis.setex.call_args[0]
    assert key == "campaign:weights:7"
    assert ttl == 15
    assert json.loads(value) == [[3, 1], [4, 3]]


def test_invalidate_deletes_key(mock_redis):
    cache = CampaignCache(mock_redis)

    cache.invalidate(7)

    mock_redis.delete.assert_called_once_with("campaign:weights:7")


def test_redis_errors_are_treated_as_misses(mock_redis):
    """Test that a Redis outage never breaks assignment."""
    mock_redis.get.side_effect = redis.ConnectionError("down")
    mock_redis.setex.side_effect = redis.ConnectionError("down")
    mock_redis.delete.side_effect = redis.ConnectionError("down")
    cache = CampaignCache(mock_redis)

    assert cache.get_weights(1) is None
    cache.set_weights(1, [(3, 1)])
    cache.invalidate(1)


def test_variation_set_update_invalidates_cache(db, make_campaign):
    """Test that operator edits drop cached weights immediately."""
    from funnellab.services.campaigns import CampaignService

    campaign, (set_a, _) = make_campaign()
    cache = MagicMock()

    CampaignService(db, cache).update_variation_set(set_a.id, {"weight": 5})

    cache.invalidate.assert_called_once_with(campaign.id)
