"""Short-lived cache of a campaign's active variation weights.

Only new visitors read from this cache; returning visitors are answered from
their stored assignment. Entries expire after a few seconds and are deleted
explicitly whenever an operator edits the campaign or one of its variation
sets, so a deactivated variant stops receiving traffic immediately.
"""
import json
import redis
import structlog
from typing import List, Optional, Tuple

logger = structlog.get_logger()

# (variation_set_id, weight)
WeightEntry = Tuple[int, int]


class CampaignCache:
    """Redis-backed cache of active variation weights per campaign."""

    def __init__(self, redis_client: redis.Redis, ttl_seconds: int = 30):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds

    def _get_key(self, campaign_id: int) -> str:
        """Get Redis key for a campaign's weights."""
        return f"campaign:weights:{campaign_id}"

    def get_weights(self, campaign_id: int) -> Optional[List[WeightEntry]]:
        """Cached weights, or None on a miss or when Redis is unavailable."""
        try:
            raw = self.redis.get(self._get_key(campaign_id))
        except redis.RedisError as e:
            logger.warning("campaign_cache_error", campaign_id=campaign_id, operation="get", error=str(e))
            return None

        if not raw:
            return None
        return [(int(entry[0]), int(entry[1])) for entry in json.loads(raw)]

    def set_weights(self, campaign_id: int, weights: List[WeightEntry]) -> None:
        try:
            self.redis.setex(
                self._get_key(campaign_id),
                self.ttl_seconds,
                json.dumps([list(entry) for entry in weights])
            )
        except redis.RedisError as e:
            logger.warning("campaign_cache_error", campaign_id=campaign_id, operation="set", error=str(e))

    def invalidate(self, campaign_id: int) -> None:
        """Drop the cached weights after an operator change."""
        try:
            self.redis.delete(self._get_key(campaign_id))
        except redis.RedisError as e:
            logger.warning("campaign_cache_error", campaign_id=campaign_id, operation="invalidate", error=str(e))
            return
        logger.info("campaign_cache_invalidated", campaign_id=campaign_id)
