"""Campaign and variation set management for the admin API."""
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.orm import Session

from funnellab.models import Campaign, VariationSet
from funnellab.services.campaign_cache import CampaignCache
from funnellab.services.errors import CampaignNotFound, FunnelError

logger = structlog.get_logger()


class SlugTaken(FunnelError):
    """Another campaign already uses the slug."""

    status_code = 409
    code = "slug_taken"


class VariationSetNotFound(FunnelError):
    status_code = 404
    code = "variation_set_not_found"


class CampaignService:
    """Creates and edits campaigns, keeping the weight cache consistent."""

    def __init__(self, db: Session, cache: Optional[CampaignCache] = None):
        self.db = db
        self.cache = cache

    def create_campaign(self, slug: str, name: str, **fields: Any) -> Campaign:
        """
        Create a new campaign.

        Raises:
            SlugTaken: If the slug is already in use
        """
        slug = slug.lower()
        if self.db.query(Campaign).filter(Campaign.slug == slug).first():
            raise SlugTaken(f"Slug '{slug}' is already in use")

        campaign = Campaign(slug=slug, name=name, active=True, **fields)
        self.db.add(campaign)
        self.db.commit()
        self.db.refresh(campaign)

        logger.info("campaign_created", campaign_id=campaign.id, slug=slug)
        return campaign

    def update_campaign(self, campaign_id: int, changes: Dict[str, Any]) -> Campaign:
        """Apply changes; the slug is never among them."""
        campaign = self._get_campaign(campaign_id)
        changes.pop("slug", None)

        for field, value in changes.items():
            setattr(campaign, field, value)
        self.db.commit()
        self.db.refresh(campaign)
        self._invalidate(campaign.id)

        logger.info("campaign_updated", campaign_id=campaign.id, fields=sorted(changes))
        return campaign

    def add_variation_set(self, campaign_id: int, name: str, weight: int = 1, **fields: Any) -> VariationSet:
        """
        Add a treatment arm to a campaign.

        Raises:
            CampaignNotFound: Unknown campaign id
            ValueError: If weight is below 1
        """
        if weight < 1:
            raise ValueError("weight must be >= 1")
        campaign = self._get_campaign(campaign_id)

        variation_set = VariationSet(campaign_id=campaign.id, name=name, weight=weight, **fields)
        self.db.add(variation_set)
        self.db.commit()
        self.db.refresh(variation_set)
        self._invalidate(campaign.id)

        logger.info(
            "variation_set_created",
            campaign_id=campaign.id,
            variation_set_id=variation_set.id,
            weight=weight
        )
        return variation_set

    def update_variation_set(self, variation_set_id: int, changes: Dict[str, Any]) -> VariationSet:
        """
        Change weight, active flag or content of a variation set.

        Existing visitors keep their assignment; only new visitors see the
        new weights.
        """
        variation_set = self.db.query(VariationSet).filter(VariationSet.id == variation_set_id).first()
        if not variation_set:
            raise VariationSetNotFound(f"Variation set {variation_set_id} not found")
        if changes.get("weight") is not None and changes["weight"] < 1:
            raise ValueError("weight must be >= 1")

        for field, value in changes.items():
            setattr(variation_set, field, value)
        self.db.commit()
        self.db.refresh(variation_set)
        self._invalidate(variation_set.campaign_id)

        logger.info(
            "variation_set_updated",
            campaign_id=variation_set.campaign_id,
            variation_set_id=variation_set.id,
            fields=sorted(changes)
        )
        return variation_set

    def _get_campaign(self, campaign_id: int) -> Campaign:
        campaign = self.db.query(Campaign).filter(Campaign.id == campaign_id).first()
        if not campaign:
            raise CampaignNotFound(f"Campaign {campaign_id} not found")
        return campaign

    def _invalidate(self, campaign_id: int) -> None:
        if self.cache is not None:
            self.cache.invalidate(campaign_id)
