"""Assignment resolver: sticky weighted variant assignment for visitors."""
import random
import re
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import structlog
from sqlalchemy.orm import Session

from funnellab.models import Campaign, EventType, VariationSet, Visitor
from funnellab.services.campaign_cache import CampaignCache, WeightEntry
from funnellab.services.errors import AssignmentConflict, CampaignNotFound, NoActiveVariants
from funnellab.services.event_store import EventStore

logger = structlog.get_logger()

ATTRIBUTION_FIELDS = (
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_content",
    "utm_term",
    "referrer",
)

# Client-supplied tokens are adopted only if they look like ones we issue
TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


@dataclass
class Assignment:
    """Result of resolving a visitor within a campaign."""

    campaign: Campaign
    variation_set: VariationSet
    visitor: Visitor
    token: str
    created: bool


def choose_weighted(entries: Sequence[WeightEntry], rng: random.Random) -> int:
    """
    Pick a variation set id with probability weight / sum(weights).

    Args:
        entries: (variation_set_id, weight) pairs, weights >= 1
        rng: Random source

    Returns:
        The selected variation set id
    """
    total = sum(weight for _, weight in entries)
    point = rng.random() * total

    cumulative = 0
    for variation_set_id, weight in entries:
        cumulative += weight
        if point < cumulative:
            return variation_set_id

    # Float rounding at the very top of the range
    return entries[-1][0]


def new_visitor_token() -> str:
    return str(uuid.uuid4())


class AssignmentResolver:
    """Maps inbound visitors to durable variation set assignments."""

    def __init__(
        self,
        db: Session,
        cache: Optional[CampaignCache] = None,
        rng: Optional[random.Random] = None
    ):
        self.db = db
        self.store = EventStore(db)
        self.cache = cache
        self.rng = rng or random.SystemRandom()

    def resolve(
        self,
        campaign_slug: str,
        visitor_token: Optional[str] = None,
        attribution: Optional[Dict[str, Optional[str]]] = None
    ) -> Assignment:
        """
        Resolve the visitor's variation set, assigning one on first visit.

        A known (campaign, token) pair always returns the stored assignment,
        whatever the current weights or active flags are. A page_view event
        is recorded in the same transaction either way.

        Raises:
            CampaignNotFound: Unknown or inactive slug
            NoActiveVariants: Campaign has no active variation set
        """
        campaign = self.store.get_campaign_by_slug(campaign_slug)
        if not campaign:
            raise CampaignNotFound(f"Campaign '{campaign_slug}' not found")

        token = visitor_token if visitor_token and TOKEN_PATTERN.match(visitor_token) else None

        try:
            visitor = self.store.get_visitor(campaign.id, token) if token else None
            created = False

            if visitor is None:
                visitor, created = self._assign_new_visitor(campaign, token, attribution or {})

            self.store.append_event(visitor, EventType.PAGE_VIEW)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        variation_set = self.store.get_variation_set(visitor.variation_set_id)

        logger.info(
            "visitor_assigned" if created else "visitor_returned",
            campaign_id=campaign.id,
            variation_set_id=visitor.variation_set_id,
            visitor_id=visitor.id
        )

        return Assignment(
            campaign=campaign,
            variation_set=variation_set,
            visitor=visitor,
            token=visitor.token,
            created=created
        )

    def _assign_new_visitor(
        self,
        campaign: Campaign,
        token: Optional[str],
        attribution: Dict[str, Optional[str]]
    ):
        variation_set_id = self._choose_variation_set(campaign.id)
        token = token or new_visitor_token()

        try:
            visitor = self.store.insert_visitor_if_absent(
                campaign.id,
                token,
                variation_set_id,
                {field: attribution.get(field) for field in ATTRIBUTION_FIELDS}
            )
            return visitor, True
        except AssignmentConflict:
            # A concurrent first visit with the same token won; adopt its row
            visitor = self.store.get_visitor(campaign.id, token)
            if visitor is None:
                raise
            logger.info(
                "assignment_conflict_resolved",
                campaign_id=campaign.id,
                chosen_variation_set_id=variation_set_id,
                winning_variation_set_id=visitor.variation_set_id
            )
            return visitor, False

    def _choose_variation_set(self, campaign_id: int) -> int:
        weights = self._active_weights(campaign_id)
        variation_set_id = choose_weighted(weights, self.rng)

        if self.cache is not None:
            variation_set = self.store.get_variation_set(variation_set_id)
            if variation_set is None or not variation_set.active:
                # Cached weights outlived an operator change
                self.cache.invalidate(campaign_id)
                weights = self._active_weights(campaign_id)
                variation_set_id = choose_weighted(weights, self.rng)

        return variation_set_id

    def _active_weights(self, campaign_id: int) -> List[WeightEntry]:
        if self.cache is not None:
            cached = self.cache.get_weights(campaign_id)
            if cached:
                return cached

        weights = [
            (variation_set.id, variation_set.weight)
            for variation_set in self.store.list_variation_sets(campaign_id, active_only=True)
            if variation_set.weight >= 1
        ]
        if not weights:
            raise NoActiveVariants(f"Campaign {campaign_id} has no active variation sets")

        if self.cache is not None:
            self.cache.set_weights(campaign_id, weights)
        return weights
