"""Aggregator: per-variant funnel counts, rates, revenue and cost metrics.

Everything is recomputed from the event log on each read; nothing is
persisted, so dashboard numbers can never drift from the events.
"""
from datetime import date
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from funnellab.models import Campaign, EventType, VariationSet
from funnellab.schemas.analytics import CampaignAnalytics, CampaignTotals, VariantAnalytics
from funnellab.services.errors import CampaignNotFound
from funnellab.services.event_store import EventStore
from funnellab.services.significance import (
    DEFAULT_MIN_VISITORS,
    DEFAULT_Z_THRESHOLD,
    VariantCounts,
    classify,
)

# VariantAnalytics field -> event type counted as distinct visitors
STAGE_FIELDS = {
    "registrations": EventType.REGISTRATION,
    "play_starts": EventType.PLAY_START,
    "play_25": EventType.PLAY_25,
    "play_50": EventType.PLAY_50,
    "play_75": EventType.PLAY_75,
    "play_100": EventType.PLAY_100,
    "cta_clicks": EventType.CTA_CLICK,
    "calls_booked": EventType.CALL_BOOKED,
    "buyers": EventType.SALE,
}

# rate field -> stage field
RATE_FIELDS = {
    "registration_rate": "registrations",
    "play_start_rate": "play_starts",
    "cta_click_rate": "cta_clicks",
    "call_booked_rate": "calls_booked",
    "sale_rate": "buyers",
}

TOTAL_FIELDS = (
    "visitors",
    "page_views",
    "registrations",
    "play_starts",
    "cta_clicks",
    "calls_booked",
    "buyers",
    "sales",
    "revenue",
)


def rate(count: int, visitors: int) -> float:
    """count / visitors as a percentage; 0 when there are no visitors."""
    if visitors <= 0:
        return 0.0
    return round(count / visitors * 100, 2)


def safe_ratio(numerator: int, denominator: int) -> Optional[float]:
    """numerator / denominator, or None when the denominator is 0."""
    if denominator <= 0:
        return None
    return round(numerator / denominator, 2)


def sale_amount(payload: Optional[Dict]) -> int:
    if not payload:
        return 0
    amount = payload.get("amount")
    return amount if isinstance(amount, int) and not isinstance(amount, bool) and amount >= 0 else 0


def build_analytics(
    campaign: Campaign,
    variation_sets: List[VariationSet],
    visitor_counts: Dict[int, int],
    event_counts: Dict[Tuple[int, EventType], Tuple[int, int]],
    sales: List[Tuple[int, Optional[Dict]]],
    ad_spend: int,
    ad_spend_entries: int,
    z_threshold: float = DEFAULT_Z_THRESHOLD,
    min_visitors: int = DEFAULT_MIN_VISITORS,
    start: Optional[date] = None,
    end: Optional[date] = None
) -> CampaignAnalytics:
    """Assemble analytics from counts already read from the event store."""
    revenue_by_set: Dict[int, int] = {}
    for variation_set_id, payload in sales:
        revenue_by_set[variation_set_id] = revenue_by_set.get(variation_set_id, 0) + sale_amount(payload)

    variations = []
    for variation_set in variation_sets:
        set_id = variation_set.id
        metrics = {
            "visitors": visitor_counts.get(set_id, 0),
            "page_views": event_counts.get((set_id, EventType.PAGE_VIEW), (0, 0))[0],
            "sales": event_counts.get((set_id, EventType.SALE), (0, 0))[0],
            "revenue": revenue_by_set.get(set_id, 0),
        }
        for field, event_type in STAGE_FIELDS.items():
            metrics[field] = event_counts.get((set_id, event_type), (0, 0))[1]
        for field, stage in RATE_FIELDS.items():
            metrics[field] = rate(metrics[stage], metrics["visitors"])

        variations.append(VariantAnalytics(
            variation_set_id=set_id,
            name=variation_set.name,
            weight=variation_set.weight,
            active=variation_set.active,
            is_control=bool(variation_set.is_control),
            **metrics
        ))

    verdicts = classify(
        [
            VariantCounts(
                key=variant.variation_set_id,
                visitors=variant.visitors,
                conversions=variant.registrations,
                is_control=variant.is_control
            )
            for variant in variations
        ],
        z_threshold=z_threshold,
        min_visitors=min_visitors
    )
    for variant, verdict in zip(variations, verdicts):
        variant.confidence = verdict.confidence.value
        variant.is_baseline = verdict.is_baseline
        variant.z_score = verdict.z_score
        variant.p_value = verdict.p_value

    totals = {field: sum(getattr(variant, field) for variant in variations) for field in TOTAL_FIELDS}

    return CampaignAnalytics(
        campaign_id=campaign.id,
        campaign_slug=campaign.slug,
        campaign_name=campaign.name,
        start=start,
        end=end,
        totals=CampaignTotals(
            registration_rate=rate(totals["registrations"], totals["visitors"]),
            ad_spend=ad_spend,
            ad_spend_entries=ad_spend_entries,
            cost_per_registration=safe_ratio(ad_spend, totals["registrations"]),
            cost_per_sale=safe_ratio(ad_spend, totals["sales"]),
            roi=totals["revenue"] - ad_spend if ad_spend_entries > 0 else None,
            **totals
        ),
        variations=variations
    )


class Aggregator:
    """Read-side analytics over a campaign's event log."""

    def __init__(
        self,
        db: Session,
        z_threshold: float = DEFAULT_Z_THRESHOLD,
        min_visitors: int = DEFAULT_MIN_VISITORS
    ):
        self.store = EventStore(db)
        self.z_threshold = z_threshold
        self.min_visitors = min_visitors

    def aggregate(
        self,
        campaign_id: int,
        start: Optional[date] = None,
        end: Optional[date] = None
    ) -> CampaignAnalytics:
        """
        Compute campaign analytics, optionally within an inclusive date range.

        Raises:
            CampaignNotFound: Unknown campaign id
            ValueError: If start is after end
        """
        if start and end and start > end:
            raise ValueError("start must be on or before end")

        campaign = self.store.get_campaign(campaign_id)
        if not campaign:
            raise CampaignNotFound(f"Campaign {campaign_id} not found")

        ad_spend, ad_spend_entries = self.store.ad_spend_summary(campaign_id, start, end)

        return build_analytics(
            campaign,
            self.store.list_variation_sets(campaign_id),
            self.store.visitor_counts(campaign_id, start, end),
            self.store.event_counts(campaign_id, start, end),
            self.store.sale_payloads(campaign_id, start, end),
            ad_spend,
            ad_spend_entries,
            z_threshold=self.z_threshold,
            min_visitors=self.min_visitors,
            start=start,
            end=end
        )
