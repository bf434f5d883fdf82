"""Analytics response schemas."""
from datetime import date
from pydantic import BaseModel, Field
from typing import List, Optional


class VariantAnalytics(BaseModel):
    """Funnel metrics for one variation set."""

    variation_set_id: int
    name: str
    weight: int
    active: bool
    is_control: bool = False

    # Distinct visitors assigned, and distinct visitors reaching each stage
    visitors: int = 0
    page_views: int = 0
    registrations: int = 0
    play_starts: int = 0
    play_25: int = 0
    play_50: int = 0
    play_75: int = 0
    play_100: int = 0
    cta_clicks: int = 0
    calls_booked: int = 0
    buyers: int = 0

    # Sale events and their summed amount (minor units)
    sales: int = 0
    revenue: int = 0

    # Percentages of visitors
    registration_rate: float = 0.0
    play_start_rate: float = 0.0
    cta_click_rate: float = 0.0
    call_booked_rate: float = 0.0
    sale_rate: float = 0.0

    # Registration conversion compared with the baseline
    confidence: str = "need_data"
    is_baseline: bool = False
    z_score: Optional[float] = None
    p_value: Optional[float] = None


class CampaignTotals(BaseModel):
    """Campaign-wide totals and cost metrics."""

    visitors: int = 0
    page_views: int = 0
    registrations: int = 0
    play_starts: int = 0
    cta_clicks: int = 0
    calls_booked: int = 0
    buyers: int = 0
    sales: int = 0
    revenue: int = 0
    registration_rate: float = 0.0

    ad_spend: int = 0
    ad_spend_entries: int = 0
    cost_per_registration: Optional[float] = Field(None, description="None when there are no registrations")
    cost_per_sale: Optional[float] = Field(None, description="None when there are no sales")
    roi: Optional[int] = Field(None, description="Revenue minus ad spend; None when no spend was recorded")


class CampaignAnalytics(BaseModel):
    """Per-variant breakdown plus campaign totals."""

    campaign_id: int
    campaign_slug: str
    campaign_name: str
    start: Optional[date] = None
    end: Optional[date] = None
    totals: CampaignTotals
    variations: List[VariantAnalytics]


class DropOffPoint(BaseModel):
    """Share of viewers still watching at an offset into the presentation."""

    time_seconds: int
    viewer_count: int
    still_watching_percent: float
