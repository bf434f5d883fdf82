"""Pydantic schemas for request/response validation."""
from funnellab.schemas.analytics import CampaignAnalytics, CampaignTotals, DropOffPoint, VariantAnalytics
from funnellab.schemas.funnel import (
    ProgressRequest,
    ProgressResponse,
    RegisterRequest,
    ResolveResponse,
    TrackRequest,
    TrackResponse,
)

__all__ = [
    "CampaignAnalytics",
    "CampaignTotals",
    "DropOffPoint",
    "VariantAnalytics",
    "ProgressRequest",
    "ProgressResponse",
    "RegisterRequest",
    "ResolveResponse",
    "TrackRequest",
    "TrackResponse",
]
