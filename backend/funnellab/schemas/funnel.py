"""Public funnel request/response schemas."""
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class CampaignPublic(BaseModel):
    """Campaign fields the landing and watch pages need."""

    id: int
    name: str
    slug: str
    cta_text: Optional[str] = None
    cta_url: Optional[str] = None
    cta_appear_time: Optional[int] = None
    presentation_id: Optional[int] = None

    class Config:
        from_attributes = True


class VariationSetPublic(BaseModel):
    id: int
    name: str
    optin_page_id: Optional[int] = None
    module_variant_ids: Dict[str, int] = Field(default_factory=dict)

    class Config:
        from_attributes = True


class ResolveResponse(BaseModel):
    """Sticky assignment returned to the landing page."""

    campaign: CampaignPublic
    variation_set: VariationSetPublic
    visitor_token: str
    new_visitor: bool

    class Config:
        json_schema_extra = {
            "example": {
                "campaign": {"id": 1, "name": "Launch", "slug": "launch", "cta_text": "Book a call"},
                "variation_set": {"id": 3, "name": "Headline B", "optin_page_id": 7, "module_variant_ids": {}},
                "visitor_token": "5f0c8a52-2f1e-4b8e-9d43-0f4a2f0b9d11",
                "new_visitor": True
            }
        }


class RegisterRequest(BaseModel):
    """Email capture on the opt-in page."""

    visitor_token: str = Field(..., min_length=1, max_length=64)
    email: str = Field(..., max_length=320, pattern=EMAIL_PATTERN)
    first_name: Optional[str] = Field(None, max_length=200)


class TrackRequest(BaseModel):
    """Funnel event reported by the client."""

    visitor_token: str = Field(..., min_length=1, max_length=64)
    campaign_slug: str = Field(..., min_length=1, max_length=100)
    event_type: str = Field(..., description="One of the funnel event types")
    payload: Optional[Dict[str, Any]] = Field(None, description="Type-specific event data")

    class Config:
        json_schema_extra = {
            "example": {
                "visitor_token": "5f0c8a52-2f1e-4b8e-9d43-0f4a2f0b9d11",
                "campaign_slug": "launch",
                "event_type": "play_50",
                "payload": {"watch_time_ms": 615000, "percent": 50}
            }
        }


class ProgressRequest(BaseModel):
    """Continuous watch-progress poll; only milestone crossings are stored."""

    visitor_token: str = Field(..., min_length=1, max_length=64)
    campaign_slug: str = Field(..., min_length=1, max_length=100)
    percent: float = Field(..., ge=0, le=100)
    watch_time_ms: Optional[int] = Field(None, ge=0)


class TrackResponse(BaseModel):
    status: str = Field(default="success")
    recorded: bool = Field(default=True, description="False when a repeated milestone was ignored")
    event_id: Optional[int] = None


class ProgressResponse(BaseModel):
    status: str = Field(default="success")
    milestones: List[str] = Field(default_factory=list, description="Milestones newly recorded by this report")
