"""Admin request/response schemas."""
from datetime import date, datetime
from pydantic import BaseModel, Field
from typing import Dict, Optional

from funnellab.schemas.funnel import EMAIL_PATTERN


class CampaignCreate(BaseModel):
    slug: str = Field(..., min_length=1, max_length=100, pattern=r"^[a-z0-9][a-z0-9-]*$")
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    presentation_id: Optional[int] = None
    cta_text: Optional[str] = Field(None, max_length=200)
    cta_url: Optional[str] = None
    cta_appear_time: Optional[int] = Field(None, ge=0)


class CampaignUpdate(BaseModel):
    """Slug is deliberately absent: it is immutable once traffic arrives."""

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    active: Optional[bool] = None
    presentation_id: Optional[int] = None
    cta_text: Optional[str] = Field(None, max_length=200)
    cta_url: Optional[str] = None
    cta_appear_time: Optional[int] = Field(None, ge=0)


class CampaignResponse(BaseModel):
    id: int
    slug: str
    name: str
    description: Optional[str] = None
    active: bool
    presentation_id: Optional[int] = None
    cta_text: Optional[str] = None
    cta_url: Optional[str] = None
    cta_appear_time: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class VariationSetCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    optin_page_id: Optional[int] = None
    module_variant_ids: Dict[str, int] = Field(default_factory=dict)
    weight: int = Field(1, ge=1)
    active: bool = True
    is_control: bool = False


class VariationSetUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    optin_page_id: Optional[int] = None
    module_variant_ids: Optional[Dict[str, int]] = None
    weight: Optional[int] = Field(None, ge=1)
    active: Optional[bool] = None
    is_control: Optional[bool] = None


class VariationSetResponse(BaseModel):
    id: int
    campaign_id: int
    name: str
    optin_page_id: Optional[int] = None
    module_variant_ids: Optional[Dict[str, int]] = None
    weight: int
    active: bool
    is_control: bool

    class Config:
        from_attributes = True


class AdSpendCreate(BaseModel):
    spend_date: date
    amount: int = Field(..., ge=0, description="Amount in minor currency units")
    currency: str = Field("gbp", min_length=3, max_length=3)
    platform: str = Field("meta", min_length=1, max_length=50)
    notes: Optional[str] = None


class AdSpendResponse(BaseModel):
    id: int
    campaign_id: int
    spend_date: date
    amount: int
    currency: str
    platform: str
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class RecordSaleRequest(BaseModel):
    """Sale captured elsewhere (checkout webhook or manual entry)."""

    email: str = Field(..., max_length=320, pattern=EMAIL_PATTERN)
    amount: int = Field(..., ge=0, strict=True, description="Amount in minor currency units")
    currency: str = Field("gbp", min_length=3, max_length=3)

    class Config:
        json_schema_extra = {
            "example": {
                "email": "jane@example.com",
                "amount": 9900,
                "currency": "gbp"
            }
        }
