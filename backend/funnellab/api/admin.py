"""Admin endpoints: campaigns, analytics, drop-off, exports and ad spend."""
from datetime import date
from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session
from typing import List, Optional

from funnellab.api.deps import get_campaign_cache
from funnellab.config import get_settings
from funnellab.database import get_db
from funnellab.middleware.auth import require_admin
from funnellab.middleware.logging import get_logger
from funnellab.models import Campaign
from funnellab.schemas.admin import (
    AdSpendCreate,
    AdSpendResponse,
    CampaignCreate,
    CampaignResponse,
    CampaignUpdate,
    RecordSaleRequest,
    VariationSetCreate,
    VariationSetResponse,
    VariationSetUpdate,
)
from funnellab.schemas.analytics import CampaignAnalytics, DropOffPoint
from funnellab.schemas.funnel import TrackResponse
from funnellab.services.aggregator import Aggregator
from funnellab.services.campaign_cache import CampaignCache
from funnellab.services.campaigns import CampaignService
from funnellab.services.drop_off import DropOffCurveBuilder
from funnellab.services.errors import CampaignNotFound
from funnellab.services.event_store import EventStore
from funnellab.services.export import analytics_to_csv, events_to_csv
from funnellab.services.recorder import EventRecorder

router = APIRouter(prefix="/admin/funnels", dependencies=[Depends(require_admin)])
settings = get_settings()
logger = get_logger()


def get_campaign_or_404(db: Session, campaign_id: int) -> Campaign:
    campaign = EventStore(db).get_campaign(campaign_id)
    if not campaign:
        raise CampaignNotFound(f"Campaign {campaign_id} not found")
    return campaign


def build_analytics(db: Session, campaign_id: int, start: Optional[date], end: Optional[date]) -> CampaignAnalytics:
    aggregator = Aggregator(
        db,
        z_threshold=settings.significance_z_threshold,
        min_visitors=settings.significance_min_visitors
    )
    try:
        return aggregator.aggregate(campaign_id, start, end)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


# ==========================================
# Campaigns and variation sets
# ==========================================

@router.get("/campaigns", response_model=List[CampaignResponse])
def list_campaigns(db: Session = Depends(get_db)):
    return EventStore(db).list_campaigns()


@router.post("/campaigns", response_model=CampaignResponse)
def create_campaign(
    campaign_request: CampaignCreate,
    db: Session = Depends(get_db),
    cache: Optional[CampaignCache] = Depends(get_campaign_cache)
):
    fields = campaign_request.model_dump(exclude={"slug", "name"})
    return CampaignService(db, cache).create_campaign(campaign_request.slug, campaign_request.name, **fields)


@router.patch("/campaigns/{campaign_id}", response_model=CampaignResponse)
def update_campaign(
    campaign_id: int,
    campaign_request: CampaignUpdate,
    db: Session = Depends(get_db),
    cache: Optional[CampaignCache] = Depends(get_campaign_cache)
):
    """Edit or deactivate a campaign. Campaigns with traffic are never deleted."""
    changes = campaign_request.model_dump(exclude_unset=True)
    return CampaignService(db, cache).update_campaign(campaign_id, changes)


@router.get("/campaigns/{campaign_id}/variation-sets", response_model=List[VariationSetResponse])
def list_variation_sets(campaign_id: int, db: Session = Depends(get_db)):
    get_campaign_or_404(db, campaign_id)
    return EventStore(db).list_variation_sets(campaign_id)


@router.post("/campaigns/{campaign_id}/variation-sets", response_model=VariationSetResponse)
def create_variation_set(
    campaign_id: int,
    variation_request: VariationSetCreate,
    db: Session = Depends(get_db),
    cache: Optional[CampaignCache] = Depends(get_campaign_cache)
):
    fields = variation_request.model_dump(exclude={"name", "weight"})
    return CampaignService(db, cache).add_variation_set(
        campaign_id,
        variation_request.name,
        weight=variation_request.weight,
        **fields
    )


@router.patch("/variation-sets/{variation_set_id}", response_model=VariationSetResponse)
def update_variation_set(
    variation_set_id: int,
    variation_request: VariationSetUpdate,
    db: Session = Depends(get_db),
    cache: Optional[CampaignCache] = Depends(get_campaign_cache)
):
    """Change weights or deactivate an arm. Existing visitors keep their assignment."""
    changes = variation_request.model_dump(exclude_unset=True)
    return CampaignService(db, cache).update_variation_set(variation_set_id, changes)


# ==========================================
# Analytics
# ==========================================

@router.get("/campaigns/{campaign_id}/analytics", response_model=CampaignAnalytics)
def get_campaign_analytics(
    campaign_id: int,
    start: Optional[date] = Query(None, description="First day included"),
    end: Optional[date] = Query(None, description="Last day included"),
    db: Session = Depends(get_db)
):
    """
    Per-variant funnel counts, rates, revenue and significance verdicts,
    plus campaign-wide cost metrics. Recomputed from the event log.
    """
    return build_analytics(db, campaign_id, start, end)


@router.get("/campaigns/{campaign_id}/drop-off", response_model=List[DropOffPoint])
def get_drop_off(
    campaign_id: int,
    bucket_seconds: Optional[int] = Query(None, gt=0, le=3600),
    db: Session = Depends(get_db)
):
    """Percentage of viewers still watching at each time bucket."""
    builder = DropOffCurveBuilder(db, default_bucket_seconds=settings.drop_off_bucket_seconds)
    return builder.drop_off(campaign_id, bucket_seconds)


@router.get("/campaigns/{campaign_id}/export.csv")
def export_analytics_csv(
    campaign_id: int,
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    db: Session = Depends(get_db)
):
    analytics = build_analytics(db, campaign_id, start, end)
    return Response(
        content=analytics_to_csv(analytics),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=funnel-{campaign_id}-analytics.csv"}
    )


@router.get("/campaigns/{campaign_id}/events.csv")
def export_events_csv(campaign_id: int, db: Session = Depends(get_db)):
    get_campaign_or_404(db, campaign_id)
    rows = EventStore(db).export_rows(campaign_id)
    return Response(
        content=events_to_csv(rows),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=funnel-{campaign_id}-export.csv"}
    )


# ==========================================
# Sales and ad spend
# ==========================================

@router.post("/campaigns/{campaign_id}/record-sale", response_model=TrackResponse)
def record_sale(
    campaign_id: int,
    sale_request: RecordSaleRequest,
    db: Session = Depends(get_db)
):
    """Attribute a sale captured elsewhere to the visitor who registered with the email."""
    campaign = get_campaign_or_404(db, campaign_id)
    event = EventRecorder(db).record_sale_for_email(
        campaign.slug,
        sale_request.email,
        sale_request.amount,
        sale_request.currency
    )
    return TrackResponse(event_id=event.id)


@router.get("/campaigns/{campaign_id}/ad-spend", response_model=List[AdSpendResponse])
def list_ad_spend(campaign_id: int, db: Session = Depends(get_db)):
    get_campaign_or_404(db, campaign_id)
    return EventStore(db).list_ad_spend(campaign_id)


@router.post("/campaigns/{campaign_id}/ad-spend", response_model=AdSpendResponse)
def add_ad_spend(
    campaign_id: int,
    spend_request: AdSpendCreate,
    db: Session = Depends(get_db)
):
    get_campaign_or_404(db, campaign_id)
    entry = EventStore(db).add_ad_spend(
        campaign_id,
        spend_request.spend_date,
        spend_request.amount,
        currency=spend_request.currency.lower(),
        platform=spend_request.platform,
        notes=spend_request.notes
    )
    logger.info("ad_spend_added", campaign_id=campaign_id, amount=entry.amount, spend_date=str(entry.spend_date))
    return entry


@router.delete("/ad-spend/{entry_id}")
def delete_ad_spend(entry_id: int, db: Session = Depends(get_db)):
    if not EventStore(db).delete_ad_spend(entry_id):
        raise HTTPException(status_code=404, detail="Ad spend entry not found")
    return {"status": "success"}
