"""Public funnel endpoints: assignment, registration and event tracking.

These are called anonymously by the landing and watch pages. Failures come
back as typed errors (see FunnelError) and never leave a partial write.
"""
from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.orm import Session
from typing import Optional

from funnellab.api.deps import enforce_rate_limit, get_campaign_cache
from funnellab.config import get_settings
from funnellab.database import get_db
from funnellab.schemas.funnel import (
    CampaignPublic,
    ProgressRequest,
    ProgressResponse,
    RegisterRequest,
    ResolveResponse,
    TrackRequest,
    TrackResponse,
    VariationSetPublic,
)
from funnellab.services.assignment import AssignmentResolver
from funnellab.services.campaign_cache import CampaignCache
from funnellab.services.errors import CampaignNotFound
from funnellab.services.event_store import EventStore
from funnellab.services.recorder import EventRecorder

router = APIRouter(dependencies=[Depends(enforce_rate_limit)])
settings = get_settings()


def visitor_cookie_name(campaign_id: int) -> str:
    return f"fv_{campaign_id}"


@router.get("/funnel/c/{slug}", response_model=ResolveResponse)
def resolve_visitor(
    slug: str,
    request: Request,
    response: Response,
    token: Optional[str] = Query(None, max_length=64),
    utm_source: Optional[str] = Query(None, max_length=200),
    utm_medium: Optional[str] = Query(None, max_length=200),
    utm_campaign: Optional[str] = Query(None, max_length=200),
    utm_content: Optional[str] = Query(None, max_length=200),
    utm_term: Optional[str] = Query(None, max_length=200),
    db: Session = Depends(get_db),
    cache: Optional[CampaignCache] = Depends(get_campaign_cache)
):
    """
    Resolve the visitor's sticky variation set for a campaign.

    - Token comes from the `token` query parameter or the campaign cookie
    - First visits are assigned by weighted random choice and get a 90-day cookie
    - Every call records a page_view
    """
    campaign = EventStore(db).get_campaign_by_slug(slug)
    if not campaign:
        raise CampaignNotFound(f"Campaign '{slug}' not found")

    cookie_name = visitor_cookie_name(campaign.id)
    visitor_token = token or request.cookies.get(cookie_name)

    attribution = {
        "utm_source": utm_source,
        "utm_medium": utm_medium,
        "utm_campaign": utm_campaign,
        "utm_content": utm_content,
        "utm_term": utm_term,
        "referrer": request.headers.get("referer"),
    }

    assignment = AssignmentResolver(db, cache=cache).resolve(slug, visitor_token, attribution)

    response.set_cookie(
        key=cookie_name,
        value=assignment.token,
        max_age=settings.visitor_cookie_max_age_days * 24 * 60 * 60,
        httponly=False,  # read by the watch page script
        samesite="lax"
    )

    variation_set = assignment.variation_set
    return ResolveResponse(
        campaign=CampaignPublic.model_validate(assignment.campaign),
        variation_set=VariationSetPublic(
            id=variation_set.id,
            name=variation_set.name,
            optin_page_id=variation_set.optin_page_id,
            module_variant_ids=variation_set.module_variant_ids or {}
        ),
        visitor_token=assignment.token,
        new_visitor=assignment.created
    )


@router.post("/funnel/c/{slug}/register", response_model=TrackResponse)
def register_visitor(
    slug: str,
    register_request: RegisterRequest,
    db: Session = Depends(get_db)
):
    """Capture the visitor's email and record a registration."""
    event = EventRecorder(db).register(
        register_request.visitor_token,
        slug,
        register_request.email,
        register_request.first_name
    )
    return TrackResponse(event_id=event.id)


@router.post("/funnel/track", response_model=TrackResponse)
def track_event(
    track_request: TrackRequest,
    db: Session = Depends(get_db)
):
    """
    Record a funnel event for an assigned visitor.

    Repeated milestone events (play_25 .. play_100) are acknowledged with
    recorded=false instead of failing.
    """
    event = EventRecorder(db).record(
        track_request.visitor_token,
        track_request.campaign_slug,
        track_request.event_type,
        track_request.payload
    )
    if event is None:
        return TrackResponse(recorded=False)
    return TrackResponse(event_id=event.id)


@router.post("/funnel/progress", response_model=ProgressResponse)
def report_progress(
    progress_request: ProgressRequest,
    db: Session = Depends(get_db)
):
    """Accept a watch-progress poll; only new milestone crossings are stored."""
    events = EventRecorder(db).report_progress(
        progress_request.visitor_token,
        progress_request.campaign_slug,
        progress_request.percent,
        progress_request.watch_time_ms
    )
    return ProgressResponse(milestones=[event.event_type.value for event in events])
