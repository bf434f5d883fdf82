"""Event recorder: validated, append-only funnel event writes."""
from typing import Any, Dict, List, Optional, Tuple

import structlog
from pydantic import ValidationError
from sqlalchemy.orm import Session

from funnellab.models import Campaign, Event, EventType, MILESTONES, Visitor
from funnellab.schemas.payloads import parse_payload, payload_to_json
from funnellab.services.errors import (
    CampaignNotFound,
    InvalidEventType,
    InvalidPayload,
    UnknownVisitor,
)
from funnellab.services.event_store import EventStore

logger = structlog.get_logger()


def parse_event_type(event_type: Any) -> EventType:
    """
    Map a raw event type onto the closed enumeration.

    Raises:
        InvalidEventType: For anything outside the enumeration
    """
    if isinstance(event_type, EventType):
        return event_type
    try:
        return EventType(event_type)
    except ValueError:
        raise InvalidEventType(f"Unknown event type: {event_type!r}")


def validate_payload(event_type: EventType, payload: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Validate a payload for its event type and return its storable form.

    Raises:
        InvalidPayload: If the payload shape does not match the event type
    """
    if payload is not None and not isinstance(payload, dict):
        raise InvalidPayload(f"Payload for {event_type.value} must be an object")
    try:
        parsed = parse_payload(event_type.value, payload)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'][1:]) or 'payload'}: {error['msg']}"
            for error in e.errors()
        )
        raise InvalidPayload(f"Invalid {event_type.value} payload: {errors}")
    return payload_to_json(parsed)


class EventRecorder:
    """Records funnel events for visitors that already have an assignment."""

    def __init__(self, db: Session):
        self.db = db
        self.store = EventStore(db)

    def record(
        self,
        visitor_token: str,
        campaign_slug: str,
        event_type: Any,
        payload: Optional[Dict[str, Any]] = None
    ) -> Optional[Event]:
        """
        Record a single event.

        Milestone events (play_25 .. play_100) are stored at most once per
        visitor; a repeated milestone returns None instead of failing, since
        clients retry on flaky networks.

        Raises:
            InvalidEventType: Event type outside the enumeration
            CampaignNotFound: Unknown campaign slug
            UnknownVisitor: Token has no assignment in the campaign
            InvalidPayload: Payload shape does not match the event type
        """
        event_type = parse_event_type(event_type)
        _, visitor = self._lookup(campaign_slug, visitor_token)
        data = validate_payload(event_type, payload)

        try:
            if event_type in MILESTONES:
                event = self.store.append_event_once(visitor, event_type, data)
            else:
                event = self.store.append_event(visitor, event_type, data)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        if event is None:
            logger.info(
                "milestone_deduplicated",
                visitor_id=visitor.id,
                event_type=event_type.value
            )
            return None

        logger.info(
            "event_recorded",
            event_id=event.id,
            visitor_id=visitor.id,
            variation_set_id=event.variation_set_id,
            event_type=event_type.value
        )
        return event

    def report_progress(
        self,
        visitor_token: str,
        campaign_slug: str,
        percent: float,
        watch_time_ms: Optional[int] = None
    ) -> List[Event]:
        """
        Accept a watch-progress poll and persist only milestone crossings.

        Clients may report progress many times per second. Each milestone
        whose threshold is <= `percent` is stored once per visitor; reports
        that cross nothing new write nothing.

        Returns:
            Milestone events newly stored by this call
        """
        if percent is None or not 0 <= percent <= 100:
            raise InvalidPayload("percent must be between 0 and 100")
        if watch_time_ms is not None and watch_time_ms < 0:
            raise InvalidPayload("watch_time_ms must be non-negative")

        _, visitor = self._lookup(campaign_slug, visitor_token)

        crossed = [
            milestone for milestone, threshold in MILESTONES.items()
            if percent >= threshold
        ]
        if not crossed:
            return []

        already = self.store.recorded_event_types(visitor.id, crossed)
        pending = [milestone for milestone in crossed if milestone not in already]
        if not pending:
            return []

        recorded = []
        try:
            for milestone in pending:
                # Each milestone records its own threshold, not the reported percent
                data = {"percent": MILESTONES[milestone]}
                if watch_time_ms is not None:
                    data["watch_time_ms"] = watch_time_ms
                event = self.store.append_event_once(visitor, milestone, data)
                if event is not None:
                    recorded.append(event)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        if recorded:
            logger.info(
                "milestones_recorded",
                visitor_id=visitor.id,
                milestones=[event.event_type.value for event in recorded],
                percent=percent
            )
        return recorded

    def register(
        self,
        visitor_token: str,
        campaign_slug: str,
        email: str,
        first_name: Optional[str] = None
    ) -> Event:
        """Capture the visitor's identity and record a registration."""
        email = (email or "").strip().lower()
        if "@" not in email:
            raise InvalidPayload("A valid email is required")

        _, visitor = self._lookup(campaign_slug, visitor_token)

        try:
            visitor.email = email
            if first_name:
                visitor.first_name = first_name.strip()
            event = self.store.append_event(visitor, EventType.REGISTRATION)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "visitor_registered",
            visitor_id=visitor.id,
            variation_set_id=visitor.variation_set_id
        )
        return event

    def record_sale_for_email(
        self,
        campaign_slug: str,
        email: str,
        amount: int,
        currency: str = "gbp"
    ) -> Event:
        """
        Attribute an externally captured sale to the campaign visitor who
        registered with `email` (most recent registration wins).

        Raises:
            CampaignNotFound: Unknown campaign slug
            UnknownVisitor: No visitor in the campaign registered with the email
            InvalidPayload: Negative or non-integer amount
        """
        campaign = self.store.get_campaign_by_slug(campaign_slug, active_only=False)
        if not campaign:
            raise CampaignNotFound(f"Campaign '{campaign_slug}' not found")

        visitor = self.store.find_visitor_by_email(campaign.id, (email or "").strip())
        if not visitor:
            raise UnknownVisitor("No visitor found with that email in this campaign")

        data = validate_payload(
            EventType.SALE,
            {"amount": amount, "currency": (currency or "gbp").lower(), "email": visitor.email}
        )

        try:
            event = self.store.append_event(visitor, EventType.SALE, data)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "sale_recorded",
            visitor_id=visitor.id,
            variation_set_id=visitor.variation_set_id,
            amount=data["amount"],
            currency=data["currency"]
        )
        return event

    def _lookup(self, campaign_slug: str, visitor_token: str) -> Tuple[Campaign, Visitor]:
        # Deactivated campaigns keep accepting events from visitors already in them
        campaign = self.store.get_campaign_by_slug(campaign_slug, active_only=False)
        if not campaign:
            raise CampaignNotFound(f"Campaign '{campaign_slug}' not found")

        visitor = self.store.get_visitor(campaign.id, visitor_token) if visitor_token else None
        if not visitor:
            raise UnknownVisitor("Visitor has no assignment in this campaign")

        return campaign, visitor
