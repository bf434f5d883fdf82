"""Funnel event model."""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum as SQLEnum, Index
from sqlalchemy.orm import relationship
import enum

from funnellab.database import Base, JSONType
from funnellab.models.campaign import utcnow


class EventType(str, enum.Enum):
    """Closed set of funnel event types."""
    PAGE_VIEW = "page_view"
    REGISTRATION = "registration"
    PLAY_START = "play_start"
    PLAY_25 = "play_25"
    PLAY_50 = "play_50"
    PLAY_75 = "play_75"
    PLAY_100 = "play_100"
    CTA_CLICK = "cta_click"
    CALL_BOOKED = "call_booked"
    SALE = "sale"
    PAGE_LEAVE = "page_leave"


# Watch-progress milestones, in threshold order
MILESTONES = {
    EventType.PLAY_25: 25,
    EventType.PLAY_50: 50,
    EventType.PLAY_75: 75,
    EventType.PLAY_100: 100,
}


class Event(Base):
    """Immutable fact about a visitor's progress through the funnel."""

    __tablename__ = "funnel_events"
    __table_args__ = (
        Index("ix_events_campaign_type", "campaign_id", "event_type"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    visitor_id = Column(Integer, ForeignKey("funnel_visitors.id"), nullable=False, index=True)
    campaign_id = Column(Integer, ForeignKey("funnel_campaigns.id"), nullable=False)
    # Copied from the visitor at write time
    variation_set_id = Column(Integer, ForeignKey("funnel_variation_sets.id"), nullable=False)
    event_type = Column(
        SQLEnum(
            EventType,
            native_enum=False,
            length=32,
            values_callable=lambda enum_cls: [member.value for member in enum_cls]
        ),
        nullable=False
    )
    payload = Column(JSONType)
    # "<visitor_id>:<event_type>" for at-most-once events, NULL otherwise
    dedupe_key = Column(String(80), unique=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    # Relationships
    visitor = relationship("Visitor", back_populates="events")

    def __repr__(self):
        return f"<Event {self.id} type={self.event_type.value}>"
