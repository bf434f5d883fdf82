"""Visitor model."""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from funnellab.database import Base
from funnellab.models.campaign import utcnow


class Visitor(Base):
    """Anonymous session bound to one token and one immutable assignment."""

    __tablename__ = "funnel_visitors"
    __table_args__ = (
        # One assignment per (campaign, token); insert-if-absent relies on it
        UniqueConstraint("campaign_id", "token", name="uq_visitors_campaign_token"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    campaign_id = Column(Integer, ForeignKey("funnel_campaigns.id"), nullable=False)
    variation_set_id = Column(Integer, ForeignKey("funnel_variation_sets.id"), nullable=False, index=True)
    token = Column(String(64), nullable=False)

    # Identity, captured on registration
    email = Column(String(320), index=True)
    first_name = Column(String(200))

    # Attribution
    utm_source = Column(String(200))
    utm_medium = Column(String(200))
    utm_campaign = Column(String(200))
    utm_content = Column(String(200))
    utm_term = Column(String(200))
    referrer = Column(Text)

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    # Relationships
    variation_set = relationship("VariationSet")
    events = relationship("Event", back_populates="visitor", order_by="Event.id")

    def __repr__(self):
        return f"<Visitor {self.token} set={self.variation_set_id}>"
