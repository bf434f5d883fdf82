"""Campaign and variation set models."""
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime

from funnellab.database import Base, JSONType


def utcnow() -> datetime:
    """Naive UTC timestamp used for every created_at column."""
    return datetime.utcnow()


class Campaign(Base):
    """A published funnel experiment reachable at /c/{slug}."""

    __tablename__ = "funnel_campaigns"

    id = Column(Integer, primary_key=True, autoincrement=True)
    slug = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text)
    active = Column(Boolean, default=True, nullable=False)

    # Watch page
    presentation_id = Column(Integer)
    cta_text = Column(String(200))
    cta_url = Column(Text)
    cta_appear_time = Column(Integer)  # seconds into the presentation

    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    variation_sets = relationship(
        "VariationSet",
        back_populates="campaign",
        order_by="VariationSet.id"
    )

    def __repr__(self):
        return f"<Campaign {self.slug} active={self.active}>"


class VariationSet(Base):
    """One treatment arm of a campaign with its randomization weight."""

    __tablename__ = "funnel_variation_sets"
    __table_args__ = (
        CheckConstraint("weight >= 1", name="ck_variation_sets_weight_positive"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    campaign_id = Column(Integer, ForeignKey("funnel_campaigns.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    optin_page_id = Column(Integer)
    module_variant_ids = Column(JSONType, default=dict)  # {"<module_id>": <variant_id>}
    weight = Column(Integer, default=1, nullable=False)
    active = Column(Boolean, default=True, nullable=False)
    is_control = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    campaign = relationship("Campaign", back_populates="variation_sets")

    def __repr__(self):
        return f"<VariationSet {self.id} weight={self.weight} active={self.active}>"
