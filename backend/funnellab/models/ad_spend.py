"""Ad spend model."""
from sqlalchemy import Column, Integer, String, Text, Date, DateTime, ForeignKey

from funnellab.database import Base
from funnellab.models.campaign import utcnow


class AdSpendEntry(Base):
    """Manually entered advertising spend for a campaign."""

    __tablename__ = "funnel_ad_spend"

    id = Column(Integer, primary_key=True, autoincrement=True)
    campaign_id = Column(Integer, ForeignKey("funnel_campaigns.id"), nullable=False, index=True)
    spend_date = Column(Date, nullable=False)
    amount = Column(Integer, nullable=False)  # minor currency units
    currency = Column(String(3), default="gbp", nullable=False)
    platform = Column(String(50), default="meta", nullable=False)
    notes = Column(Text)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<AdSpendEntry {self.spend_date} {self.amount} {self.currency}>"
