"""Database models."""
from funnellab.models.campaign import Campaign, VariationSet
from funnellab.models.visitor import Visitor
from funnellab.models.event import Event, EventType, MILESTONES
from funnellab.models.ad_spend import AdSpendEntry

__all__ = ["Campaign", "VariationSet", "Visitor", "Event", "EventType", "MILESTONES", "AdSpendEntry"]
