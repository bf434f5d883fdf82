"""Event payloads as a tagged union keyed by event type."""
from pydantic import BaseModel, Field, TypeAdapter, ValidationInfo, field_validator
from typing import Annotated, Any, Dict, Literal, Optional, Union

from funnellab.models.event import EventType, MILESTONES


class _Payload(BaseModel):
    class Config:
        extra = "forbid"


class SalePayload(_Payload):
    """Sale captured by the payment provider, amount in minor units."""

    event_type: Literal["sale"]
    amount: int = Field(..., ge=0, strict=True, description="Amount in minor currency units")
    currency: str = Field("gbp", min_length=3, max_length=3)
    email: Optional[str] = Field(None, max_length=320)


class MilestonePayload(_Payload):
    """Watch-progress milestone crossing."""

    event_type: Literal["play_25", "play_50", "play_75", "play_100"]
    watch_time_ms: Optional[int] = Field(None, ge=0)
    percent: Optional[float] = Field(None, ge=0, le=100)

    @field_validator("percent")
    @classmethod
    def validate_percent(cls, v, info: ValidationInfo):
        # A milestone cannot be reported before its threshold
        event_type = info.data.get("event_type")
        if v is not None and event_type and v < MILESTONES[EventType(event_type)]:
            raise ValueError(f"percent must be at least {MILESTONES[EventType(event_type)]} for {event_type}")
        return v


class PlayStartPayload(_Payload):
    event_type: Literal["play_start"]
    watch_time_ms: Optional[int] = Field(None, ge=0)


class PageLeavePayload(_Payload):
    event_type: Literal["page_leave"]
    time_on_page_ms: Optional[int] = Field(None, ge=0)


class EmptyPayload(_Payload):
    """Event types that carry no data."""

    event_type: Literal["page_view", "registration", "cta_click", "call_booked"]


EventPayload = Annotated[
    Union[SalePayload, MilestonePayload, PlayStartPayload, PageLeavePayload, EmptyPayload],
    Field(discriminator="event_type")
]

payload_adapter = TypeAdapter(EventPayload)


def parse_payload(event_type: str, data: Optional[Dict[str, Any]]) -> EventPayload:
    """
    Validate a raw payload against the shape its event type requires.

    Raises:
        pydantic.ValidationError: If the payload does not match
    """
    body = dict(data or {})
    body["event_type"] = event_type
    return payload_adapter.validate_python(body)


def payload_to_json(payload: EventPayload) -> Optional[Dict[str, Any]]:
    """Storable form of a payload; None when it carries no data."""
    data = payload.model_dump(exclude={"event_type"}, exclude_none=True)
    return data or None
