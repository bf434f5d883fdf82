"""CSV serialization of campaign analytics and raw events."""
import csv
import io
import json
from typing import List, Tuple

from funnellab.models import Event, Visitor
from funnellab.schemas.analytics import CampaignAnalytics

METRIC_COLUMNS = [
    "variation_set_id",
    "name",
    "weight",
    "active",
    "visitors",
    "page_views",
    "registrations",
    "registration_rate",
    "play_starts",
    "play_start_rate",
    "play_25",
    "play_50",
    "play_75",
    "play_100",
    "cta_clicks",
    "cta_click_rate",
    "calls_booked",
    "call_booked_rate",
    "buyers",
    "sales",
    "sale_rate",
    "revenue",
    "confidence",
    "is_baseline",
    "z_score",
    "p_value",
]

EVENT_COLUMNS = [
    "visitor_token",
    "email",
    "first_name",
    "variation_set_id",
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_content",
    "utm_term",
    "event_type",
    "event_data",
    "event_date",
]


def _blank(value):
    return "" if value is None else value


def analytics_to_csv(analytics: CampaignAnalytics) -> str:
    """One row per variation set followed by a campaign totals row."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(METRIC_COLUMNS)

    for variant in analytics.variations:
        data = variant.model_dump()
        writer.writerow([_blank(data.get(column)) for column in METRIC_COLUMNS])

    totals = analytics.totals
    writer.writerow([])
    writer.writerow(["ad_spend", "ad_spend_entries", "cost_per_registration", "cost_per_sale", "roi", "revenue"])
    writer.writerow([
        totals.ad_spend,
        totals.ad_spend_entries,
        _blank(totals.cost_per_registration),
        _blank(totals.cost_per_sale),
        _blank(totals.roi),
        totals.revenue,
    ])
    return buffer.getvalue()


def events_to_csv(rows: List[Tuple[Event, Visitor]]) -> str:
    """Raw event log joined with visitor identity and attribution."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(EVENT_COLUMNS)

    for event, visitor in rows:
        writer.writerow([
            visitor.token,
            _blank(visitor.email),
            _blank(visitor.first_name),
            event.variation_set_id,
            _blank(visitor.utm_source),
            _blank(visitor.utm_medium),
            _blank(visitor.utm_campaign),
            _blank(visitor.utm_content),
            _blank(visitor.utm_term),
            event.event_type.value,
            json.dumps(event.payload or {}, sort_keys=True),
            event.created_at.isoformat(),
        ])
    return buffer.getvalue()
