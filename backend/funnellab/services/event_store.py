"""Event store: data access for campaigns, visitors, events and ad spend.

Visitors and events are append-only. The two at-most-once guarantees of the
engine, one visitor per (campaign, token) and one milestone event per
visitor, are both enforced by unique constraints and written through
`insert_if_absent`, never through application-level locks.
"""
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from sqlalchemy import func, distinct, insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from funnellab.models import AdSpendEntry, Campaign, Event, EventType, VariationSet, Visitor
from funnellab.services.errors import AssignmentConflict


def window_bounds(start: Optional[date], end: Optional[date]) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Convert an inclusive date range into [start, end) datetimes."""
    start_dt = datetime.combine(start, time.min) if start else None
    end_dt = datetime.combine(end + timedelta(days=1), time.min) if end else None
    return start_dt, end_dt


class EventStore:
    """Persistence operations used by the funnel engine."""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Atomic insert-if-absent
    # ------------------------------------------------------------------

    def insert_if_absent(self, model, values: Dict, conflict_columns: Sequence[str]) -> bool:
        """
        Insert a row unless one already exists for `conflict_columns`.

        Uses INSERT ... ON CONFLICT DO NOTHING on PostgreSQL and SQLite, and a
        savepoint that swallows the unique violation on other backends.

        Returns:
            True if this call inserted the row, False if another row won.
        """
        table = model.__table__
        dialect = self.db.get_bind().dialect.name

        if dialect == "postgresql":
            stmt = pg_insert(table).values(**values).on_conflict_do_nothing(
                index_elements=list(conflict_columns)
            )
        elif dialect == "sqlite":
            stmt = sqlite_insert(table).values(**values).on_conflict_do_nothing(
                index_elements=list(conflict_columns)
            )
        else:
            try:
                with self.db.begin_nested():
                    self.db.execute(insert(table).values(**values))
                return True
            except IntegrityError:
                return False

        result = self.db.execute(stmt)
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Campaigns and variation sets
    # ------------------------------------------------------------------

    def get_campaign_by_slug(self, slug: str, active_only: bool = True) -> Optional[Campaign]:
        """Get campaign by its public slug (case-insensitive)."""
        query = self.db.query(Campaign).filter(Campaign.slug == slug.lower())
        if active_only:
            query = query.filter(Campaign.active == True)
        return query.first()

    def get_campaign(self, campaign_id: int) -> Optional[Campaign]:
        return self.db.query(Campaign).filter(Campaign.id == campaign_id).first()

    def list_campaigns(self) -> List[Campaign]:
        return self.db.query(Campaign).order_by(Campaign.created_at.desc(), Campaign.id.desc()).all()

    def list_variation_sets(self, campaign_id: int, active_only: bool = False) -> List[VariationSet]:
        query = self.db.query(VariationSet).filter(VariationSet.campaign_id == campaign_id)
        if active_only:
            query = query.filter(VariationSet.active == True)
        return query.order_by(VariationSet.id.asc()).all()

    def get_variation_set(self, variation_set_id: int) -> Optional[VariationSet]:
        return self.db.query(VariationSet).filter(VariationSet.id == variation_set_id).first()

    # ------------------------------------------------------------------
    # Visitors
    # ------------------------------------------------------------------

    def get_visitor(self, campaign_id: int, token: str) -> Optional[Visitor]:
        return self.db.query(Visitor).filter(
            Visitor.campaign_id == campaign_id,
            Visitor.token == token
        ).first()

    def find_visitor_by_email(self, campaign_id: int, email: str) -> Optional[Visitor]:
        """Most recent visitor in the campaign registered with `email`."""
        return self.db.query(Visitor).filter(
            Visitor.campaign_id == campaign_id,
            Visitor.email == email.lower()
        ).order_by(Visitor.created_at.desc(), Visitor.id.desc()).first()

    def insert_visitor_if_absent(
        self,
        campaign_id: int,
        token: str,
        variation_set_id: int,
        attribution: Optional[Dict[str, Optional[str]]] = None
    ) -> Visitor:
        """
        Create the visitor for (campaign, token) unless it already exists.

        Raises:
            AssignmentConflict: If a concurrent request inserted the same
                (campaign, token) first. The caller re-reads the winner.
        """
        values = {
            "campaign_id": campaign_id,
            "token": token,
            "variation_set_id": variation_set_id,
        }
        values.update(attribution or {})

        if not self.insert_if_absent(Visitor, values, ("campaign_id", "token")):
            raise AssignmentConflict(f"Visitor {token} already assigned in campaign {campaign_id}")

        return self.get_visitor(campaign_id, token)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def append_event(
        self,
        visitor: Visitor,
        event_type: EventType,
        payload: Optional[Dict] = None
    ) -> Event:
        """Append an event, copying the visitor's variation set onto it."""
        event = Event(
            visitor_id=visitor.id,
            campaign_id=visitor.campaign_id,
            variation_set_id=visitor.variation_set_id,
            event_type=event_type,
            payload=payload
        )
        self.db.add(event)
        self.db.flush()
        return event

    def append_event_once(
        self,
        visitor: Visitor,
        event_type: EventType,
        payload: Optional[Dict] = None
    ) -> Optional[Event]:
        """
        Append an event at most once per (visitor, event type).

        Returns:
            The stored event, or None if the visitor already has one.
        """
        dedupe_key = f"{visitor.id}:{event_type.value}"
        inserted = self.insert_if_absent(
            Event,
            {
                "visitor_id": visitor.id,
                "campaign_id": visitor.campaign_id,
                "variation_set_id": visitor.variation_set_id,
                "event_type": event_type,
                "payload": payload,
                "dedupe_key": dedupe_key,
            },
            ("dedupe_key",)
        )
        if not inserted:
            return None
        return self.db.query(Event).filter(Event.dedupe_key == dedupe_key).first()

    def recorded_event_types(self, visitor_id: int, event_types: Iterable[EventType]) -> Set[EventType]:
        """Which of `event_types` the visitor already has."""
        rows = self.db.query(Event.event_type).filter(
            Event.visitor_id == visitor_id,
            Event.event_type.in_(list(event_types))
        ).distinct().all()
        return {EventType(event_type) for (event_type,) in rows}

    def _windowed(self, query, column, start: Optional[date], end: Optional[date]):
        start_dt, end_dt = window_bounds(start, end)
        if start_dt is not None:
            query = query.filter(column >= start_dt)
        if end_dt is not None:
            query = query.filter(column < end_dt)
        return query

    def _cohort_events(self, query, start: Optional[date], end: Optional[date]):
        """
        Restrict an Event query to the window's cohort: events created in the
        window by visitors who also arrived in it. Stage counts are then a
        subset of `visitor_counts` for the same window.
        """
        if start is None and end is None:
            return query
        query = query.join(Visitor, Event.visitor_id == Visitor.id)
        query = self._windowed(query, Visitor.created_at, start, end)
        return self._windowed(query, Event.created_at, start, end)

    def visitor_counts(
        self,
        campaign_id: int,
        start: Optional[date] = None,
        end: Optional[date] = None
    ) -> Dict[int, int]:
        """Distinct visitors per variation set."""
        query = self.db.query(
            Visitor.variation_set_id,
            func.count(Visitor.id)
        ).filter(Visitor.campaign_id == campaign_id)
        query = self._windowed(query, Visitor.created_at, start, end)
        rows = query.group_by(Visitor.variation_set_id).all()
        return {variation_set_id: count for variation_set_id, count in rows}

    def event_counts(
        self,
        campaign_id: int,
        start: Optional[date] = None,
        end: Optional[date] = None
    ) -> Dict[Tuple[int, EventType], Tuple[int, int]]:
        """
        Event totals per (variation set, event type).

        Returns:
            Mapping to (event count, distinct visitor count)
        """
        query = self.db.query(
            Event.variation_set_id,
            Event.event_type,
            func.count(Event.id),
            func.count(distinct(Event.visitor_id))
        ).filter(Event.campaign_id == campaign_id)
        query = self._cohort_events(query, start, end)
        rows = query.group_by(Event.variation_set_id, Event.event_type).all()
        return {
            (variation_set_id, EventType(event_type)): (events, visitors)
            for variation_set_id, event_type, events, visitors in rows
        }

    def sale_payloads(
        self,
        campaign_id: int,
        start: Optional[date] = None,
        end: Optional[date] = None
    ) -> List[Tuple[int, Optional[Dict]]]:
        """(variation set, payload) for every sale event."""
        query = self.db.query(Event.variation_set_id, Event.payload).filter(
            Event.campaign_id == campaign_id,
            Event.event_type == EventType.SALE
        )
        query = self._cohort_events(query, start, end)
        return [(variation_set_id, payload) for variation_set_id, payload in query.all()]

    def watch_events(self, campaign_id: int, event_types: Iterable[EventType]) -> List[Tuple[int, EventType, Optional[Dict]]]:
        """(visitor, type, payload) for the given watch event types."""
        rows = self.db.query(Event.visitor_id, Event.event_type, Event.payload).filter(
            Event.campaign_id == campaign_id,
            Event.event_type.in_(list(event_types))
        ).all()
        return [(visitor_id, EventType(event_type), payload) for visitor_id, event_type, payload in rows]

    def export_rows(self, campaign_id: int) -> List[Tuple[Event, Visitor]]:
        """Every event of the campaign joined with its visitor, oldest first."""
        return self.db.query(Event, Visitor).join(
            Visitor, Event.visitor_id == Visitor.id
        ).filter(
            Event.campaign_id == campaign_id
        ).order_by(Event.created_at.asc(), Event.id.asc()).all()

    # ------------------------------------------------------------------
    # Ad spend
    # ------------------------------------------------------------------

    def ad_spend_summary(
        self,
        campaign_id: int,
        start: Optional[date] = None,
        end: Optional[date] = None
    ) -> Tuple[int, int]:
        """
        Ad spend for the campaign within the inclusive date window.

        Returns:
            Tuple of (total amount in minor units, number of entries)
        """
        query = self.db.query(
            func.coalesce(func.sum(AdSpendEntry.amount), 0),
            func.count(AdSpendEntry.id)
        ).filter(AdSpendEntry.campaign_id == campaign_id)
        if start is not None:
            query = query.filter(AdSpendEntry.spend_date >= start)
        if end is not None:
            query = query.filter(AdSpendEntry.spend_date <= end)
        total, entries = query.one()
        return int(total or 0), int(entries or 0)

    def list_ad_spend(self, campaign_id: int) -> List[AdSpendEntry]:
        return self.db.query(AdSpendEntry).filter(
            AdSpendEntry.campaign_id == campaign_id
        ).order_by(AdSpendEntry.spend_date.desc(), AdSpendEntry.id.desc()).all()

    def add_ad_spend(
        self,
        campaign_id: int,
        spend_date: date,
        amount: int,
        currency: str = "gbp",
        platform: str = "meta",
        notes: Optional[str] = None
    ) -> AdSpendEntry:
        entry = AdSpendEntry(
            campaign_id=campaign_id,
            spend_date=spend_date,
            amount=amount,
            currency=currency,
            platform=platform,
            notes=notes
        )
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        return entry

    def delete_ad_spend(self, entry_id: int) -> bool:
        entry = self.db.query(AdSpendEntry).filter(AdSpendEntry.id == entry_id).first()
        if not entry:
            return False
        self.db.delete(entry)
        self.db.commit()
        return True
