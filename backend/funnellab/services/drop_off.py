"""Drop-off curve: share of viewers still watching over time."""
from typing import Dict, Iterable, Iterator, List, Optional

from sqlalchemy.orm import Session

from funnellab.models import EventType, MILESTONES
from funnellab.schemas.analytics import DropOffPoint
from funnellab.services.errors import CampaignNotFound
from funnellab.services.event_store import EventStore

WATCH_EVENT_TYPES = (EventType.PLAY_START,) + tuple(MILESTONES)


def last_offsets(rows: Iterable) -> List[int]:
    """
    Last known watch offset (ms) per viewer.

    Viewers are visitors with a play_start event; their offset is the largest
    watch_time_ms reported on play_start or any milestone, 0 if none.
    Milestones from visitors who never started playback are ignored.
    """
    started = set()
    offsets: Dict[int, int] = {}

    for visitor_id, event_type, payload in rows:
        if event_type == EventType.PLAY_START:
            started.add(visitor_id)
        watch_time_ms = (payload or {}).get("watch_time_ms")
        if isinstance(watch_time_ms, (int, float)) and watch_time_ms > 0:
            offsets[visitor_id] = max(offsets.get(visitor_id, 0), int(watch_time_ms))

    return [offsets.get(visitor_id, 0) for visitor_id in started]


def iter_drop_off(offsets_ms: List[int], bucket_seconds: int) -> Iterator[DropOffPoint]:
    """
    Lazily yield one point per bucket from 0 to the longest watch time.

    A viewer counts as still watching at bucket b if its last offset is
    >= b, so each point can only be lower than or equal to the previous one.
    """
    if bucket_seconds <= 0:
        raise ValueError("bucket_seconds must be positive")

    total = len(offsets_ms)
    if total == 0:
        return

    ordered = sorted(offsets_ms)
    longest = ordered[-1]
    bucket_ms = bucket_seconds * 1000

    # Walk the sorted offsets once; `dropped` viewers stopped before t
    dropped = 0
    t = 0
    while t <= longest:
        while dropped < total and ordered[dropped] < t:
            dropped += 1
        still_watching = total - dropped
        yield DropOffPoint(
            time_seconds=t // 1000,
            viewer_count=still_watching,
            still_watching_percent=round(still_watching / total * 100, 2)
        )
        t += bucket_ms


class DropOffCurveBuilder:
    """Builds watch-time survival curves from stored progress events."""

    def __init__(self, db: Session, default_bucket_seconds: int = 30):
        self.store = EventStore(db)
        self.default_bucket_seconds = default_bucket_seconds

    def drop_off(self, campaign_id: int, bucket_seconds: Optional[int] = None) -> List[DropOffPoint]:
        """
        Raises:
            CampaignNotFound: Unknown campaign id
            ValueError: Non-positive bucket size
        """
        if bucket_seconds is None:
            bucket_seconds = self.default_bucket_seconds
        if bucket_seconds <= 0:
            raise ValueError("bucket_seconds must be positive")

        if not self.store.get_campaign(campaign_id):
            raise CampaignNotFound(f"Campaign {campaign_id} not found")

        rows = self.store.watch_events(campaign_id, WATCH_EVENT_TYPES)
        return list(iter_drop_off(last_offsets(rows), bucket_seconds))
