"""Tests for sticky weighted variant assignment."""
import random
import threading
from unittest.mock import MagicMock

import pytest
from sqlalchemy.orm import Session

from funnellab.models import Event, EventType, Visitor
from funnellab.services.assignment import AssignmentResolver, choose_weighted
from funnellab.services.campaigns import CampaignService
from funnellab.services.errors import CampaignNotFound, NoActiveVariants


def test_first_visit_creates_visitor_and_page_view(db: Session, make_campaign):
    """Test that a first visit assigns a variation set and records a page view."""
    campaign, variation_sets = make_campaign()
    resolver = AssignmentResolver(db, rng=random.Random(1))

    assignment = resolver.resolve("launch")

    assert assignment.created is True
    assert assignment.token
    assert assignment.variation_set.id in {vs.id for vs in variation_sets}
    assert db.query(Visitor).count() == 1

    events = db.query(Event).all()
    assert [event.event_type for event in events] == [EventType.PAGE_VIEW]
    assert events[0].variation_set_id == assignment.variation_set.id


def test_returning_visitor_keeps_assignment(db: Session, make_campaign):
    """Test that the same token always resolves to the same variation set."""
    make_campaign()
    resolver = AssignmentResolver(db, rng=random.Random(2))

    first = resolver.resolve("launch", "tok-1")
    second = resolver.resolve("launch", "tok-1")
    third = resolver.resolve("LAUNCH", "tok-1")

    assert first.variation_set.id == second.variation_set.id == third.variation_set.id
    assert first.created is True
    assert second.created is False
    assert db.query(Visitor).count() == 1
    assert db.query(Event).filter(Event.event_type == EventType.PAGE_VIEW).count() == 3


def test_assignment_survives_weight_changes(db: Session, make_campaign):
    """Test that reweighting or deactivating a set never moves existing visitors."""
    campaign, variation_sets = make_campaign()
    resolver = AssignmentResolver(db, rng=random.Random(3))
    original = resolver.resolve("launch", "tok-1").variation_set.id

    service = CampaignService(db)
    for variation_set in variation_sets:
        if variation_set.id == original:
            service.update_variation_set(variation_set.id, {"active": False})
        else:
            service.update_variation_set(variation_set.id, {"weight": 1000})

    again = resolver.resolve("launch", "tok-1")

    assert again.variation_set.id == original
    assert again.created is False


def test_client_token_is_adopted(db: Session, make_campaign):
    """Test that a well-formed client token becomes the visitor token."""
    make_campaign()

    assignment = AssignmentResolver(db).resolve("launch", "client-token_1.a")

    assert assignment.token == "client-token_1.a"


def test_malformed_token_is_replaced(db: Session, make_campaign):
    """Test that a malformed token is ignored and a fresh one issued."""
    make_campaign()

    assignment = AssignmentResolver(db).resolve("launch", "not a token!")

    assert assignment.token != "not a token!"
    assert len(assignment.token) == 36  # UUID format
    assert assignment.created is True


def test_attribution_is_stored_on_first_visit(db: Session, make_campaign):
    """Test that UTM parameters and referrer are captured once."""
    make_campaign()
    resolver = AssignmentResolver(db)

    resolver.resolve("launch", "tok-1", {"utm_source": "facebook", "referrer": "https://fb.com"})
    resolver.resolve("launch", "tok-1", {"utm_source": "google"})

    visitor = db.query(Visitor).one()
    assert visitor.utm_source == "facebook"
    assert visitor.referrer == "https://fb.com"


def test_unknown_campaign_raises(db: Session, make_campaign):
    """Test that an unknown slug is rejected."""
    make_campaign()

    with pytest.raises(CampaignNotFound):
        AssignmentResolver(db).resolve("missing", "tok-1")


def test_inactive_campaign_raises(db: Session, make_campaign):
    """Test that a deactivated campaign accepts no new visits."""
    campaign, _ = make_campaign()
    CampaignService(db).update_campaign(campaign.id, {"active": False})

    with pytest.raises(CampaignNotFound):
        AssignmentResolver(db).resolve("launch", "tok-1")


def test_no_active_variants_raises(db: Session, make_campaign):
    """Test that a campaign without active sets rejects new visitors without writing."""
    campaign, variation_sets = make_campaign()
    service = CampaignService(db)
    for variation_set in variation_sets:
        service.update_variation_set(variation_set.id, {"active": False})

    with pytest.raises(NoActiveVariants):
        AssignmentResolver(db).resolve("launch", "tok-1")

    assert db.query(Visitor).count() == 0
    assert db.query(Event).count() == 0


def test_returning_visitor_resolves_with_no_active_variants(db: Session, make_campaign):
    """Test that existing visitors are served even after every set is paused."""
    campaign, variation_sets = make_campaign()
    resolver = AssignmentResolver(db)
    original = resolver.resolve("launch", "tok-1").variation_set.id

    service = CampaignService(db)
    for variation_set in variation_sets:
        service.update_variation_set(variation_set.id, {"active": False})

    assert resolver.resolve("launch", "tok-1").variation_set.id == original


def test_inactive_set_never_receives_new_visitors(db: Session, make_campaign):
    """Test that only active sets are chosen for new visitors."""
    campaign, (set_a, set_b) = make_campaign()
    CampaignService(db).update_variation_set(set_a.id, {"active": False})
    resolver = AssignmentResolver(db, rng=random.Random(4))

    chosen = {resolver.resolve("launch").variation_set.id for _ in range(20)}

    assert chosen == {set_b.id}


def test_choose_weighted_distribution():
    """Test that draws follow the weights."""
    rng = random.Random(42)
    entries = [(1, 1), (2, 3)]

    draws = [choose_weighted(entries, rng) for _ in range(20000)]

    share = draws.count(1) / len(draws)
    assert 0.23 <= share <= 0.27, f"Set 1 should get ~25%, got {share:.3f}"


def test_choose_weighted_single_entry():
    """Test that a single active set always wins."""
    rng = random.Random(0)
    assert {choose_weighted([(7, 5)], rng) for _ in range(50)} == {7}


def test_variant_distribution(db: Session, make_campaign):
    """Test that new visitors are distributed according to weights."""
    campaign, (set_a, set_b) = make_campaign(weights=(1, 3))
    resolver = AssignmentResolver(db, rng=random.Random(42))

    assignments = {}
    for _ in range(400):
        variation_set_id = resolver.resolve("launch").variation_set.id
        assignments[variation_set_id] = assignments.get(variation_set_id, 0) + 1

    share_a = assignments.get(set_a.id, 0) / 400
    assert 0.15 <= share_a <= 0.35, f"Headline A should get ~25%, got {share_a:.2%}"


def test_concurrent_first_visits_share_one_assignment(db: Session, make_campaign):
    """Test that racing first visits with one token create a single visitor."""
    from funnellab.database import SessionLocal

    make_campaign(weights=(1, 1, 1))
    workers = 8
    barrier = threading.Barrier(workers)
    results = []
    errors = []
    lock = threading.Lock()

    def visit(seed):
        session = SessionLocal()
        try:
            barrier.wait()
            assignment = AssignmentResolver(session, rng=random.Random(seed)).resolve("launch", "tok-race")
            with lock:
                results.append(assignment.variation_set.id)
        except Exception as e:
            with lock:
                errors.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=visit, args=(seed,)) for seed in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(results) == workers
    assert len(set(results)) == 1, "Every request should see the same assignment"
    assert db.query(Visitor).filter(Visitor.token == "tok-race").count() == 1


def test_cached_weights_are_used(db: Session, make_campaign):
    """Test that new visitors are assigned from cached weights."""
    campaign, (set_a, set_b) = make_campaign()
    cache = MagicMock()
    cache.get_weights.return_value = [(set_b.id, 1)]

    assignment = AssignmentResolver(db, cache=cache).resolve("launch", "tok-1")

    assert assignment.variation_set.id == set_b.id
    cache.get_weights.assert_called_with(campaign.id)
    cache.set_weights.assert_not_called()


def test_cache_miss_populates_cache(db: Session, make_campaign):
    """Test that weights read from the database are written back to the cache."""
    campaign, (set_a, set_b) = make_campaign(weights=(2, 5))
    cache = MagicMock()
    cache.get_weights.return_value = None

    AssignmentResolver(db, cache=cache).resolve("launch", "tok-1")

    cache.set_weights.assert_called_once_with(campaign.id, [(set_a.id, 2), (set_b.id, 5)])


def test_stale_cache_entry_is_invalidated(db: Session, make_campaign):
    """Test that a cached choice pointing at a paused set is re-drawn from the database."""
    campaign, (set_a, set_b) = make_campaign()
    CampaignService(db).update_variation_set(set_a.id, {"active": False})

    cache = MagicMock()
    cache.get_weights.side_effect = [[(set_a.id, 1)], None]

    assignment = AssignmentResolver(db, cache=cache).resolve("launch", "tok-1")

    assert assignment.variation_set.id == set_b.id
    cache.invalidate.assert_called_once_with(campaign.id)
