"""Shared test fixtures.

Settings are read once at import time, so the test environment is set up
before any funnellab module is imported.
"""
import os
import tempfile

_db_dir = tempfile.mkdtemp(prefix="funnellab-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_db_dir, 'test.db')}"
os.environ["CACHE_ENABLED"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ADMIN_API_KEY"] = "test-admin-key"

import pytest


@pytest.fixture
def db():
    """Create test database session."""
    from funnellab.database import SessionLocal, engine, Base
    import funnellab.models  # noqa: F401

    # Create tables
    Base.metadata.create_all(bind=engine)

    # Create session
    session = SessionLocal()

    yield session

    # Cleanup
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_campaign(db):
    """Factory for a campaign with one variation set per weight."""
    from funnellab.services.campaigns import CampaignService

    def _make(slug="launch", weights=(1, 1), control_index=None, **fields):
        service = CampaignService(db)
        campaign = service.create_campaign(slug, slug.title(), **fields)
        variation_sets = [
            service.add_variation_set(
                campaign.id,
                f"Headline {chr(ord('A') + index)}",
                weight=weight,
                is_control=(index == control_index)
            )
            for index, weight in enumerate(weights)
        ]
        return campaign, variation_sets

    return _make
