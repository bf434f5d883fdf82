"""End-to-end tests for the HTTP API."""
import pytest
from fastapi.testclient import TestClient

ADMIN_HEADERS = {"x-api-key": "test-admin-key"}


@pytest.fixture
def client(db):
    from funnellab.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def campaign_id(client):
    """Create the launch campaign with two equally weighted sets through the admin API."""
    response = client.post(
        "/admin/funnels/campaigns",
        json={"slug": "launch", "name": "Launch webinar", "cta_text": "Book a call"},
        headers=ADMIN_HEADERS
    )
    assert response.status_code == 200
    campaign_id = response.json()["id"]

    for name, is_control in (("Headline A", True), ("Headline B", False)):
        response = client.post(
            f"/admin/funnels/campaigns/{campaign_id}/variation-sets",
            json={"name": name, "weight": 1, "is_control": is_control},
            headers=ADMIN_HEADERS
        )
        assert response.status_code == 200

    return campaign_id


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_detailed_health_reports_redis_disabled(client):
    response = client.get("/health/detailed")

    assert response.json()["checks"] == {"api": "healthy", "database": "healthy", "redis": "disabled"}


def test_resolve_sets_cookie_and_is_sticky(client, campaign_id):
    """Test that a first visit sets the campaign cookie and repeat visits keep the set."""
    first = client.get("/funnel/c/launch", params={"utm_source": "facebook"})
    assert first.status_code == 200
    body = first.json()
    assert body["new_visitor"] is True
    assert body["campaign"]["cta_text"] == "Book a call"
    assert first.cookies.get(f"fv_{campaign_id}") == body["visitor_token"]

    second = client.get("/funnel/c/launch", params={"token": body["visitor_token"]})
    assert second.json()["new_visitor"] is False
    assert second.json()["variation_set"]["id"] == body["variation_set"]["id"]


def test_unknown_campaign_returns_typed_error(client):
    response = client.get("/funnel/c/missing")

    assert response.status_code == 404
    assert response.json()["error"] == "campaign_not_found"


def test_track_flow(client, campaign_id):
    """Test tracking, milestone deduplication and typed rejections."""
    token = client.get("/funnel/c/launch").json()["visitor_token"]

    response = client.post("/funnel/track", json={
        "visitor_token": token,
        "campaign_slug": "launch",
        "event_type": "play_50",
        "payload": {"watch_time_ms": 615000}
    })
    assert response.status_code == 200
    assert response.json()["recorded"] is True

    response = client.post("/funnel/track", json={
        "visitor_token": token,
        "campaign_slug": "launch",
        "event_type": "play_50"
    })
    assert response.json()["recorded"] is False

    response = client.post("/funnel/track", json={
        "visitor_token": token,
        "campaign_slug": "launch",
        "event_type": "play_progress"
    })
    assert response.status_code == 422
    assert response.json()["error"] == "invalid_event_type"

    response = client.post("/funnel/track", json={
        "visitor_token": token,
        "campaign_slug": "launch",
        "event_type": "sale",
        "payload": {"amount": -5}
    })
    assert response.status_code == 422
    assert response.json()["error"] == "invalid_payload"

    response = client.post("/funnel/track", json={
        "visitor_token": "nobody",
        "campaign_slug": "launch",
        "event_type": "cta_click"
    })
    assert response.status_code == 404
    assert response.json()["error"] == "unknown_visitor"


def test_progress_reports_new_milestones(client, campaign_id):
    token = client.get("/funnel/c/launch").json()["visitor_token"]
    report = {"visitor_token": token, "campaign_slug": "launch", "percent": 60, "watch_time_ms": 360000}

    assert client.post("/funnel/progress", json=report).json()["milestones"] == ["play_25", "play_50"]
    assert client.post("/funnel/progress", json=report).json()["milestones"] == []


def test_admin_requires_api_key(client, campaign_id):
    assert client.get(f"/admin/funnels/campaigns/{campaign_id}/analytics").status_code == 401
    response = client.get(
        f"/admin/funnels/campaigns/{campaign_id}/analytics",
        headers={"x-api-key": "wrong"}
    )
    assert response.status_code == 401


def test_register_sale_and_analytics(client, campaign_id):
    """Test the full funnel from first visit to campaign ROI."""
    token = client.get("/funnel/c/launch").json()["visitor_token"]

    response = client.post("/funnel/c/launch/register", json={
        "visitor_token": token,
        "email": "jane@example.com",
        "first_name": "Jane"
    })
    assert response.status_code == 200

    response = client.post(
        f"/admin/funnels/campaigns/{campaign_id}/record-sale",
        json={"email": "jane@example.com", "amount": 9900},
        headers=ADMIN_HEADERS
    )
    assert response.status_code == 200

    response = client.post(
        f"/admin/funnels/campaigns/{campaign_id}/ad-spend",
        json={"spend_date": "2024-03-01", "amount": 5000},
        headers=ADMIN_HEADERS
    )
    assert response.status_code == 200
    entry_id = response.json()["id"]

    analytics = client.get(
        f"/admin/funnels/campaigns/{campaign_id}/analytics",
        headers=ADMIN_HEADERS
    ).json()
    assert analytics["totals"]["visitors"] == 1
    assert analytics["totals"]["registrations"] == 1
    assert analytics["totals"]["revenue"] == 9900
    assert analytics["totals"]["roi"] == 4900
    assert analytics["totals"]["cost_per_registration"] == 5000.0

    response = client.delete(f"/admin/funnels/ad-spend/{entry_id}", headers=ADMIN_HEADERS)
    assert response.status_code == 200
    listing = client.get(f"/admin/funnels/campaigns/{campaign_id}/ad-spend", headers=ADMIN_HEADERS)
    assert listing.json() == []


def test_analytics_rejects_inverted_window(client, campaign_id):
    response = client.get(
        f"/admin/funnels/campaigns/{campaign_id}/analytics",
        params={"start": "2024-02-01", "end": "2024-01-01"},
        headers=ADMIN_HEADERS
    )

    assert response.status_code == 422


def test_exports_and_drop_off(client, campaign_id):
    token = client.get("/funnel/c/launch").json()["visitor_token"]
    client.post("/funnel/track", json={
        "visitor_token": token,
        "campaign_slug": "launch",
        "event_type": "play_start",
        "payload": {"watch_time_ms": 0}
    })
    client.post("/funnel/progress", json={
        "visitor_token": token,
        "campaign_slug": "launch",
        "percent": 30,
        "watch_time_ms": 60000
    })

    response = client.get(f"/admin/funnels/campaigns/{campaign_id}/export.csv", headers=ADMIN_HEADERS)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.text.startswith("variation_set_id,")

    response = client.get(f"/admin/funnels/campaigns/{campaign_id}/events.csv", headers=ADMIN_HEADERS)
    assert response.text.startswith("visitor_token,")

    points = client.get(
        f"/admin/funnels/campaigns/{campaign_id}/drop-off",
        params={"bucket_seconds": 30},
        headers=ADMIN_HEADERS
    ).json()
    assert [point["viewer_count"] for point in points] == [1, 1, 1]


def test_duplicate_slug_is_rejected(client, campaign_id):
    response = client.post(
        "/admin/funnels/campaigns",
        json={"slug": "launch", "name": "Again"},
        headers=ADMIN_HEADERS
    )

    assert response.status_code == 409
    assert response.json()["error"] == "slug_taken"
