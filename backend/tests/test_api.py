"""
Tests des routes HTTP : webhook Strava, sante et supervision.
"""
import json
import pytest
from unittest.mock import patch

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlmodel import Session, select

from weirdstats.api.routers import router
from weirdstats.core.settings import Settings
from weirdstats.domain.entities import WebhookEvent
from weirdstats.domain.services.container import build_services, get_services

VERIFY_TOKEN = "secret"


@pytest.fixture
def services(engine):
    settings = Settings(
        STRAVA_VERIFY_TOKEN=VERIFY_TOKEN,
        STRAVA_ACCESS_TOKEN="",
        STRAVA_REFRESH_TOKEN="",
        SENTRY_DSN="",
    )
    return build_services(settings, engine)


@pytest.fixture
def client(services):
    app = FastAPI()
    app.include_router(router)
    app.dependency_overrides[get_services] = lambda: services
    return TestClient(app)


def _event(**overrides):
    event = {
        "object_type": "activity",
        "object_id": 1234,
        "aspect_type": "create",
        "owner_id": 77,
        "subscription_id": 1,
        "event_time": 1700000000,
    }
    event.update(overrides)
    return event


# ============================================================
# Webhook
# ============================================================

class TestWebhookChallenge:
    def test_valid_challenge(self, client):
        response = client.get("/webhook", params={"hub.challenge": "abc", "hub.verify_token": VERIFY_TOKEN})
        assert response.status_code == 200
        assert response.json() == {"hub.challenge": "abc"}

    def test_wrong_token(self, client):
        response = client.get("/webhook", params={"hub.challenge": "abc", "hub.verify_token": "nope"})
        assert response.status_code == 403

    def test_missing_challenge(self, client):
        response = client.get("/webhook", params={"hub.verify_token": VERIFY_TOKEN})
        assert response.status_code == 400


class TestWebhookEvent:
    def test_activity_create_is_logged_and_enqueued(self, client, services, engine):
        response = client.post("/webhook", json=_event())

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "enqueued": True}
        assert services.queue.dequeue_activity()[1] == 1234
        with Session(engine) as session:
            stored = session.exec(select(WebhookEvent)).all()
        assert len(stored) == 1
        assert stored[0].owner_id == 77
        assert json.loads(stored[0].raw_payload)["event_time"] == 1700000000

    def test_activity_update_is_enqueued(self, client, services):
        response = client.post("/webhook", json=_event(aspect_type="update"))
        assert response.json()["enqueued"] is True
        assert services.queue.pending_count() == 1

    def test_delete_is_logged_only(self, client, services, engine):
        response = client.post("/webhook", json=_event(aspect_type="delete"))
        assert response.json()["enqueued"] is False
        assert services.queue.pending_count() == 0
        with Session(engine) as session:
            assert len(session.exec(select(WebhookEvent)).all()) == 1

    def test_athlete_event_is_not_enqueued(self, client, services):
        response = client.post("/webhook", json=_event(object_type="athlete", aspect_type="update"))
        assert response.status_code == 200
        assert services.queue.pending_count() == 0

    def test_invalid_json(self, client):
        response = client.post("/webhook", content=b"{oops", headers={"Content-Type": "application/json"})
        assert response.status_code == 400

    def test_missing_fields(self, client, services):
        response = client.post("/webhook", json={"object_type": "activity", "aspect_type": "create"})
        assert response.status_code == 400
        assert response.json()["detail"] == "missing required fields"
        assert services.queue.pending_count() == 0

    def test_non_object_payload(self, client):
        response = client.post("/webhook", json=[1, 2, 3])
        assert response.status_code == 400


# ============================================================
# Supervision
# ============================================================

class TestStatusRoutes:
    def test_health(self, client):
        with patch("weirdstats.api.routers.status_router.check_redis_health", return_value=True):
            response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_health_degraded_without_redis(self, client):
        with patch("weirdstats.api.routers.status_router.check_redis_health", return_value=False):
            response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "degraded"

    def test_health_database_down(self, client):
        with patch("weirdstats.api.routers.status_router.check_redis_health", return_value=True), \
                patch("weirdstats.api.routers.status_router.check_database_health", return_value=False):
            response = client.get("/health")
        assert response.status_code == 503

    def test_queue_status(self, client, services):
        services.queue.enqueue_activity(1)
        services.jobs.create_job("sync_latest", "{}")
        body = client.get("/api/queue/status").json()
        assert body["queue"]["pending"] == 1
        assert body["jobs"]["queued"] == 1
        assert body["worker_running"] is False
        assert "strava_quota" not in body

    def test_rules_metadata(self, client):
        body = client.get("/api/rules/metadata").json()
        assert "distance_m" in {metric["id"] for metric in body["metrics"]}
        assert "between" in {op["id"] for op in body["operators"]["number"]}

    def test_rules_listing(self, client, services):
        services.hide_rules.create_rule(
            5, "night", json.dumps({"conditions": [{"metric": "start_hour", "op": "gte", "values": [22]}]})
        )
        body = client.get("/api/rules", params={"user_id": 5}).json()
        assert body[0]["name"] == "night"
        assert body[0]["description"] == "Start hour >= 22 h"
