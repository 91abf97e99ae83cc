"""Tests for the dashboard API."""

import pytest
from fastapi.testclient import TestClient

from safeguard.api.main import create_app


@pytest.fixture
def client(engine):
    return TestClient(create_app(engine))


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_queue_lists_open_entries(client, engine, make_item):
    engine.moderate_content(make_item("violence is bad"))
    engine.moderate_content(make_item("stop the spam", content_type="comment"))

    response = client.get("/queue")
    assert response.status_code == 200
    assert [e["priority"] for e in response.json()] == ["urgent", "medium"]

    comments = client.get("/queue", params={"content_type": "comment"}).json()
    assert len(comments) == 1


def test_queue_rejects_bad_parameters(client):
    assert client.get("/queue", params={"limit": 0}).status_code == 422
    assert client.get("/queue", params={"priority": "whenever"}).status_code == 422


def test_dashboard(client):
    body = client.get("/analytics/dashboard").json()

    assert body["health_status"] == "warning"
    assert body["security_health_score"] == 50
    assert body["moderation"]["resolution_efficiency"] == 100


def test_analytics_sections(client):
    assert client.get("/analytics/moderation").json()["total_reports"] == 0
    assert client.get("/analytics/security").json()["security_score"] == 50
    assert client.get("/analytics/reports").json()["resolution_rate"] == 0
