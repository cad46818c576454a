"""
Read API Tests

Exercises the HTTP surface through FastAPI's TestClient against an
engine built over an in-memory store.
"""

import pytest
from fastapi.testclient import TestClient

from story_engine.api.server import create_app
from story_engine.engine import EngineConfig, OrchestratorConfig, StoryCurationEngine
from story_engine.store import InMemoryMetadataStore
from tests.integration.fixtures import FlakyStore, scenario_a_photos, scenario_c_photos


def fast_config():
    return EngineConfig(orchestrator=OrchestratorConfig(
        deadline_seconds=2.0, store_retry_attempts=2, store_retry_backoff_seconds=0.001
    ))


@pytest.fixture
def client():
    store = InMemoryMetadataStore(scenario_a_photos() + scenario_c_photos())
    engine = StoryCurationEngine(store, fast_config())
    with TestClient(create_app(engine)) as test_client:
        yield test_client


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "online"


def test_stories_for_event(client):
    response = client.get("/api/v1/stories", params={"event_id": "E1"})

    assert response.status_code == 200
    body = response.json()
    assert body["scopeKey"] == "E1"
    assert body["timedOut"] == []
    assert body["failed"] == []
    assert len(body["stories"]) == 1

    story = body["stories"][0]
    assert story["type"] == "game-winning-rally"
    assert story["photoIds"] == ["e1_p1", "e1_p2", "e1_p3"]
    assert [p["photoId"] for p in story["emotionalCurve"]] == story["photoIds"]
    assert story["generatedAt"].endswith("Z")
    assert story["durationSeconds"] == 9.0


def test_story_lookup_by_id(client):
    stories = client.get("/api/v1/stories", params={"event_id": "E2"}).json()["stories"]
    arc_id = stories[0]["id"]

    response = client.get(f"/api/v1/stories/{arc_id}")

    assert response.status_code == 200
    assert response.json() == stories[0]


def test_unknown_story_is_404(client):
    assert client.get("/api/v1/stories/arc_nope").status_code == 404


@pytest.mark.parametrize("params", [
    {},
    {"event_id": "E1", "athlete_id": "A1"},
    {"scope": "galaxy"},
    {"scope": "season"},
    {"scope": "season", "start": "2026-05-01T00:00:00Z", "end": "2026-01-01T00:00:00Z"},
])
def test_bad_scope_is_400(client, params):
    assert client.get("/api/v1/stories", params=params).status_code == 400


def test_global_scope(client):
    response = client.get("/api/v1/stories", params={"scope": "global"})

    assert response.status_code == 200
    assert response.json()["scopeKey"] == "global"


def test_invalidate(client):
    arc_id = client.get("/api/v1/stories", params={"event_id": "E1"}).json()["stories"][0]["id"]

    response = client.post("/api/v1/stories/invalidate", json={"eventId": "E1"})

    assert response.status_code == 204
    assert client.get(f"/api/v1/stories/{arc_id}").status_code == 404


def test_invalidate_requires_one_scope(client):
    response = client.post("/api/v1/stories/invalidate", json={})
    assert response.status_code == 400


def test_store_outage_is_503():
    engine = StoryCurationEngine(FlakyStore(scenario_a_photos(), failures=100), fast_config())

    with TestClient(create_app(engine)) as client:
        response = client.get("/api/v1/stories", params={"event_id": "E1"})

    assert response.status_code == 503
