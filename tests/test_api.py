"""Tests for API routes."""
import pytest

from fakes import QUERY, SYNTHESIS_TEXT, FakeCompletionGateway, FakeSearchGateway
from researcher.api.deps import set_research_service
from researcher.config import Settings
from researcher.services.broadcaster import TraceBroadcaster
from researcher.services.quota import QuotaTracker
from researcher.services.research_service import ResearchService
from researcher.services.session_store import InMemorySessionStore


def build_service(config, quota_limit=0, completion=None):
    return ResearchService(
        store=InMemorySessionStore(),
        broadcaster=TraceBroadcaster(),
        quota=QuotaTracker(quota_limit),
        search_gateway=FakeSearchGateway(),
        completion_gateway=completion or FakeCompletionGateway(),
        config=config,
    )


@pytest.fixture
def service(config):
    service = build_service(config)
    set_research_service(service)
    yield service
    set_research_service(None)


@pytest.fixture
def client(service):
    from fastapi.testclient import TestClient

    from researcher.main import app

    return TestClient(app)


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["service"] == "researcher"


def test_submit_research_returns_answer_and_trace(client):
    response = client.post("/api/research", json={"query": QUERY})

    assert response.status_code == 200
    data = response.json()
    assert data["session_id"]
    assert data["response"]["final_output"] == SYNTHESIS_TEXT
    tools = [step["tool"] for step in data["response"]["trace_steps"]]
    assert tools[0] == "Planning"
    assert "Web Search" in tools
    assert "Analysis" in tools
    assert {s["url"] for s in data["response"]["sources"]} == {
        "https://example.com/notion",
        "https://example.com/todoist",
    }


def test_blank_query_is_rejected(client):
    assert client.post("/api/research", json={"query": "   "}).status_code == 400
    assert client.post("/api/research", json={"query": ""}).status_code == 422


def test_sessions_list_and_detail(client):
    session_id = client.post("/api/research", json={"query": QUERY}).json()["session_id"]

    sessions = client.get("/api/sessions").json()
    assert [s["id"] for s in sessions] == [session_id]
    assert sessions[0]["has_answer"] is True

    detail = client.get(f"/api/sessions/{session_id}").json()
    assert detail["query"] == QUERY
    assert detail["response"]["final_output"] == SYNTHESIS_TEXT


def test_progress_reports_done_after_run(client):
    session_id = client.post("/api/research", json={"query": QUERY}).json()["session_id"]

    progress = client.get(f"/api/sessions/{session_id}/progress").json()

    assert progress["phase"] == "done"
    assert progress["progress"] == 100
    assert progress["steps"][0]["index"] == 0
    assert progress["final_output"] == SYNTHESIS_TEXT


def test_unknown_session_returns_404(client):
    response = client.get("/api/sessions/does-not-exist")
    assert response.status_code == 404
    assert "does-not-exist" in response.json()["error"]

    response = client.post("/api/research", json={"query": QUERY, "session_id": "does-not-exist"})
    assert response.status_code == 404


def test_busy_session_returns_409(client, service):
    session_id = client.post("/api/research", json={"query": QUERY}).json()["session_id"]
    service._claim(session_id)

    response = client.post("/api/research", json={"query": "follow up", "session_id": session_id})

    assert response.status_code == 409


def test_quota_exhaustion_returns_429(config):
    from fastapi.testclient import TestClient

    from researcher.main import app

    set_research_service(build_service(config, quota_limit=1))
    try:
        response = TestClient(app).post("/api/research", json={"query": QUERY})
    finally:
        set_research_service(None)

    assert response.status_code == 429
    assert "Daily completion limit" in response.json()["error"]


def test_upstream_failure_returns_502(config):
    from fastapi.testclient import TestClient

    from researcher.main import app

    set_research_service(build_service(config, completion=FakeCompletionGateway(fail_on={"plan"})))
    try:
        response = TestClient(app).post("/api/research", json={"query": QUERY})
    finally:
        set_research_service(None)

    assert response.status_code == 502


def test_missing_credentials_return_500():
    from fastapi.testclient import TestClient

    from researcher.main import app

    set_research_service(
        ResearchService(
            store=InMemorySessionStore(),
            broadcaster=TraceBroadcaster(),
            config=Settings(openrouter_api_key="", serper_api_key=""),
        )
    )
    try:
        response = TestClient(app).post("/api/research", json={"query": QUERY})
    finally:
        set_research_service(None)

    assert response.status_code == 500
    assert "OPENROUTER_API_KEY" in response.json()["error"]


def test_stream_of_finished_session_replays_trace_then_completes(client):
    session_id = client.post("/api/research", json={"query": QUERY}).json()["session_id"]

    response = client.get(f"/api/research/{session_id}/stream")

    assert response.status_code == 200
    body = response.text
    assert body.count("event: trace_step") == 4
    assert body.rstrip().split("event: ")[-1].startswith("research_complete")


def test_stream_of_unknown_session_returns_404(client):
    assert client.get("/api/research/nope/stream").status_code == 404
