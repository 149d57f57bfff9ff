"""Tests for API routes."""
import json
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from company_intel.api.deps import get_registry, get_session_store
from company_intel.main import app
from company_intel.models.discovery import DiscoveredPage, DiscoveryResult, DiscoveryState
from company_intel.scraping.plugins.static import StaticHttpScraper
from company_intel.scraping.registry import ScraperRegistry
from company_intel.services.sessions import InMemorySessionStore


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def client(store):
    app.dependency_overrides[get_session_store] = lambda: store
    app.dependency_overrides[get_registry] = lambda: ScraperRegistry([StaticHttpScraper()])
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_pass(scraper, content, timestamp, url="https://acme.test/"):
    return {
        "scraper": scraper,
        "strategy": "static",
        "timestamp": timestamp,
        "url": url,
        "duration_ms": 120,
        "content": content,
        "title": "Home",
    }


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["service"] == "company-intel"


def test_create_session_reuses_domain(client):
    first = client.post("/api/sessions", json={"company_name": "Acme", "domain": "https://www.acme.test"})
    second = client.post("/api/sessions", json={"company_name": "Acme", "domain": "acme.test"})

    assert first.status_code == 200
    assert first.json()["domain"] == "acme.test"
    assert first.json()["version"] == 0
    assert second.json()["id"] == first.json()["id"]


def test_get_session_not_found(client):
    response = client.get("/api/sessions/missing")
    assert response.status_code == 404


def test_merge_endpoint(client):
    response = client.post(
        "/api/merge",
        json={
            "passes": [
                make_pass("browser", "Intro.\n\nExtra info.", "2026-01-01T10:05:00Z"),
                make_pass("static", "Intro.\n\nBody text.", "2026-01-01T10:00:00Z"),
            ]
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["content"] == "Intro.\n\nBody text.\n\nExtra info."
    assert data["title"] == "Home"
    assert data["statistics"]["total_passes"] == 2
    assert [source["scraper"] for source in data["sources"]] == ["static", "browser"]
    assert 0 <= data["quality"]["score"] <= 100


def test_merge_endpoint_validation(client):
    assert client.post("/api/merge", json={"passes": []}).status_code == 422

    mixed = client.post(
        "/api/merge",
        json={
            "passes": [
                make_pass("static", "a", "2026-01-01T10:00:00Z", url="https://acme.test/a"),
                make_pass("static", "b", "2026-01-01T10:00:00Z", url="https://acme.test/b"),
            ]
        },
    )
    assert mixed.status_code == 422

    bad_strategy = client.post(
        "/api/merge",
        json={"passes": [make_pass("static", "a", "2026-01-01T10:00:00Z")], "conflict_resolution": "newest"},
    )
    assert bad_strategy.status_code == 422


def test_extract_endpoint(client):
    response = client.post(
        "/api/intelligence/extract",
        json={"pages": {"https://acme.test/pricing": {"text": "pricing " * 12}}},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["categories"]["pricing"]["confidence"] == 0.95
    assert data["summary"]["categories"] == 1


def test_extract_endpoint_unknown_session(client):
    response = client.post(
        "/api/intelligence/extract",
        json={"pages": {"https://acme.test/": {"text": "careers"}}, "session_id": "missing"},
    )
    assert response.status_code == 404


def test_list_scrapers(client):
    response = client.get("/api/scrapers")
    assert response.status_code == 200
    scrapers = response.json()["scrapers"]
    assert [scraper["name"] for scraper in scrapers] == ["static"]
    assert scrapers[0]["enabled"] is True


def test_discovery_stream_unknown_session(client):
    response = client.get("/api/sessions/missing/discovery/stream")
    assert response.status_code == 404


def test_discovery_stream_emits_events(client, store):
    session = client.post("/api/sessions", json={"company_name": "Acme", "domain": "acme.test"}).json()

    class FakeExecutor:
        def __init__(self, *args, **kwargs):
            pass

        async def execute(self, domain, *, on_progress=None, **kwargs):
            await on_progress(1, 1, "found homepage")
            return DiscoveryResult(
                domain=domain,
                state=DiscoveryState.COMPLETED,
                pages=[DiscoveredPage(url="https://acme.test/", source="homepage", discovered_at="t")],
            )

    with patch("company_intel.api.routes.discovery.DiscoveryExecutor", FakeExecutor):
        with client.stream("GET", f"/api/sessions/{session['id']}/discovery/stream") as response:
            lines = [line for line in response.iter_lines() if line]

    assert response.status_code == 200
    events = [line.split(": ", 1)[1] for line in lines if line.startswith("event:")]
    assert events == ["started", "progress", "data", "complete"]
    payloads = [json.loads(line.split(": ", 1)[1]) for line in lines if line.startswith("data:")]
    assert payloads[2]["payload"]["urls"] == ["https://acme.test/"]
    assert payloads[-1]["summary"]["url_count"] == 1
    assert payloads[-1]["session_id"] == session["id"]


def test_discovery_stream_keeps_going_after_reported_error(client):
    session = client.post("/api/sessions", json={"company_name": "Acme", "domain": "acme.test"}).json()

    class PartialExecutor:
        def __init__(self, *args, **kwargs):
            pass

        async def execute(self, domain, *, on_error=None, **kwargs):
            await on_error(RuntimeError("crawl timed out"), retriable=True, stage="discovery", partial_urls=1)
            return DiscoveryResult(
                domain=domain,
                state=DiscoveryState.FAILED,
                pages=[DiscoveredPage(url="https://acme.test/", source="sitemap", discovered_at="t")],
                error="RuntimeError: crawl timed out",
            )

    with patch("company_intel.api.routes.discovery.DiscoveryExecutor", PartialExecutor):
        with client.stream("GET", f"/api/sessions/{session['id']}/discovery/stream") as response:
            lines = [line for line in response.iter_lines() if line]

    events = [line.split(": ", 1)[1] for line in lines if line.startswith("event:")]
    assert events == ["started", "error", "data", "complete"]
    payloads = [json.loads(line.split(": ", 1)[1]) for line in lines if line.startswith("data:")]
    assert payloads[1]["terminal"] is False
    assert payloads[1]["retriable"] is True
    assert payloads[1]["stage"] == "discovery"
    assert payloads[1]["session_id"] == session["id"]


def test_pipeline_stream_reports_error_event(client):
    session = client.post("/api/sessions", json={"company_name": "Acme", "domain": "acme.test"}).json()

    class BoomPipeline:
        def __init__(self, *args, **kwargs):
            pass

        async def run(self, session_id, **kwargs):
            raise RuntimeError("boom")

    with patch("company_intel.api.routes.discovery.IntelligencePipeline", BoomPipeline):
        with client.stream("GET", f"/api/sessions/{session['id']}/pipeline/stream") as response:
            body = "\n".join([line for line in response.iter_lines() if line])

    assert response.status_code == 200
    assert "event: error" in body
    assert "boom" in body
