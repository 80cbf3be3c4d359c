"""Tests for the HTTP API (extract, publish, estimate, deployments).

All tests run against an isolated in-memory SQLite database via the FastAPI
TestClient.  Pages come from a scripted render backend and publishing uses
the in-memory dry-run storage, so no network calls are made.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from backend.api.app import create_app
from backend.db.connection import get_connection
from backend.db.migrations import init_db
from backend.errors import RenderBackendUnavailable
from conftest import FakeRenderer

SEED = "https://example.com/"
PAGES = {
    SEED: '<html><head><title>Home</title></head><body><a href="/about">About</a></body></html>',
    "https://example.com/about": "<html><head><title>About</title></head><body>Hi</body></html>",
}


class BrokenRenderer(FakeRenderer):
    def acquire(self) -> None:
        raise RenderBackendUnavailable("no browser installed")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def renderer(monkeypatch):
    fake = FakeRenderer(PAGES)
    monkeypatch.setattr("backend.api.routers.extract.make_renderer", lambda *a, **k: fake)
    return fake


@pytest.fixture()
def client(workspace):
    """Return a TestClient backed by an isolated in-memory DB.

    The lifespan opens its own connection in the temp workspace; it is
    replaced right away so every test starts from an empty database.
    """
    conn = get_connection(db_path=":memory:")
    init_db(conn)
    app = create_app()

    with TestClient(app, raise_server_exceptions=True) as c:
        c.app.state.db = conn
        yield c

    conn.close()


def _extract(client) -> dict:
    resp = client.post("/extract", json={"url": SEED, "max_pages": 5, "probe_doc_paths": False})
    assert resp.status_code == 201
    return resp.json()


# ---------------------------------------------------------------------------
# /extract
# ---------------------------------------------------------------------------

class TestExtract:
    def test_crawls_and_saves(self, client, renderer) -> None:
        data = _extract(client)
        assert data["hostname"] == "example.com"
        assert data["pages"] == ["/about/index.html", "/index.html"]
        assert data["assets"] == []
        assert data["issues"] == []
        assert renderer.released is True

    def test_rejects_unknown_render_mode(self, client, renderer) -> None:
        resp = client.post("/extract", json={"url": SEED, "render_mode": "magic"})
        assert resp.status_code == 422

    def test_rejects_invalid_url(self, client, renderer) -> None:
        resp = client.post("/extract", json={"url": "not a url"})
        assert resp.status_code == 422

    def test_render_backend_unavailable(self, client, monkeypatch) -> None:
        broken = BrokenRenderer({})
        monkeypatch.setattr("backend.api.routers.extract.make_renderer", lambda *a, **k: broken)
        resp = client.post("/extract", json={"url": SEED})
        assert resp.status_code == 502
        assert broken.released is True


# ---------------------------------------------------------------------------
# /publish and /estimate
# ---------------------------------------------------------------------------

class TestPublish:
    def test_dry_run_publish(self, client, renderer) -> None:
        _extract(client)
        resp = client.post("/publish", json={"hostname": "example.com", "dry_run": True})
        assert resp.status_code == 201
        data = resp.json()
        assert data["routes"] == 2
        assert data["manifest_url"].endswith("/" + data["manifest_id"])
        assert data["deployment_id"]

    def test_unknown_host_is_unprocessable(self, client) -> None:
        resp = client.post("/publish", json={"hostname": "nowhere.org", "dry_run": True})
        assert resp.status_code == 422

    def test_estimate(self, client, renderer) -> None:
        _extract(client)
        resp = client.get("/estimate/example.com")
        assert resp.status_code == 200
        data = resp.json()
        assert data["pages"] == 2
        assert data["total_bytes"] > 0

    def test_estimate_unknown_host(self, client) -> None:
        assert client.get("/estimate/nowhere.org").status_code == 404


# ---------------------------------------------------------------------------
# /deployments
# ---------------------------------------------------------------------------

class TestDeployments:
    def test_empty(self, client) -> None:
        resp = client.get("/deployments")
        assert resp.status_code == 200
        assert resp.json() == []

    def test_history_and_detail(self, client, renderer) -> None:
        _extract(client)
        published = client.post(
            "/publish", json={"hostname": "example.com", "dry_run": True}
        ).json()

        listing = client.get("/deployments", params={"hostname": "example.com"}).json()
        assert [d["id"] for d in listing] == [published["deployment_id"]]
        assert listing[0]["dry_run"] is True

        detail = client.get(f"/deployments/{published['deployment_id']}").json()
        assert detail["manifest"]["index"] == {"path": "index.html"}
        assert set(detail["manifest"]["paths"]) == {"index.html", "about/index.html"}

    def test_unknown_deployment(self, client) -> None:
        assert client.get("/deployments/does-not-exist").status_code == 404
