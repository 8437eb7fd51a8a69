"""
Service-level tests for the HTTP API.

Runs the FastAPI application against a started pipeline (real watchdog,
real SQLite, fake analyzer) through the test client.
"""

import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from app.models.schemas import WatchSource
from app.utils.config import Settings
from app.utils.helpers import hash_text
from domains.file_ingest.pipeline import IngestionPipeline


@pytest.fixture
def folders(tmp_path):
    notes = tmp_path / "notes"
    inbox = tmp_path / "inbox"
    notes.mkdir()
    inbox.mkdir()
    return notes.resolve(), inbox.resolve()


@pytest.fixture
def pipeline(tmp_path, folders, analyzer):
    notes, _ = folders
    sources_file = tmp_path / "sources.yaml"
    sources_file.write_text(
        f"sources:\n  - {{id: notes, path: '{notes}'}}\n  - {{id: broken, path: '{tmp_path / 'missing'}'}}\n"
    )
    settings = Settings(
        _env_file=None,
        data_dir=tmp_path / "data",
        sources_file=sources_file,
        debounce_window=0.05,
        retry_base_delay=0.01,
        shutdown_grace_period=5.0,
    )
    pipeline = IngestionPipeline(settings, analyzer=analyzer)
    pipeline.start([WatchSource(id="notes", path=notes)])
    yield pipeline
    pipeline.shutdown()


@pytest.fixture
def client(pipeline):
    with TestClient(create_app(pipeline)) as client:
        yield client


def test_health_reports_store_and_sources(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["store_connected"] is True
    assert body["active_sources"] == ["notes"]
    assert body["queue"]["concurrency"] == 2


def test_source_lifecycle(client, folders, tmp_path):
    _, inbox = folders

    listed = client.get("/sources/list").json()
    assert listed["total"] == 1
    assert listed["sources"][0]["id"] == "notes"
    assert client.get("/sources/notes").json()["recursive"] is True
    assert client.get("/sources/unknown").status_code == 404

    created = client.post("/sources/", json={"id": "inbox", "path": str(inbox), "extensions": ["MD"]})
    assert created.status_code == 201
    assert client.get("/sources/inbox").json()["extensions"] == [".md"]

    assert client.post("/sources/", json={"id": "inbox", "path": str(inbox)}).status_code == 409
    assert client.post("/sources/", json={"id": "ghost", "path": str(tmp_path / "nowhere")}).status_code == 400

    assert client.delete("/sources/inbox").status_code == 200
    assert client.delete("/sources/inbox").status_code == 404
    assert client.get("/sources/list").json()["total"] == 1


def test_rescan_then_fingerprint_lookups(client, pipeline, folders):
    notes, _ = folders
    (notes / "one.md").write_text("shared text")
    (notes / "two.md").write_text("shared text")

    response = client.post("/admin/rescan", params={"source_id": "notes"})
    assert response.status_code == 200
    assert response.json()["details"]["submitted"] == 2
    assert pipeline.queue.join(timeout=5)

    lookup = client.get("/fingerprints/lookup", params={"path": str(notes / "one.md")})
    assert lookup.status_code == 200
    assert lookup.json()["fingerprint"]["hash"] == hash_text("shared text")
    assert lookup.json()["duplicates"] == [str(notes / "two.md")]

    duplicates = client.get(f"/fingerprints/duplicates/{hash_text('shared text')}").json()
    assert duplicates["count"] == 2
    assert len(client.get("/fingerprints/duplicates").json()) == 1

    stats = client.get("/admin/stats").json()
    assert stats["store"]["fingerprints"] == 2
    assert stats["store"]["duplicate_groups"] == 1
    assert stats["queue"]["succeeded"] == 2


def test_unknown_lookups_are_404(client, tmp_path):
    assert client.get("/fingerprints/lookup", params={"path": str(tmp_path / "never.md")}).status_code == 404
    assert client.get(f"/fingerprints/duplicates/{hash_text('nothing')}").status_code == 404
    assert client.post("/admin/rescan", params={"source_id": "nope"}).status_code == 404


def test_reload_reports_partial_failures(client):
    response = client.post("/admin/reload")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "partial"
    assert list(body["details"]["failures"]) == ["broken"]
    assert body["details"]["active"] == ["notes"]
