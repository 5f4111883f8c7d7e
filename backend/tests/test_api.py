"""API integration tests."""

from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from knowledge_hub.app import app

ACME = {"X-Tenant-Id": "acme"}


@pytest.fixture
def client() -> TestClient:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def docs(tmp_path: Path) -> Path:
    folder = tmp_path / "handbook"
    folder.mkdir()
    (folder / "retrieval.md").write_text("# Retrieval\n\nThis is a sample document about vector retrieval.")
    (folder / "garden.txt").write_text("Tomatoes want sun, water and patience.")
    return folder


def _register(client: TestClient, folder: Path, **extra) -> dict:
    resp = client.post("/sources", json={"uri": str(folder), "workspace_label": "eng", **extra}, headers=ACME)
    assert resp.status_code == 201
    return resp.json()


def _ingest(client: TestClient, source_id: str) -> dict:
    resp = client.post("/ingest", json={"source_id": source_id}, headers=ACME)
    assert resp.status_code == 202
    return resp.json()


def test_health(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["ok"] is True


def test_ingest_and_query_flow(client: TestClient, docs: Path) -> None:
    source = _register(client, docs)
    assert source["uri"].startswith("file://")
    assert source["tenant_id"] == "acme"

    job = _ingest(client, source["id"])
    job_resp = client.get(f"/jobs/{job['id']}", headers=ACME)
    assert job_resp.status_code == 200
    status = job_resp.json()
    assert status["status"] == "completed"
    assert status["stats"]["documents"] == 2
    assert status["stats"]["errors"] == 0

    query_resp = client.post("/query", json={"query": "vector retrieval", "k": 1}, headers=ACME)
    assert query_resp.status_code == 200
    payload = query_resp.json()
    assert payload["tenant_id"] == "acme"
    assert len(payload["results"]) == 1
    top = payload["results"][0]
    assert "retrieval" in top["text"]
    assert top["provenance"]["source_id"] == source["id"]

    other_tenant = client.post("/query", json={"query": "vector retrieval"}, headers={"X-Tenant-Id": "globex"})
    assert other_tenant.json()["results"] == []

    listed = client.get("/sources", headers=ACME).json()
    assert [item["id"] for item in listed] == [source["id"]]
    assert listed[0]["last_synced_at"] is not None


def test_query_filters_by_workspace(client: TestClient, docs: Path) -> None:
    source = _register(client, docs)
    _ingest(client, source["id"])
    resp = client.post(
        "/query",
        json={"query": "retrieval", "filters": {"workspace_label": "sales"}},
        headers=ACME,
    )
    assert resp.json()["results"] == []


def test_jobs_are_tenant_scoped(client: TestClient, docs: Path) -> None:
    source = _register(client, docs)
    job = _ingest(client, source["id"])
    assert client.get(f"/jobs/{job['id']}", headers={"X-Tenant-Id": "globex"}).status_code == 404


def test_ingest_unknown_source(client: TestClient) -> None:
    resp = client.post("/ingest", json={"source_id": "src-missing"}, headers=ACME)
    assert resp.status_code == 404


def test_unknown_job(client: TestClient) -> None:
    assert client.get("/jobs/job-missing", headers=ACME).status_code == 404


def test_cancel_completed_job_conflicts(client: TestClient, docs: Path) -> None:
    source = _register(client, docs)
    job = _ingest(client, source["id"])
    resp = client.post(f"/jobs/{job['id']}/cancel", headers=ACME)
    assert resp.status_code == 409


def test_unsupported_source_type(client: TestClient) -> None:
    resp = client.post("/sources", json={"uri": "x", "source_type": "ftp"}, headers=ACME)
    assert resp.status_code == 422


def test_removed_source_leaves_orphans_until_reconciled(client: TestClient, docs: Path) -> None:
    source = _register(client, docs)
    _ingest(client, source["id"])
    assert client.delete(f"/sources/{source['id']}", headers=ACME).status_code == 200

    report = client.get("/orphans", params={"tenant": "acme"}).json()
    assert len(report["document_ids"]) == 2
    assert report["chunk_count"] == 2

    preview = client.post("/orphans/reconcile", json={"dry_run": True}).json()
    assert preview["dry_run"] is True
    assert preview["deleted_chunks"] == 0
    assert preview["report"]["chunk_count"] == 2

    applied = client.post("/orphans/reconcile", json={"dry_run": False}).json()
    assert applied["deleted_vectors"] == 2
    assert applied["deleted_chunks"] == 2
    assert applied["deleted_documents"] == 2

    after = client.post("/query", json={"query": "retrieval"}, headers=ACME).json()
    assert after["results"] == []


def test_delete_source_of_other_tenant(client: TestClient, docs: Path) -> None:
    source = _register(client, docs)
    assert client.delete(f"/sources/{source['id']}", headers={"X-Tenant-Id": "globex"}).status_code == 404


def test_reindex_document(client: TestClient, docs: Path) -> None:
    source = _register(client, docs)
    _ingest(client, source["id"])
    document_id = client.post("/query", json={"query": "retrieval", "k": 1}, headers=ACME).json()["results"][0][
        "document_id"
    ]

    resp = client.post(f"/documents/{document_id}/reindex", headers=ACME)
    assert resp.status_code == 202
    assert resp.json() == {"document_id": document_id, "status": "queued"}

    results = client.post("/query", json={"query": "retrieval", "k": 1}, headers=ACME).json()["results"]
    assert results[0]["document_id"] == document_id

    assert client.post("/documents/doc-missing/reindex", headers=ACME).status_code == 404


def test_stale_vector_purge_dry_run(client: TestClient) -> None:
    resp = client.post("/vectors/stale/purge", json={})
    assert resp.status_code == 200
    assert resp.json() == {"dry_run": True, "found": 0, "deleted": 0, "vector_ids": []}


def test_metrics_endpoint(client: TestClient) -> None:
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "kh_" in resp.text
