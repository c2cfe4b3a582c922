"""
Tests for the FastAPI backend.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import pytest

fastapi = pytest.importorskip("fastapi")
from fastapi.testclient import TestClient

from backend import main


@pytest.fixture
def client(monkeypatch, tmp_path):
    monkeypatch.setattr(main, "_last_scan", None)
    monkeypatch.setattr(main, "EXPORT_DIR", tmp_path / "exports")
    return TestClient(main.app)


@pytest.fixture
def scan_dir(tmp_path, write_file):
    root = tmp_path / "data"
    write_file(root / "a.txt", b"duplicate")
    write_file(root / "nested" / "b.txt", b"duplicate")
    write_file(root / "c.txt", b"unique")
    return root


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_scan_returns_groups(client, scan_dir):
    response = client.post("/scan", json={"path": str(scan_dir)})

    assert response.status_code == 200
    data = response.json()
    assert data["files_processed"] == 3
    assert data["interrupted"] is False
    assert data["skipped"] == []
    assert len(data["groups"]) == 1
    assert set(data["groups"][0]["files"]) == {
        str((scan_dir / "a.txt").resolve()),
        str((scan_dir / "nested" / "b.txt").resolve()),
    }
    assert data["stats"]["total_duplicate_groups"] == 1
    assert data["stats"]["wasted_size_bytes"] == len(b"duplicate")


def test_scan_missing_path_returns_404(client, tmp_path):
    response = client.post("/scan", json={"path": str(tmp_path / "missing")})
    assert response.status_code == 404


def test_scan_file_path_returns_400(client, tmp_path, write_file):
    path = write_file(tmp_path / "file.txt", b"x")
    response = client.post("/scan", json={"path": str(path)})
    assert response.status_code == 400


def test_stats_and_export_require_a_scan(client):
    assert client.get("/stats").status_code == 404
    assert client.get("/export").status_code == 404


def test_stats_after_scan(client, scan_dir):
    scan = client.post("/scan", json={"path": str(scan_dir)}).json()

    response = client.get("/stats")

    assert response.status_code == 200
    data = response.json()
    assert data["scan_id"] == scan["scan_id"]
    assert data["duplicate_groups"] == 1
    assert data["files_processed"] == 3
    assert data["files_skipped"] == 0


def test_export_returns_json_report(client, scan_dir):
    scan = client.post("/scan", json={"path": str(scan_dir)}).json()

    response = client.get("/export")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/json")
    assert response.json() == scan["groups"]


def test_scan_unreadable_root_returns_403(client, scan_dir, monkeypatch):
    real_scandir = os.scandir

    def fake_scandir(path):
        if Path(path).resolve() == scan_dir.resolve():
            raise PermissionError(13, "Permission denied", str(path))
        return real_scandir(path)

    monkeypatch.setattr(os, "scandir", fake_scandir)

    response = client.post("/scan", json={"path": str(scan_dir)})

    assert response.status_code == 403
    assert "Cannot read directory" in response.json()["detail"]


def test_export_logs_with_the_stored_scan_context(client, scan_dir, monkeypatch, caplog):
    scan = client.post("/scan", json={"path": str(scan_dir)}).json()
    monkeypatch.setattr(main._scanner, "_last_scan_context", {"scan_id": "other", "component": "library"})

    with caplog.at_level(logging.INFO, logger=main.LOGGER_NAME):
        response = client.get("/export")

    assert response.status_code == 200
    payloads = [getattr(record, "log_payload", {}) for record in caplog.records]
    exported = [payload for payload in payloads if payload.get("event") == "export_completed"]
    assert len(exported) == 1
    assert exported[0]["scan_id"] == scan["scan_id"]
    assert exported[0]["root_dir"] == str(scan_dir.resolve())
