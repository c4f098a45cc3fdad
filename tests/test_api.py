"""Tests for the HTTP API, with the lifecycle wired to fakes."""

from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

import blockhead.main
from blockhead import models


@pytest.fixture
def client(lifecycle, monkeypatch) -> TestClient:
    monkeypatch.setattr(blockhead.main, "lifecycle", lifecycle)
    # No context manager: the lifespan would resume real processes
    return TestClient(blockhead.main.app)


def _payload(tmp_path: Path, domain: str = "a.test", **extra) -> dict:
    return {"domain": domain, "repo": "https://git.example/a.git", "root": str(tmp_path / "www" / domain), **extra}


class TestCreateSite:
    def test_create(self, client: TestClient, tmp_path: Path, fake_gateway):
        response = client.post("/api/sites", json=_payload(tmp_path))
        assert response.status_code == 201
        body = response.json()
        assert body["domain"] == "a.test"
        assert body["warnings"] == []
        assert "Repository cloned" in body["log"]
        assert fake_gateway.enabled == ["a.test"]

    def test_duplicate(self, client: TestClient, tmp_path: Path):
        client.post("/api/sites", json=_payload(tmp_path))
        response = client.post("/api/sites", json=_payload(tmp_path))
        assert response.status_code == 409
        assert response.json() == {
            "error": "DuplicateDomain",
            "detail": "Domain a.test already exists",
            "remediation": None,
        }

    def test_invalid_domain(self, client: TestClient, tmp_path: Path, fake_source):
        response = client.post("/api/sites", json=_payload(tmp_path, domain="bad domain"))
        assert response.status_code == 400
        assert response.json()["error"] == "InvalidDomain"
        assert fake_source.clones == []

    def test_non_empty_root_remediation(self, client: TestClient, tmp_path: Path):
        root = tmp_path / "www" / "a.test"
        root.mkdir(parents=True)
        (root / "old.txt").write_text("x")
        response = client.post("/api/sites", json=_payload(tmp_path))
        assert response.status_code == 409
        assert response.json()["remediation"].startswith("rm -rf ")

    def test_overwrite(self, client: TestClient, tmp_path: Path):
        root = tmp_path / "www" / "a.test"
        root.mkdir(parents=True)
        (root / "old.txt").write_text("x")
        response = client.post("/api/sites", json=_payload(tmp_path, overwrite=True))
        assert response.status_code == 201
        assert not (root / "old.txt").exists()

    def test_bad_port(self, client: TestClient, tmp_path: Path):
        response = client.post("/api/sites", json=_payload(tmp_path, port=0))
        assert response.status_code == 422

    def test_unsafe_root(self, client: TestClient, fake_source):
        payload = {"domain": "x.test", "repo": "r", "root": "/var/www/x; include /etc/shadow"}
        response = client.post("/api/sites", json=payload)
        assert response.status_code == 422
        assert fake_source.clones == []

    def test_clone_failure(self, client: TestClient, tmp_path: Path, fake_source):
        fake_source.clone_result = (False, "fatal: could not read from remote repository")
        response = client.post("/api/sites", json=_payload(tmp_path))
        assert response.status_code == 502
        assert "could not read from remote repository" in response.json()["detail"]


class TestSiteOperations:
    def test_update_unknown(self, client: TestClient, fake_source):
        response = client.post("/api/sites/missing.test/update")
        assert response.status_code == 404
        assert fake_source.pulls == []

    def test_update(self, client: TestClient, tmp_path: Path, fake_source):
        client.post("/api/sites", json=_payload(tmp_path))
        response = client.post("/api/sites/a.test/update")
        assert response.status_code == 200
        assert response.json()["message"] == "Site a.test updated"

    def test_delete(self, client: TestClient, tmp_path: Path, lifecycle):
        client.post("/api/sites", json=_payload(tmp_path))
        assert client.delete("/api/sites/a.test").status_code == 200
        assert lifecycle.store.list() == []
        assert client.delete("/api/sites/a.test").status_code == 404

    def test_delete_teardown(self, client: TestClient, tmp_path: Path, fake_gateway):
        client.post("/api/sites", json=_payload(tmp_path))
        response = client.delete("/api/sites/a.test", params={"teardown": True})
        assert response.status_code == 200
        assert fake_gateway.disabled == ["a.test"]

    def test_run_and_stop(self, client: TestClient, tmp_path: Path, fake_supervisor):
        client.post("/api/sites", json=_payload(tmp_path, port=3001))
        response = client.post("/api/sites/a.test/run", json={"command": "node app.js"})
        assert response.status_code == 200
        assert fake_supervisor.starts[-1].command == "node app.js"

        response = client.post("/api/sites/a.test/stop")
        assert response.json()["message"] == "Stopped a.test"

    def test_run_without_body(self, client: TestClient, tmp_path: Path, fake_supervisor):
        client.post("/api/sites", json=_payload(tmp_path, port=3001, start_command="./serve"))
        response = client.post("/api/sites/a.test/run")
        assert response.status_code == 200
        assert fake_supervisor.starts[-1].command == "./serve"

    def test_fix_failure(self, client: TestClient, tmp_path: Path, fake_gateway):
        client.post("/api/sites", json=_payload(tmp_path))
        fake_gateway.enable_result = (False, "Nginx reload failed for a.test:\nnginx: [emerg] bad")
        response = client.post("/api/sites/a.test/fix")
        assert response.status_code == 502
        body = response.json()
        assert body["error"] == "ReloadFailure"
        assert body["remediation"] == "sudo bash enable_site.sh a.test"


class TestReadEndpoints:
    def test_config(self, client: TestClient, tmp_path: Path):
        client.post("/api/sites", json=_payload(tmp_path, port=3001))
        response = client.get("/api/sites/a.test/config")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "proxy_pass http://127.0.0.1:3001;" in response.text

    def test_config_missing(self, client: TestClient):
        assert client.get("/api/sites/none.test/config").status_code == 404

    def test_logs(self, client: TestClient):
        models.record("a.test", "info", "first")
        models.record("a.test", "error", "second")
        models.record("b.test", "info", "other")

        entries = client.get("/api/sites/a.test/logs").json()
        assert [e["message"] for e in entries] == ["second", "first"]

        errors = client.get("/api/sites/a.test/logs", params={"level": "error"}).json()
        assert [e["message"] for e in errors] == ["second"]

    def test_logs_invalid_domain(self, client: TestClient):
        assert client.get("/api/sites/a.test;id/logs").status_code == 400

    def test_status(self, client: TestClient, tmp_path: Path):
        client.post("/api/sites", json=_payload(tmp_path, port=3001, start_command="./serve"))
        body = client.get("/api/status").json()
        assert body["total"] == 1
        assert body["running"] == 1
        assert "server_ip" in body

    def test_site_status_unknown(self, client: TestClient):
        assert client.get("/api/sites/missing.test/status").status_code == 404

    def test_backup_download(self, client: TestClient, tmp_path: Path):
        client.post("/api/sites", json=_payload(tmp_path))
        response = client.post("/api/sites/a.test/backup")
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/zip"
        assert response.content[:2] == b"PK"
