from __future__ import annotations

from fastapi.testclient import TestClient

from guildauth.main import create_app


def test_healthz_ok() -> None:
    app = create_app()
    client = TestClient(app)
    res = client.get("/healthz")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_readyz_checks_database_cache() -> None:
    client = TestClient(create_app())
    res = client.get("/readyz")
    assert res.status_code == 200
    assert res.json() == {"status": "ready", "cache": "database"}


def test_security_headers_and_request_id() -> None:
    client = TestClient(create_app())

    res = client.get("/healthz", headers={"x-request-id": "req-123"})
    assert res.headers["x-request-id"] == "req-123"
    assert res.headers["x-content-type-options"] == "nosniff"
    assert res.headers["x-frame-options"] == "DENY"

    generated = client.get("/healthz")
    assert generated.headers["x-request-id"]
