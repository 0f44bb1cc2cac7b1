"""X-Request-ID propagation and the per-request summary log line."""

from __future__ import annotations

import logging
import uuid

import pytest
from fastapi.testclient import TestClient


def test_request_id_generated_when_not_provided(client: TestClient) -> None:
    resp = client.get("/health")
    uuid.UUID(resp.headers["x-request-id"])


def test_request_id_echoed_when_provided(client: TestClient) -> None:
    resp = client.get("/health", headers={"X-Request-ID": "req-abc-123"})
    assert resp.headers["x-request-id"] == "req-abc-123"


def test_error_body_carries_the_same_request_id(client: TestClient) -> None:
    """Clients quote requestId from the body; it must match the header."""
    resp = client.get("/api/v1/auth/me", headers={"X-Request-ID": "trace-401"})
    assert resp.status_code == 401
    assert resp.headers["x-request-id"] == "trace-401"
    assert resp.json()["requestId"] == "trace-401"


def test_validation_error_carries_generated_request_id(client: TestClient) -> None:
    resp = client.post("/api/v1/auth/login", json={"email": "not-an-email"})
    assert resp.status_code == 422
    assert resp.json()["requestId"] == resp.headers["x-request-id"]


def test_completion_is_logged_with_context(
    client: TestClient, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.INFO, logger="app.middleware.request_context"):
        client.get("/health", headers={"X-Request-ID": "log-me"})

    records = [r for r in caplog.records if r.name == "app.middleware.request_context"]
    assert records
    record = records[-1]
    assert record.request_id == "log-me"  # type: ignore[attr-defined]
    assert record.path == "/health"  # type: ignore[attr-defined]
    assert record.status_code == 200  # type: ignore[attr-defined]
    assert "GET /health" in record.getMessage()


def test_passwords_never_reach_the_log(
    client: TestClient, caplog: pytest.LogCaptureFixture, owner
) -> None:
    secret = "never-log-this-1"
    with caplog.at_level(logging.DEBUG):
        client.post(
            "/api/v1/auth/login", json={"email": owner.email, "password": secret}
        )
    assert secret not in " ".join(caplog.messages)
