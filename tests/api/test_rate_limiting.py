from __future__ import annotations

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from app.api import ratelimit
from app.services import rate_limiter as rate_limiter_module
from app.services.rate_limiter import InMemoryRateLimiter, RateLimitConfig
from tests.conftest import auth, run

TIGHT = RateLimitConfig(capacity=2, refill_rate=0.01)


@pytest.fixture
def tight_limit(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(ratelimit, "default_config", lambda: TIGHT)


def test_burst_then_429_with_retry_after(client: TestClient, tight_limit) -> None:
    url = "/api/v1/organizations/check-slug"
    assert client.get(url, params={"slug": "a1"}).status_code == 200
    assert client.get(url, params={"slug": "a2"}).status_code == 200

    resp = client.get(url, params={"slug": "a3"})
    assert resp.status_code == 429
    assert resp.json()["message"] == "Too many requests, please try again later."
    assert int(resp.headers["Retry-After"]) >= 1
    assert resp.headers["X-RateLimit-Remaining"] == "0"


def test_authenticated_callers_have_own_buckets(
    client: TestClient, tight_limit, owner, member
) -> None:
    for _ in range(2):
        client.get("/api/v1/auth/me", headers=auth(owner))
    assert client.get("/api/v1/auth/me", headers=auth(owner)).status_code == 429
    assert client.get("/api/v1/auth/me", headers=auth(member)).status_code == 200


def test_health_is_not_rate_limited(client: TestClient, tight_limit) -> None:
    for _ in range(5):
        assert client.get("/health").status_code == 200


def test_bucket_refills_over_time(monkeypatch: pytest.MonkeyPatch) -> None:
    limiter = InMemoryRateLimiter()
    clock = iter([0.0, 0.0, 0.0, 150.0])
    monkeypatch.setattr(rate_limiter_module, "time", SimpleNamespace(monotonic=lambda: next(clock)))

    assert run(limiter.check("k", TIGHT)).allowed
    assert run(limiter.check("k", TIGHT)).allowed
    denied = run(limiter.check("k", TIGHT))
    assert not denied.allowed
    assert denied.retry_after == pytest.approx(100.0)
    assert run(limiter.check("k", TIGHT)).allowed


def test_client_key_prefers_token_subject(owner) -> None:
    headers = [(b"authorization", auth(owner)["Authorization"].encode())]
    request = Request({"type": "http", "headers": headers, "client": ("1.2.3.4", 1)})
    assert ratelimit.client_key(request) == f"user:{owner.id}"

    anonymous = Request({"type": "http", "headers": [], "client": ("1.2.3.4", 1)})
    assert ratelimit.client_key(anonymous) == "ip:1.2.3.4"
