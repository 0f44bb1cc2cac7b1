"""Domain errors map to one status code and one envelope shape."""

from __future__ import annotations

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from pydantic import BaseModel

from app.core.errors import (
    BadRequest,
    Conflict,
    DomainError,
    Forbidden,
    NotFound,
    PaymentRequired,
    ServiceUnavailable,
    Unauthenticated,
    register_exception_handlers,
)


class _Body(BaseModel):
    name: str


def _app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/raise/{kind}")
    def _raise(kind: str) -> None:
        errors: dict[str, DomainError] = {
            "unauthenticated": Unauthenticated("No token provided"),
            "forbidden": Forbidden("Forbidden"),
            "not-found": NotFound("Team not found"),
            "bad-request": BadRequest("Invalid slug"),
            "conflict": Conflict("Email already registered"),
            "payment": PaymentRequired("Upgrade required", data={"plan": "free"}),
            "unavailable": ServiceUnavailable("Billing is not configured"),
        }
        raise errors[kind]

    @app.get("/http")
    def _http() -> None:
        raise HTTPException(status_code=418, detail="I'm a teapot")

    @app.post("/validate")
    def _validate(body: _Body) -> dict:
        return {"name": body.name}

    return app


@pytest.fixture
def error_client() -> TestClient:
    return TestClient(_app())


@pytest.mark.parametrize(
    ("kind", "status_code", "code"),
    [
        ("unauthenticated", 401, "UNAUTHENTICATED"),
        ("forbidden", 403, "FORBIDDEN"),
        ("not-found", 404, "NOT_FOUND"),
        ("bad-request", 400, "BAD_REQUEST"),
        ("conflict", 409, "CONFLICT"),
        ("payment", 402, "PAYMENT_REQUIRED"),
        ("unavailable", 503, "SERVICE_UNAVAILABLE"),
    ],
    ids=lambda v: str(v),
)
def test_domain_errors_map_to_status(
    error_client: TestClient, kind: str, status_code: int, code: str
) -> None:
    resp = error_client.get(f"/raise/{kind}")
    assert resp.status_code == status_code
    body = resp.json()
    assert body["success"] is False
    assert body["errorCode"] == code
    assert "requestId" in body


def test_unauthenticated_sets_challenge_header(error_client: TestClient) -> None:
    resp = error_client.get("/raise/unauthenticated")
    assert resp.headers["www-authenticate"] == "Bearer"
    assert resp.json()["message"] == "No token provided"


def test_error_data_is_included_when_given(error_client: TestClient) -> None:
    assert error_client.get("/raise/payment").json()["data"] == {"plan": "free"}
    assert "data" not in error_client.get("/raise/forbidden").json()


def test_http_exception_uses_detail_as_message(error_client: TestClient) -> None:
    resp = error_client.get("/http")
    assert resp.status_code == 418
    assert resp.json()["errorCode"] == "HTTP_418"
    assert resp.json()["message"] == "I'm a teapot"


def test_unknown_route_uses_envelope(error_client: TestClient) -> None:
    resp = error_client.get("/nowhere")
    assert resp.status_code == 404
    assert resp.json()["errorCode"] == "HTTP_404"


def test_validation_errors_list_the_fields(error_client: TestClient) -> None:
    resp = error_client.post("/validate", json={})
    assert resp.status_code == 422
    body = resp.json()
    assert body["errorCode"] == "VALIDATION_ERROR"
    assert body["data"]["errors"][0]["loc"] == ["body", "name"]
