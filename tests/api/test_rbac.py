"""Role x endpoint matrix: which roles get past the permission checks."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.core.roles import Role
from app.models.organization import Plan
from tests.conftest import auth, create_org, create_user

ORG_ROLES = (Role.ORG_OWNER, Role.ORG_ADMIN, Role.ORG_MEMBER)

# (method, path, body, roles allowed past the permission check)
MATRIX = [
    ("POST", "/api/v1/teams", {"name": "T"}, {Role.ORG_OWNER, Role.ORG_ADMIN}),
    ("GET", "/api/v1/teams", None, set(ORG_ROLES)),
    (
        "POST",
        "/api/v1/teams/order",
        [{"id": "00000000-0000-0000-0000-000000000001", "order": 0}],
        {Role.ORG_OWNER, Role.ORG_ADMIN},
    ),
    ("GET", "/api/v1/invitations", None, {Role.ORG_OWNER, Role.ORG_ADMIN}),
    ("POST", "/api/v1/invitations", {"email": "x@new.test"}, {Role.ORG_OWNER, Role.ORG_ADMIN}),
    ("GET", "/api/v1/analytics/summary", None, {Role.ORG_OWNER, Role.ORG_ADMIN}),
    ("GET", "/api/v1/billing/subscription", None, {Role.ORG_OWNER}),
    ("GET", "/api/v1/organizations/{org}/members", None, set(ORG_ROLES)),
    ("PATCH", "/api/v1/organizations/{org}", {"name": "New name"}, {Role.ORG_OWNER}),
    ("GET", "/api/v1/admin/organizations", None, set()),
    ("GET", "/api/v1/admin/users", None, set()),
    (
        "PATCH",
        "/api/v1/admin/users/00000000-0000-0000-0000-000000000001/status",
        {"isActive": False},
        set(),
    ),
    ("DELETE", "/api/v1/admin/users/00000000-0000-0000-0000-000000000001", None, set()),
    ("GET", "/api/v1/notifications", None, set(ORG_ROLES)),
]


@pytest.mark.parametrize("role", ORG_ROLES, ids=[r.value for r in ORG_ROLES])
@pytest.mark.parametrize(
    ("method", "path", "body", "allowed"),
    MATRIX,
    ids=[f"{m} {p}" for m, p, _, _ in MATRIX],
)
def test_org_role_matrix(
    client: TestClient, role: Role, method: str, path: str, body, allowed: set
) -> None:
    org = create_org("matrix", plan=Plan.PROFESSIONAL)
    user = create_user(f"{role.value.lower()}@matrix.test", role=role, org=org)

    resp = client.request(method, path.format(org=org.id), headers=auth(user), json=body)

    if role in allowed:
        assert resp.status_code < 400, resp.text
    else:
        assert resp.status_code == 403, resp.text


@pytest.mark.parametrize(
    ("role", "path", "status_code"),
    [
        (Role.SUPER_ADMIN, "/api/v1/admin/organizations", 200),
        (Role.ADMIN, "/api/v1/admin/organizations", 200),
        (Role.SUPER_ADMIN, "/api/v1/admin/users", 200),
        (Role.ADMIN, "/api/v1/admin/users", 200),
        (Role.SUPER_ADMIN, "/api/v1/teams", 400),
    ],
    ids=["super-orgs", "admin-orgs", "super-users", "admin-users", "super-no-tenant"],
)
def test_platform_roles(client: TestClient, role: Role, path: str, status_code: int) -> None:
    user = create_user("platform@matrix.test", role=role)
    resp = client.get(path, headers=auth(user))
    assert resp.status_code == status_code


def test_unauthenticated_everywhere(client: TestClient) -> None:
    for method, path, body, _ in MATRIX:
        resp = client.request(
            method, path.format(org="00000000-0000-0000-0000-000000000000"), json=body
        )
        assert resp.status_code == 401, path
