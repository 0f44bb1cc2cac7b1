"""One tenant can never read or change another tenant's data."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.core.roles import Role
from app.repos.invitation_repo import invitation_repo
from app.repos.team_repo import team_repo
from tests.conftest import auth, create_org, create_team, create_user, run


@pytest.fixture
def other_org():
    return create_org("globex")


@pytest.fixture
def other_owner(other_org):
    return create_user("boss@globex.test", role=Role.ORG_OWNER, org=other_org)


@pytest.mark.parametrize(
    ("method", "path"),
    [
        ("GET", "/api/v1/organizations/{org}"),
        ("PATCH", "/api/v1/organizations/{org}"),
        ("GET", "/api/v1/organizations/{org}/usage"),
        ("POST", "/api/v1/organizations/{org}/upgrade"),
        ("GET", "/api/v1/organizations/{org}/members"),
    ],
    ids=["read", "update", "usage", "upgrade", "members"],
)
def test_foreign_organization_routes_are_forbidden(
    client: TestClient, owner, org, other_owner, method: str, path: str
) -> None:
    body = {"plan": "professional"} if path.endswith("upgrade") else {"name": "Hijacked"}
    resp = client.request(
        method, path.format(org=org.id), headers=auth(other_owner), json=body
    )
    assert resp.status_code == 403
    assert resp.json()["message"] == "You can only access your own organization"


@pytest.mark.parametrize(
    ("method", "suffix"),
    [
        ("GET", ""),
        ("PUT", ""),
        ("DELETE", ""),
        ("PATCH", "/status"),
        ("PUT", "/manager"),
        ("POST", "/members"),
    ],
    ids=["read", "update", "delete", "status", "manager", "add-member"],
)
def test_foreign_team_routes_are_forbidden(
    client: TestClient, org, other_owner, method: str, suffix: str
) -> None:
    team = create_team(org)
    body = {
        "name": "Hijacked",
        "field": "manager_approved",
        "value": 1,
        "managerId": str(other_owner.id),
        "userId": str(other_owner.id),
    }
    resp = client.request(
        method, f"/api/v1/teams/{team.id}{suffix}", headers=auth(other_owner), json=body
    )
    assert resp.status_code == 403
    assert resp.json()["message"] == "Cannot access teams from other organizations"
    assert run(team_repo.get_by_id(team.id)) == team


def test_foreign_invitation_lists_are_disjoint(client: TestClient, org_admin, other_owner) -> None:
    client.post(
        "/api/v1/invitations", headers=auth(org_admin), json={"email": "a@acme.test"}
    )
    client.post(
        "/api/v1/invitations", headers=auth(other_owner), json={"email": "b@globex.test"}
    )
    mine = client.get("/api/v1/invitations", headers=auth(other_owner)).json()["data"]
    assert [i["email"] for i in mine] == ["b@globex.test"]


def test_foreign_invitation_cannot_be_resent(client: TestClient, org_admin, other_owner) -> None:
    inv_id = client.post(
        "/api/v1/invitations", headers=auth(org_admin), json={"email": "a@acme.test"}
    ).json()["data"]["id"]
    resp = client.post(f"/api/v1/invitations/{inv_id}/resend", headers=auth(other_owner))
    assert resp.status_code == 404
    assert len(run(invitation_repo.list_by_organization(org_admin.organization_id))) == 1


def test_platform_admin_crosses_tenants(client: TestClient, super_admin, org) -> None:
    resp = client.get(f"/api/v1/organizations/{org.id}", headers=auth(super_admin))
    assert resp.status_code == 200


def test_admin_with_organization_is_scoped(client: TestClient, org, other_org) -> None:
    scoped = create_user("ops@globex.test", role=Role.ADMIN, org=other_org)
    resp = client.get(f"/api/v1/organizations/{org.id}", headers=auth(scoped))
    assert resp.status_code == 403
