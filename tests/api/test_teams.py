"""Team CRUD, the trial gate, the team quota and manager/member flows."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.core.roles import Role
from app.models.organization import Plan, Usage
from app.models.team import Approval, TeamMember
from app.repos.org_repo import org_repo
from app.repos.team_repo import team_repo
from app.repos.user_repo import user_repo
from app.services.task_queue import EMAIL_QUEUE, task_queue
from tests.conftest import auth, create_org, create_team, create_user, run

BASE = "/api/v1/teams"


def _create(client: TestClient, user, name: str = "Platform", **body):
    return client.post(BASE, headers=auth(user), json={"name": name, **body})


def test_admin_creates_team(client: TestClient, org_admin, org) -> None:
    resp = _create(client, org_admin, description="Core platform")
    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["name"] == "Platform"
    assert data["organization_id"] == str(org.id)
    assert data["manager_approved"] == 0
    assert run(org_repo.get_by_id(org.id)).usage.teams == 1


def test_member_cannot_create_team(client: TestClient, member) -> None:
    resp = _create(client, member)
    assert resp.status_code == 403
    assert resp.json()["errorCode"] == "FORBIDDEN"


def test_expired_trial_blocks_creation(client: TestClient) -> None:
    org = create_org("late", trial_days=-1)
    admin = create_user("a@late.test", role=Role.ORG_ADMIN, org=org)
    resp = _create(client, admin)
    assert resp.status_code == 403
    assert resp.json()["message"] == "Your trial has expired. Please upgrade to create new teams."
    assert run(org_repo.get_by_id(org.id)).usage.teams == 0


def test_team_quota_is_enforced(client: TestClient, org_admin, org) -> None:
    for name in ("One", "Two", "Three"):
        assert _create(client, org_admin, name).status_code == 201

    resp = _create(client, org_admin, "Four")
    assert resp.status_code == 403
    assert resp.json()["message"].startswith("Team limit reached. Your free plan allows 3 teams.")
    assert run(org_repo.get_by_id(org.id)).usage.teams == 3


def test_paid_plan_raises_quota(client: TestClient) -> None:
    org = create_org("big", plan=Plan.PROFESSIONAL, teams=3)
    admin = create_user("a@big.test", role=Role.ORG_ADMIN, org=org)
    assert _create(client, admin).status_code == 201


def test_create_with_manager_updates_managed_teams(client: TestClient, org_admin, member) -> None:
    resp = _create(client, org_admin, managerId=str(member.id))
    team_id = resp.json()["data"]["id"]
    managed = run(user_repo.get_by_id(member.id)).managed_team_ids
    assert [str(t) for t in managed] == [team_id]


def test_manager_from_other_org_is_rejected(client: TestClient, org_admin) -> None:
    stranger = create_user("x@other.test", org=create_org("other"))
    resp = _create(client, org_admin, managerId=str(stranger.id))
    assert resp.status_code == 400
    assert resp.json()["message"] == "User does not belong to this organization"


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


def test_list_is_paginated_and_searchable(client: TestClient, member, org) -> None:
    for i, name in enumerate(("Alpha", "Beta", "Gamma")):
        create_team(org, name, order=i)

    resp = client.get(
        BASE, headers=auth(member), params={"limit": 2, "sort": "name", "page": 1}
    )
    body = resp.json()
    assert [t["name"] for t in body["data"]] == ["Alpha", "Beta"]
    assert body["meta"] == {"page": 1, "limit": 2, "total": 3, "totalPage": 2}

    found = client.get(BASE, headers=auth(member), params={"searchTerm": "gam"})
    assert [t["name"] for t in found.json()["data"]] == ["Gamma"]


def test_list_projects_fields(client: TestClient, member, org) -> None:
    create_team(org, "Alpha")
    resp = client.get(BASE, headers=auth(member), params={"fields": "name"})
    assert set(resp.json()["data"][0]) == {"id", "name"}


def test_list_only_shows_own_organization(client: TestClient, member, org) -> None:
    create_team(org, "Ours")
    create_team(create_org("other"), "Theirs")
    resp = client.get(BASE, headers=auth(member))
    assert [t["name"] for t in resp.json()["data"]] == ["Ours"]


def test_list_cache_is_invalidated_on_write(client: TestClient, org_admin) -> None:
    assert client.get(BASE, headers=auth(org_admin)).json()["meta"]["total"] == 0
    _create(client, org_admin)
    assert client.get(BASE, headers=auth(org_admin)).json()["meta"]["total"] == 1


# ---------------------------------------------------------------------------
# Single team
# ---------------------------------------------------------------------------


def test_member_sees_own_team_only(client: TestClient, member, org) -> None:
    mine = create_team(org, "Mine")
    run(team_repo.save(mine.with_member(TeamMember(user_id=member.id))))
    other = create_team(org, "Other")

    assert client.get(f"{BASE}/{mine.id}", headers=auth(member)).status_code == 200
    assert client.get(f"{BASE}/{other.id}", headers=auth(member)).status_code == 403


def test_manager_updates_own_team(client: TestClient, member, org) -> None:
    team = create_team(org, manager_id=member.id)
    resp = client.put(
        f"{BASE}/{team.id}", headers=auth(member), json={"name": "Renamed"}
    )
    assert resp.status_code == 200
    assert run(team_repo.get_by_id(team.id)).name == "Renamed"


def test_member_cannot_update_team(client: TestClient, member, org) -> None:
    team = create_team(org)
    resp = client.put(f"{BASE}/{team.id}", headers=auth(member), json={"name": "Nope"})
    assert resp.status_code == 403
    assert resp.json()["message"] == "Forbidden - Cannot manage this team"


def test_unknown_team_is_not_found(client: TestClient, org_admin) -> None:
    resp = client.get(f"{BASE}/00000000-0000-0000-0000-000000000000", headers=auth(org_admin))
    assert resp.status_code == 404


def test_delete_releases_quota_and_managed_link(client: TestClient, org_admin, member) -> None:
    team_id = _create(client, org_admin, managerId=str(member.id)).json()["data"]["id"]
    resp = client.delete(f"{BASE}/{team_id}", headers=auth(org_admin))
    assert resp.status_code == 200
    assert run(org_repo.get_by_id(member.organization_id)).usage.teams == 0
    assert run(user_repo.get_by_id(member.id)).managed_team_ids == ()


def test_bulk_delete_skips_foreign_teams(client: TestClient, org_admin, org) -> None:
    run(org_repo.update(org.id, usage=Usage(users=1, teams=2)))
    ours = [create_team(org, "A"), create_team(org, "B")]
    theirs = create_team(create_org("other", teams=1), "C")

    resp = client.request(
        "DELETE",
        BASE,
        headers=auth(org_admin),
        json={"ids": [str(t.id) for t in (*ours, theirs)]},
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["deletedCount"] == 2
    assert str(theirs.id) not in data["deletedIds"]
    assert run(team_repo.get_by_id(theirs.id)) is not None
    assert run(org_repo.get_by_id(org.id)).usage.teams == 0


@pytest.mark.parametrize(
    ("field", "value", "status_code"),
    [
        ("manager_approved", 1, 200),
        ("director_approved", 2, 200),
        ("manager_approved", 7, 400),
        ("budget_approved", 1, 422),
    ],
    ids=["approve", "reject", "bad-value", "bad-field"],
)
def test_set_approval(
    client: TestClient, org_admin, org, field: str, value: int, status_code: int
) -> None:
    team = create_team(org)
    resp = client.patch(
        f"{BASE}/{team.id}/status",
        headers=auth(org_admin),
        json={"field": field, "value": value},
    )
    assert resp.status_code == status_code
    if status_code == 200:
        assert getattr(run(team_repo.get_by_id(team.id)), field) is Approval(value)


def test_reorder_only_touches_own_teams(client: TestClient, org_admin, org) -> None:
    a, b = create_team(org, "A", order=0), create_team(org, "B", order=1)
    foreign = create_team(create_org("other"), "X", order=0)
    resp = client.post(
        f"{BASE}/order",
        headers=auth(org_admin),
        json=[
            {"id": str(a.id), "order": 1},
            {"id": str(b.id), "order": 0},
            {"id": str(foreign.id), "order": 9},
        ],
    )
    assert resp.json()["data"] == {"updatedCount": 2}
    assert run(team_repo.get_by_id(a.id)).order == 1
    assert run(team_repo.get_by_id(foreign.id)).order == 0


def test_member_cannot_reorder_teams(client: TestClient, member, org) -> None:
    a, b = create_team(org, "A", order=0), create_team(org, "B", order=1)
    resp = client.post(
        f"{BASE}/order",
        headers=auth(member),
        json=[{"id": str(a.id), "order": 5}, {"id": str(b.id), "order": 6}],
    )
    assert resp.status_code == 403
    assert run(team_repo.get_by_id(a.id)).order == 0
    assert run(team_repo.get_by_id(b.id)).order == 1


# ---------------------------------------------------------------------------
# Members and manager
# ---------------------------------------------------------------------------


def test_add_update_remove_member(client: TestClient, org_admin, member, org) -> None:
    team = create_team(org)
    url = f"{BASE}/{team.id}/members"

    added = client.post(url, headers=auth(org_admin), json={"userId": str(member.id)})
    assert added.status_code == 201
    templates = [t.payload["template"] for t in task_queue.pending(EMAIL_QUEUE)]
    assert "team_member_added" in templates

    duplicate = client.post(url, headers=auth(org_admin), json={"userId": str(member.id)})
    assert duplicate.status_code == 409

    lead = client.patch(f"{url}/{member.id}", headers=auth(org_admin), json={"role": "lead"})
    assert lead.json()["data"]["members"][0]["role"] == "lead"

    bad = client.patch(f"{url}/{member.id}", headers=auth(org_admin), json={"role": "boss"})
    assert bad.status_code == 400

    removed = client.delete(f"{url}/{member.id}", headers=auth(org_admin))
    assert removed.json()["data"]["members"] == []


def test_assign_manager_moves_managed_link(client: TestClient, org_admin, member, org) -> None:
    other = create_user("other@acme.test", org=org)
    team_id = _create(client, org_admin, managerId=str(member.id)).json()["data"]["id"]

    resp = client.put(
        f"{BASE}/{team_id}/manager", headers=auth(org_admin), json={"managerId": str(other.id)}
    )
    assert resp.status_code == 200
    assert run(user_repo.get_by_id(member.id)).managed_team_ids == ()
    assert [str(t) for t in run(user_repo.get_by_id(other.id)).managed_team_ids] == [team_id]
