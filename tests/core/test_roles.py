from __future__ import annotations

import pytest

from app.core.roles import (
    ROLE_HIERARCHY,
    ROLE_PERMISSIONS,
    Permission,
    Role,
    can_manage_role,
    has_all_permissions,
    has_any_permission,
    has_permission,
    parse_role,
    permissions_for,
    role_from_legacy_flags,
)


def test_every_role_has_a_permission_set() -> None:
    assert set(ROLE_PERMISSIONS) == set(Role)
    assert set(ROLE_HIERARCHY) == set(Role)


def test_unknown_role_has_no_permissions() -> None:
    assert parse_role("Wizard") is None
    assert permissions_for("Wizard") == frozenset()
    assert not has_permission(None, Permission.VIEW_DASHBOARD)


@pytest.mark.parametrize(
    ("role", "permission", "granted"),
    [
        (Role.SUPER_ADMIN, Permission.PLATFORM_DELETE_ORGANIZATION, True),
        (Role.ADMIN, Permission.PLATFORM_DELETE_ORGANIZATION, False),
        (Role.ADMIN, Permission.PLATFORM_SUSPEND_ORGANIZATION, True),
        (Role.ORG_OWNER, Permission.ORG_MANAGE_BILLING, True),
        (Role.ORG_ADMIN, Permission.ORG_MANAGE_BILLING, False),
        (Role.ORG_ADMIN, Permission.ORG_CREATE_TEAM, True),
        (Role.ORG_MEMBER, Permission.ORG_CREATE_TEAM, False),
        (Role.ORG_MEMBER, Permission.ORG_VIEW_TEAMS, True),
        (Role.ORG_ADMIN, Permission.ORG_UPDATE_SETTINGS, False),
    ],
    ids=[
        "super-admin-deletes-orgs",
        "admin-cannot-delete-orgs",
        "admin-suspends-orgs",
        "owner-manages-billing",
        "org-admin-no-billing",
        "org-admin-creates-teams",
        "member-cannot-create-teams",
        "member-views-teams",
        "org-admin-no-settings",
    ],
)
def test_permission_table(role: Role, permission: Permission, granted: bool) -> None:
    assert has_permission(role, permission) is granted


def test_any_and_all() -> None:
    perms = [Permission.ORG_CREATE_TEAM, Permission.ORG_VIEW_TEAMS]
    assert has_any_permission(Role.ORG_MEMBER, perms)
    assert not has_all_permissions(Role.ORG_MEMBER, perms)
    assert has_all_permissions(Role.ORG_ADMIN, perms)


@pytest.mark.parametrize(
    ("manager", "target", "allowed"),
    [
        (Role.SUPER_ADMIN, Role.ADMIN, True),
        (Role.ADMIN, Role.SUPER_ADMIN, False),
        (Role.ADMIN, Role.ORG_OWNER, True),
        (Role.ORG_OWNER, Role.ORG_ADMIN, True),
        (Role.ORG_OWNER, Role.ORG_OWNER, False),
        (Role.ORG_ADMIN, Role.ORG_MEMBER, True),
        (Role.ORG_ADMIN, Role.ORG_ADMIN, False),
        (Role.ORG_MEMBER, Role.ORG_MEMBER, False),
    ],
    ids=[
        "super-admin-any",
        "admin-not-super",
        "admin-org-roles",
        "owner-admins",
        "owner-not-owner",
        "org-admin-members",
        "org-admin-not-peers",
        "member-nobody",
    ],
)
def test_can_manage_role(manager: Role, target: Role, allowed: bool) -> None:
    assert can_manage_role(manager, target) is allowed


def test_legacy_flags_map_to_roles() -> None:
    assert (
        role_from_legacy_flags(is_organization_owner=True, is_organization_admin=True)
        is Role.ORG_OWNER
    )
    assert (
        role_from_legacy_flags(is_organization_owner=False, is_organization_admin=True)
        is Role.ORG_ADMIN
    )
    assert (
        role_from_legacy_flags(is_organization_owner=False, is_organization_admin=False)
        is Role.ORG_MEMBER
    )
