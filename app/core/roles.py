"""Roles, permissions and the static role → permission table.

Five roles in one canonical model:

    SuperAdmin, Admin                 platform roles (no organization)
    OrgOwner, OrgAdmin, OrgMember     organization roles

The table is built once at import and exposed read-only
(MappingProxyType of frozensets). A role missing from the table has no
permissions.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum
from types import MappingProxyType


class Role(StrEnum):
    SUPER_ADMIN = "SuperAdmin"
    ADMIN = "Admin"
    ORG_OWNER = "OrgOwner"
    ORG_ADMIN = "OrgAdmin"
    ORG_MEMBER = "OrgMember"


class Permission(StrEnum):
    # platform: organizations
    PLATFORM_VIEW_ALL_ORGANIZATIONS = "platform:view_all_organizations"
    PLATFORM_CREATE_ORGANIZATION = "platform:create_organization"
    PLATFORM_UPDATE_ORGANIZATION = "platform:update_organization"
    PLATFORM_DELETE_ORGANIZATION = "platform:delete_organization"
    PLATFORM_SUSPEND_ORGANIZATION = "platform:suspend_organization"
    # platform: users
    PLATFORM_VIEW_ALL_USERS = "platform:view_all_users"
    PLATFORM_CREATE_ADMIN = "platform:create_admin"
    PLATFORM_UPDATE_USER_ROLE = "platform:update_user_role"
    PLATFORM_UPDATE_USER_STATUS = "platform:update_user_status"
    PLATFORM_DELETE_USER = "platform:delete_user"
    # platform: analytics and settings
    PLATFORM_VIEW_ANALYTICS = "platform:view_analytics"
    PLATFORM_VIEW_REPORTS = "platform:view_reports"
    PLATFORM_EXPORT_DATA = "platform:export_data"
    PLATFORM_MANAGE_SETTINGS = "platform:manage_settings"
    PLATFORM_MANAGE_BILLING_PLANS = "platform:manage_billing_plans"

    # organization
    ORG_VIEW_SETTINGS = "org:view_settings"
    ORG_UPDATE_SETTINGS = "org:update_settings"
    ORG_DELETE_ORGANIZATION = "org:delete_organization"
    ORG_VIEW_BILLING = "org:view_billing"
    ORG_MANAGE_BILLING = "org:manage_billing"
    ORG_UPGRADE_PLAN = "org:upgrade_plan"
    ORG_CANCEL_SUBSCRIPTION = "org:cancel_subscription"
    ORG_VIEW_MEMBERS = "org:view_members"
    ORG_INVITE_MEMBERS = "org:invite_members"
    ORG_UPDATE_MEMBER_ROLE = "org:update_member_role"
    ORG_REMOVE_MEMBERS = "org:remove_members"
    ORG_MANAGE_ADMINS = "org:manage_admins"
    ORG_VIEW_TEAMS = "org:view_teams"
    ORG_CREATE_TEAM = "org:create_team"
    ORG_UPDATE_TEAM = "org:update_team"
    ORG_DELETE_TEAM = "org:delete_team"
    ORG_MANAGE_TEAM_MEMBERS = "org:manage_team_members"
    ORG_VIEW_INVITATIONS = "org:view_invitations"
    ORG_SEND_INVITATIONS = "org:send_invitations"
    ORG_CANCEL_INVITATIONS = "org:cancel_invitations"
    ORG_VIEW_ANALYTICS = "org:view_analytics"
    ORG_VIEW_REPORTS = "org:view_reports"
    ORG_EXPORT_REPORTS = "org:export_reports"

    # team
    TEAM_VIEW_OWN = "team:view_own"
    TEAM_UPDATE_OWN = "team:update_own"
    TEAM_VIEW_MEMBERS = "team:view_members"

    # general
    VIEW_DASHBOARD = "view_dashboard"
    VIEW_PROFILE = "view_profile"
    UPDATE_PROFILE = "update_profile"


P = Permission

_GENERAL = (P.VIEW_DASHBOARD, P.VIEW_PROFILE, P.UPDATE_PROFILE)
_TEAM_OWN = (P.TEAM_VIEW_OWN, P.TEAM_UPDATE_OWN, P.TEAM_VIEW_MEMBERS)

_ORG_ADMIN_PERMISSIONS = (
    P.ORG_VIEW_SETTINGS,
    P.ORG_VIEW_MEMBERS,
    P.ORG_INVITE_MEMBERS,
    P.ORG_UPDATE_MEMBER_ROLE,
    P.ORG_REMOVE_MEMBERS,
    P.ORG_VIEW_TEAMS,
    P.ORG_CREATE_TEAM,
    P.ORG_UPDATE_TEAM,
    P.ORG_DELETE_TEAM,
    P.ORG_MANAGE_TEAM_MEMBERS,
    P.ORG_VIEW_INVITATIONS,
    P.ORG_SEND_INVITATIONS,
    P.ORG_CANCEL_INVITATIONS,
    P.ORG_VIEW_ANALYTICS,
    P.ORG_VIEW_REPORTS,
)

ROLE_PERMISSIONS: MappingProxyType[Role, frozenset[Permission]] = MappingProxyType(
    {
        Role.SUPER_ADMIN: frozenset(
            (
                P.PLATFORM_VIEW_ALL_ORGANIZATIONS,
                P.PLATFORM_CREATE_ORGANIZATION,
                P.PLATFORM_UPDATE_ORGANIZATION,
                P.PLATFORM_DELETE_ORGANIZATION,
                P.PLATFORM_SUSPEND_ORGANIZATION,
                P.PLATFORM_VIEW_ALL_USERS,
                P.PLATFORM_CREATE_ADMIN,
                P.PLATFORM_UPDATE_USER_ROLE,
                P.PLATFORM_UPDATE_USER_STATUS,
                P.PLATFORM_DELETE_USER,
                P.PLATFORM_VIEW_ANALYTICS,
                P.PLATFORM_VIEW_REPORTS,
                P.PLATFORM_EXPORT_DATA,
                P.PLATFORM_MANAGE_SETTINGS,
                P.PLATFORM_MANAGE_BILLING_PLANS,
                P.ORG_VIEW_SETTINGS,
                P.ORG_UPDATE_SETTINGS,
                P.ORG_DELETE_ORGANIZATION,
                P.ORG_VIEW_BILLING,
                P.ORG_MANAGE_BILLING,
                P.ORG_VIEW_MEMBERS,
                P.ORG_INVITE_MEMBERS,
                P.ORG_UPDATE_MEMBER_ROLE,
                P.ORG_REMOVE_MEMBERS,
                P.ORG_VIEW_TEAMS,
                P.ORG_CREATE_TEAM,
                P.ORG_UPDATE_TEAM,
                P.ORG_DELETE_TEAM,
                P.ORG_VIEW_ANALYTICS,
                P.ORG_VIEW_REPORTS,
                *_GENERAL,
            )
        ),
        # no billing plans, no deletes
        Role.ADMIN: frozenset(
            (
                P.PLATFORM_VIEW_ALL_ORGANIZATIONS,
                P.PLATFORM_CREATE_ORGANIZATION,
                P.PLATFORM_UPDATE_ORGANIZATION,
                P.PLATFORM_SUSPEND_ORGANIZATION,
                P.PLATFORM_VIEW_ALL_USERS,
                P.PLATFORM_UPDATE_USER_STATUS,
                P.PLATFORM_VIEW_ANALYTICS,
                P.PLATFORM_VIEW_REPORTS,
                P.PLATFORM_EXPORT_DATA,
                *_GENERAL,
            )
        ),
        Role.ORG_OWNER: frozenset(
            (
                *_ORG_ADMIN_PERMISSIONS,
                P.ORG_UPDATE_SETTINGS,
                P.ORG_DELETE_ORGANIZATION,
                P.ORG_VIEW_BILLING,
                P.ORG_MANAGE_BILLING,
                P.ORG_UPGRADE_PLAN,
                P.ORG_CANCEL_SUBSCRIPTION,
                P.ORG_MANAGE_ADMINS,
                P.ORG_EXPORT_REPORTS,
                *_TEAM_OWN,
                *_GENERAL,
            )
        ),
        Role.ORG_ADMIN: frozenset((*_ORG_ADMIN_PERMISSIONS, *_TEAM_OWN, *_GENERAL)),
        Role.ORG_MEMBER: frozenset(
            (
                P.ORG_VIEW_MEMBERS,
                P.ORG_VIEW_TEAMS,
                P.TEAM_VIEW_OWN,
                P.TEAM_VIEW_MEMBERS,
                *_GENERAL,
            )
        ),
    }
)

ROLE_HIERARCHY: MappingProxyType[Role, int] = MappingProxyType(
    {
        Role.SUPER_ADMIN: 5,
        Role.ADMIN: 4,
        Role.ORG_OWNER: 3,
        Role.ORG_ADMIN: 2,
        Role.ORG_MEMBER: 1,
    }
)

PLATFORM_ROLES = frozenset((Role.SUPER_ADMIN, Role.ADMIN))
ORGANIZATION_ROLES = frozenset((Role.ORG_OWNER, Role.ORG_ADMIN, Role.ORG_MEMBER))


def parse_role(value: str | None) -> Role | None:
    """Return the Role for *value*, or None for anything unrecognized."""
    if value is None:
        return None
    try:
        return Role(value)
    except ValueError:
        return None


def permissions_for(role: Role | str | None) -> frozenset[Permission]:
    parsed = role if isinstance(role, Role) else parse_role(role)
    if parsed is None:
        return frozenset()
    return ROLE_PERMISSIONS.get(parsed, frozenset())


def has_permission(role: Role | str | None, permission: Permission) -> bool:
    return permission in permissions_for(role)


def has_any_permission(
    role: Role | str | None, permissions: Iterable[Permission]
) -> bool:
    granted = permissions_for(role)
    return any(p in granted for p in permissions)


def has_all_permissions(
    role: Role | str | None, permissions: Iterable[Permission]
) -> bool:
    granted = permissions_for(role)
    return all(p in granted for p in permissions)


def can_manage_role(manager: Role, target: Role) -> bool:
    """Whether a user holding *manager* may assign or modify *target*."""
    if manager is Role.SUPER_ADMIN:
        return True
    if manager is Role.ADMIN:
        return target in ORGANIZATION_ROLES
    if manager is Role.ORG_OWNER:
        return target in (Role.ORG_ADMIN, Role.ORG_MEMBER)
    if manager is Role.ORG_ADMIN:
        return target is Role.ORG_MEMBER
    return False


def is_platform_role(role: Role) -> bool:
    return role in PLATFORM_ROLES


def is_organization_role(role: Role) -> bool:
    return role in ORGANIZATION_ROLES


def role_from_legacy_flags(
    *, is_organization_owner: bool, is_organization_admin: bool
) -> Role:
    """Map the legacy Member + owner/admin flag model onto the five roles."""
    if is_organization_owner:
        return Role.ORG_OWNER
    if is_organization_admin:
        return Role.ORG_ADMIN
    return Role.ORG_MEMBER
