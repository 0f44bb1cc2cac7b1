"""Authorization predicates.

A guard is a pure function ``(principal, resource) -> Decision``.  It
never raises and never touches storage; the caller loads the resource
(a Team, an organization id) first and hands it in.  ``enforce`` turns a
Deny into ``Forbidden`` and is the single place denials are logged and
counted.

Team guards evaluate in a fixed order:

  1. platform admin                      -> Allow
  2. team in another organization        -> Deny (cross-org)
  3. OrgOwner / OrgAdmin                 -> Allow
  4. caller is the team's manager        -> Allow
  5. team id in caller.managed_team_ids  -> Allow
  6. (view only) caller is a member      -> Allow
  7.                                     -> Deny

The cross-org check runs before the org-admin allow, so an OrgAdmin of
organization A is denied a team of organization B.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from app.core.errors import Forbidden
from app.core.metrics import AUTHZ_DENIALS
from app.core.roles import Permission, Role
from app.models.principal import Principal
from app.models.team import Team

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Decision:
    allowed: bool
    reason: str | None = None
    guard: str | None = None


ALLOW = Decision(allowed=True)


def deny(reason: str, guard: str) -> Decision:
    return Decision(allowed=False, reason=reason, guard=guard)


Guard = Callable[[Principal, Any], Decision]

CROSS_ORG_TEAM = "Cannot access teams from other organizations"


def is_platform_admin(principal: Principal, resource: Any = None) -> Decision:
    if principal.is_platform_admin():
        return ALLOW
    return deny("Forbidden - Requires platform admin privileges", "is_platform_admin")


def is_org_owner_or_admin(principal: Principal, resource: Any = None) -> Decision:
    if principal.role in (Role.ORG_OWNER, Role.ORG_ADMIN):
        return ALLOW
    return deny(
        "Forbidden - Requires organization admin privileges", "is_org_owner_or_admin"
    )


def can_manage_team(principal: Principal, team: Team) -> Decision:
    if principal.is_platform_admin():
        return ALLOW
    if team.organization_id != principal.organization_id:
        return deny(CROSS_ORG_TEAM, "can_manage_team")
    if principal.role in (Role.ORG_OWNER, Role.ORG_ADMIN):
        return ALLOW
    if team.manager_id == principal.user_id:
        return ALLOW
    if team.id in principal.managed_team_ids:
        return ALLOW
    return deny("Forbidden - Cannot manage this team", "can_manage_team")


def can_view_team(principal: Principal, team: Team) -> Decision:
    if principal.is_platform_admin():
        return ALLOW
    if team.organization_id != principal.organization_id:
        return deny(CROSS_ORG_TEAM, "can_view_team")
    if principal.role in (Role.ORG_OWNER, Role.ORG_ADMIN):
        return ALLOW
    if team.manager_id == principal.user_id:
        return ALLOW
    if team.id in principal.managed_team_ids:
        return ALLOW
    if team.has_member(principal.user_id):
        return ALLOW
    return deny("Forbidden - Cannot view this team", "can_view_team")


def can_invite_members(principal: Principal, resource: Any = None) -> Decision:
    if principal.is_platform_admin():
        return ALLOW
    if principal.role in (Role.ORG_OWNER, Role.ORG_ADMIN):
        return ALLOW
    return deny(
        "Forbidden - Requires admin privileges to invite members", "can_invite_members"
    )


def require_organization(principal: Principal, resource: Any = None) -> Decision:
    """Caller must belong to an organization; platform admins are exempt."""
    if principal.is_platform_admin() or principal.organization_id is not None:
        return ALLOW
    return deny("Organization membership required", "require_organization")


def can_access_organization(principal: Principal, organization_id: UUID) -> Decision:
    if principal.is_platform_admin():
        return ALLOW
    if principal.organization_id == organization_id:
        return ALLOW
    return deny("You can only access your own organization", "can_access_organization")


def require_active_user(principal: Principal, resource: Any = None) -> Decision:
    if principal.is_active:
        return ALLOW
    return deny("Your account has been suspended", "require_active_user")


def require_permission(*permissions: Permission) -> Guard:
    """Allow when the caller's role grants ANY of *permissions*."""
    wanted = frozenset(permissions)

    def _guard(principal: Principal, resource: Any = None) -> Decision:
        if principal.has_any_permission(wanted):
            return ALLOW
        return deny(
            "You do not have permission to perform this action", "require_permission"
        )

    return _guard


def require_all_permissions(*permissions: Permission) -> Guard:
    wanted = frozenset(permissions)

    def _guard(principal: Principal, resource: Any = None) -> Decision:
        if principal.has_all_permissions(wanted):
            return ALLOW
        return deny(
            "You do not have all required permissions for this action",
            "require_all_permissions",
        )

    return _guard


def require_role(*roles: Role) -> Guard:
    allowed = frozenset(roles)
    names = ", ".join(r.value for r in roles)

    def _guard(principal: Principal, resource: Any = None) -> Decision:
        if principal.role in allowed:
            return ALLOW
        return deny(
            f"This action requires one of the following roles: {names}", "require_role"
        )

    return _guard


def any_of(*guards: Guard) -> Guard:
    """First Allow wins; if every guard denies, the LAST denial is returned."""

    def _guard(principal: Principal, resource: Any = None) -> Decision:
        last = deny("Forbidden", "any_of")
        for guard in guards:
            decision = guard(principal, resource)
            if decision.allowed:
                return decision
            last = decision
        return last

    return _guard


def enforce(decision: Decision, principal: Principal | None = None) -> None:
    """Raise Forbidden for a Deny; no-op for an Allow."""
    if decision.allowed:
        return
    logger.warning(
        "Access denied: user=%s role=%s guard=%s reason=%s",
        principal.user_id if principal else None,
        principal.role if principal else None,
        decision.guard,
        decision.reason,
    )
    AUTHZ_DENIALS.labels(guard=decision.guard or "unknown").inc()
    raise Forbidden(decision.reason or "Forbidden")


def check(guard: Guard, principal: Principal, resource: Any = None) -> None:
    """Evaluate *guard* and enforce the result."""
    enforce(guard(principal, resource), principal)
