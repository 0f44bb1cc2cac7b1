from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from app.core import roles
from app.core.roles import Permission, Role
from app.models.user import User


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated identity, resolved from a verified access token plus
    the current user record.

    Passed explicitly to every guard and gate; never mutated. Role and
    organization come from the store, not from the token claims, so a
    role change takes effect on the next request.
    """

    user_id: UUID
    email: str
    role: Role
    organization_id: UUID | None = None
    managed_team_ids: frozenset[UUID] = field(default_factory=frozenset)
    is_active: bool = True
    token_jti: str | None = None

    @staticmethod
    def from_user(user: User, *, token_jti: str | None = None) -> Principal:
        return Principal(
            user_id=user.id,
            email=user.email,
            role=user.role,
            organization_id=user.organization_id,
            managed_team_ids=frozenset(user.managed_team_ids),
            is_active=user.is_active,
            token_jti=token_jti,
        )

    def is_platform_admin(self) -> bool:
        if self.role is Role.SUPER_ADMIN:
            return True
        return self.role is Role.ADMIN and self.organization_id is None

    def is_org_owner(self) -> bool:
        return self.role is Role.ORG_OWNER

    def is_org_admin(self) -> bool:
        return self.role is Role.ORG_ADMIN

    def has_permission(self, permission: Permission) -> bool:
        return roles.has_permission(self.role, permission)

    def has_any_permission(self, permissions: set[Permission]) -> bool:
        return roles.has_any_permission(self.role, permissions)

    def has_all_permissions(self, permissions: set[Permission]) -> bool:
        return roles.has_all_permissions(self.role, permissions)


@dataclass(frozen=True, slots=True)
class TenantContext:
    """A Principal bound to the organization its request operates on."""

    principal: Principal
    organization_id: UUID
