"""FastAPI dependencies: identity, tenant context and guards.

Per-request pipeline, in dependency order:

    current_principal      token -> Principal           (401)
    require_tenant         Principal -> TenantContext   (401/400)
    require_guard(...)     guard chain                  (403)

The subscription gate and usage limits are applied by the services, which
know which message to raise.  Route handlers receive explicit Principal /
TenantContext values and pass them on; nothing is stored on the request.

Usage::

    @router.post("/teams")
    async def create_team(
        ctx: Annotated[TenantContext, Depends(tenant_guard(require_permission(P.ORG_CREATE_TEAM)))],
    ): ...
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Request

from app.core.roles import Permission
from app.models.principal import Principal, TenantContext
from app.services import guards
from app.services.identity import (
    extract_token,
    resolve_identity,
    resolve_optional_identity,
)
from app.services.tenant import inject_tenant

logger = logging.getLogger(__name__)


def _token(request: Request) -> str | None:
    return extract_token(request.cookies, request.headers.get("authorization"))


async def current_principal(request: Request) -> Principal:
    principal = await resolve_identity(_token(request))
    logger.debug("Authenticated user=%s role=%s", principal.user_id, principal.role)
    return principal


async def optional_principal(request: Request) -> Principal | None:
    return await resolve_optional_identity(_token(request))


CurrentPrincipal = Annotated[Principal, Depends(current_principal)]
OptionalPrincipal = Annotated[Principal | None, Depends(optional_principal)]


def require_tenant(principal: CurrentPrincipal) -> TenantContext:
    return inject_tenant(principal)


Tenant = Annotated[TenantContext, Depends(require_tenant)]


def require_guard(*chain: guards.Guard):
    """Dependency factory: run *chain* in order against the caller (AND)."""

    def _check(principal: CurrentPrincipal) -> Principal:
        for guard in chain:
            guards.check(guard, principal)
        return principal

    return _check


def tenant_guard(*chain: guards.Guard):
    """Like require_guard, but resolves the TenantContext first."""

    def _check(ctx: Tenant) -> TenantContext:
        for guard in chain:
            guards.check(guard, ctx.principal)
        return ctx

    return _check


def require_permission(*permissions: Permission):
    return require_guard(guards.require_permission(*permissions))


def tenant_permission(*permissions: Permission):
    return tenant_guard(guards.require_permission(*permissions))


def require_organization_access(organization_id: UUID, principal: CurrentPrincipal) -> Principal:
    """Cross-tenant check on the ``{organization_id}`` path parameter.

    Runs before anything is loaded, so another tenant's id is refused
    without revealing whether it exists.
    """
    guards.enforce(guards.can_access_organization(principal, organization_id), principal)
    return principal


OrgAccess = Annotated[Principal, Depends(require_organization_access)]
