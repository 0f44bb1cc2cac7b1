"""Tenant-context injection: Principal -> TenantContext.

Every tenant-scoped operation runs against the caller's own
organization; nothing here reads an organization id from the request.
Platform admins are not exempt: a platform admin without an organization
cannot use tenant-scoped endpoints (the exemption for cross-tenant admin
access lives in ``guards.require_organization``).
"""

from __future__ import annotations

import logging

from app.core.errors import BadRequest, Unauthenticated
from app.middleware.request_context import organization_id_var
from app.models.principal import Principal, TenantContext

logger = logging.getLogger(__name__)

AUTH_REQUIRED = "Authentication required"
NO_ORGANIZATION = "User does not belong to any organization"


def inject_tenant(principal: Principal | None) -> TenantContext:
    if principal is None:
        raise Unauthenticated(AUTH_REQUIRED)
    if principal.organization_id is None:
        logger.warning("User %s has no organization", principal.user_id)
        raise BadRequest(NO_ORGANIZATION)
    organization_id_var.set(str(principal.organization_id))
    return TenantContext(principal=principal, organization_id=principal.organization_id)


def inject_optional_tenant(principal: Principal | None) -> TenantContext | None:
    if principal is None or principal.organization_id is None:
        return None
    organization_id_var.set(str(principal.organization_id))
    return TenantContext(principal=principal, organization_id=principal.organization_id)
