"""Billing endpoints (/api/v1/billing).

The webhook is public and authenticated by its Stripe-Signature header;
every other route acts on the caller's organization.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, Field

from app.api.dependencies import Tenant, tenant_permission
from app.api.ratelimit import require_rate_limit
from app.api.responses import ok
from app.core.roles import Permission as P
from app.models.organization import BillingCycle, Plan
from app.models.principal import TenantContext
from app.services import billing_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/billing",
    tags=["billing"],
    dependencies=[Depends(require_rate_limit())],
)

BillingManager = Annotated[TenantContext, Depends(tenant_permission(P.ORG_MANAGE_BILLING))]
BillingViewer = Annotated[TenantContext, Depends(tenant_permission(P.ORG_VIEW_BILLING))]


class CheckoutIn(BaseModel):
    plan: Plan
    billingCycle: BillingCycle = BillingCycle.MONTHLY


class VerifyCheckoutIn(BaseModel):
    sessionId: str = Field(min_length=1)


@router.post("/checkout")
async def create_checkout(payload: CheckoutIn, ctx: BillingManager) -> dict[str, Any]:
    session = await billing_service.create_checkout(
        ctx, plan=payload.plan, billing_cycle=payload.billingCycle
    )
    return ok("Checkout session created successfully", session)


@router.post("/verify-checkout")
async def verify_checkout(payload: VerifyCheckoutIn, ctx: Tenant) -> dict[str, Any]:
    org = await billing_service.verify_checkout(ctx, payload.sessionId)
    return ok("Subscription activated successfully", org.to_dict())


@router.post("/portal")
async def create_portal(ctx: BillingManager) -> dict[str, Any]:
    return ok("Billing portal session created", await billing_service.create_portal(ctx))


@router.post("/cancel")
async def cancel(ctx: BillingManager) -> dict[str, Any]:
    org = await billing_service.cancel_subscription(ctx)
    return ok("Subscription will be canceled at the end of the billing period", org.to_dict())


@router.post("/reactivate")
async def reactivate(ctx: BillingManager) -> dict[str, Any]:
    org = await billing_service.reactivate_subscription(ctx)
    return ok("Subscription reactivated successfully", org.to_dict())


@router.get("/subscription")
async def subscription(ctx: BillingViewer) -> dict[str, Any]:
    return ok(
        "Subscription retrieved successfully", await billing_service.get_subscription(ctx)
    )


@router.post("/webhook")
async def webhook(
    request: Request,
    stripe_signature: Annotated[str | None, Header(alias="Stripe-Signature")] = None,
) -> dict[str, Any]:
    event = billing_service.construct_event(await request.body(), stripe_signature)
    handled = await billing_service.handle_event(event)
    return {"received": True, "handled": handled}
