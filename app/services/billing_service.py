"""Stripe billing: checkout, customer portal, cancel/reactivate, webhooks.

Every Checkout Session and Subscription carries
``metadata = {organization_id, plan, billing_cycle}`` so a webhook can
find its organization; events without it fall back to the Stripe
customer id.  Webhook handlers only ever set fields to values taken from
the event, so replaying an event leaves the organization unchanged.

The stripe SDK is synchronous; calls run in a worker thread.  Events and
retrieved sessions are converted with ``to_dict()`` before they are read.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import stripe

from app.core.config import SETTINGS
from app.core.errors import BadRequest, Forbidden, NotFound, ServiceUnavailable
from app.models.organization import BillingCycle, Organization, Plan, SubscriptionStatus
from app.models.principal import TenantContext
from app.repos.org_repo import org_repo
from app.repos.user_repo import user_repo
from app.services.org_service import get_organization, invalidate_organization
from app.services.subscription import trial_status

logger = logging.getLogger(__name__)

# Stripe subscription status -> ours
_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "incomplete_expired": SubscriptionStatus.INCOMPLETE,
}


def _configure() -> None:
    if not SETTINGS.stripe_enabled:
        raise ServiceUnavailable("Billing is not configured")
    stripe.api_key = SETTINGS.stripe_api_key


async def _call(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    try:
        return await asyncio.to_thread(func, *args, **kwargs)
    except stripe.StripeError as e:
        logger.warning("Stripe call %s failed: %s", getattr(func, "__qualname__", func), e)
        raise BadRequest(e.user_message or "Billing provider request failed") from None


def price_for(plan: Plan, cycle: BillingCycle) -> str:
    price = SETTINGS.stripe_prices.get(f"{plan.value}:{cycle.value}")
    if not price:
        raise BadRequest(f"No price configured for the {plan} plan ({cycle})")
    return price


def plan_for_price(price_id: str | None) -> tuple[Plan, BillingCycle] | None:
    for key, value in SETTINGS.stripe_prices.items():
        if value == price_id:
            plan, cycle = key.split(":")
            return Plan(plan), BillingCycle(cycle)
    return None


def _timestamp(value: Any) -> datetime | None:
    return datetime.fromtimestamp(int(value), UTC) if value else None


# ---------------------------------------------------------------------------
# Tenant-facing operations
# ---------------------------------------------------------------------------


async def create_checkout(
    ctx: TenantContext, *, plan: Plan, billing_cycle: BillingCycle
) -> dict[str, str]:
    _configure()
    if plan is Plan.FREE:
        raise BadRequest("The free plan does not require checkout")
    price = price_for(plan, billing_cycle)
    org = await get_organization(ctx.organization_id)

    customer_id = org.stripe_customer_id
    if not customer_id:
        owner = await user_repo.get_by_id(org.owner_id) if org.owner_id else None
        customer = await _call(
            stripe.Customer.create,
            name=org.name,
            email=owner.email if owner else ctx.principal.email,
            metadata={"organization_id": str(org.id)},
        )
        customer_id = customer["id"]
        await org_repo.update(org.id, stripe_customer_id=customer_id)
        await invalidate_organization(org.id)

    metadata = {
        "organization_id": str(org.id),
        "plan": plan.value,
        "billing_cycle": billing_cycle.value,
    }
    session = await _call(
        stripe.checkout.Session.create,
        mode="subscription",
        customer=customer_id,
        client_reference_id=str(org.id),
        line_items=[{"price": price, "quantity": 1}],
        success_url=(
            f"{SETTINGS.frontend_url}/billing/success?session_id={{CHECKOUT_SESSION_ID}}"
        ),
        cancel_url=f"{SETTINGS.frontend_url}/billing/cancel",
        metadata=metadata,
        subscription_data={"metadata": metadata},
    )
    logger.info(
        "Checkout session %s created for org %s (%s, %s)",
        session["id"],
        org.id,
        plan,
        billing_cycle,
    )
    return {"sessionId": session["id"], "url": session["url"]}


async def verify_checkout(ctx: TenantContext, session_id: str) -> Organization:
    """Apply a completed checkout without waiting for the webhook."""
    _configure()
    session = (await _call(stripe.checkout.Session.retrieve, session_id)).to_dict()
    metadata = session.get("metadata") or {}
    if metadata.get("organization_id") != str(ctx.organization_id):
        raise Forbidden("This checkout session belongs to another organization")
    if session.get("payment_status") != "paid":
        raise BadRequest("Payment has not been completed")
    org = await _apply_checkout(session)
    if org is None:
        raise NotFound("Organization not found")
    return org


async def create_portal(ctx: TenantContext) -> dict[str, str]:
    _configure()
    org = await get_organization(ctx.organization_id)
    if not org.stripe_customer_id:
        raise BadRequest("No billing account found for this organization")
    session = await _call(
        stripe.billing_portal.Session.create,
        customer=org.stripe_customer_id,
        return_url=f"{SETTINGS.frontend_url}/billing",
    )
    return {"url": session["url"]}


async def _set_cancel_at_period_end(ctx: TenantContext, value: bool) -> Organization:
    _configure()
    org = await get_organization(ctx.organization_id)
    if not org.stripe_subscription_id:
        raise BadRequest("No active subscription found")
    await _call(
        stripe.Subscription.modify,
        org.stripe_subscription_id,
        cancel_at_period_end=value,
    )
    updated = await org_repo.update(org.id, cancel_at_period_end=value)
    await invalidate_organization(org.id)
    logger.info("Org %s cancel_at_period_end=%s", org.id, value)
    return updated or org


async def cancel_subscription(ctx: TenantContext) -> Organization:
    return await _set_cancel_at_period_end(ctx, True)


async def reactivate_subscription(ctx: TenantContext) -> Organization:
    return await _set_cancel_at_period_end(ctx, False)


async def get_subscription(ctx: TenantContext) -> dict[str, Any]:
    org = await get_organization(ctx.organization_id)
    return {
        "plan": org.plan.value,
        "billing_cycle": org.billing_cycle.value,
        "subscription_status": org.subscription_status.value,
        "current_period_end": (
            org.current_period_end.isoformat() if org.current_period_end else None
        ),
        "cancel_at_period_end": org.cancel_at_period_end,
        "has_billing_account": org.stripe_customer_id is not None,
        "trial": trial_status(org),
    }


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


def construct_event(payload: bytes, signature: str | None) -> dict[str, Any]:
    """Verify the Stripe-Signature header and parse the event into plain dicts."""
    if not SETTINGS.stripe_webhook_secret:
        raise ServiceUnavailable("Billing webhooks are not configured")
    if not signature:
        raise BadRequest("Missing Stripe-Signature header")
    try:
        event = stripe.Webhook.construct_event(
            payload, signature, SETTINGS.stripe_webhook_secret
        )
    except ValueError:
        logger.warning("Invalid Stripe webhook payload")
        raise BadRequest("Invalid payload") from None
    except stripe.SignatureVerificationError:
        logger.warning("Invalid Stripe webhook signature")
        raise BadRequest("Invalid signature") from None
    return event.to_dict()


def _metadata_choice(enum: type[Plan] | type[BillingCycle], value: Any) -> Any:
    if not value:
        return None
    try:
        return enum(value)
    except ValueError:
        logger.warning("Ignoring unknown %s %r in Stripe metadata", enum.__name__, value)
        return None


async def _find_org(obj: Mapping[str, Any]) -> Organization | None:
    metadata = obj.get("metadata") or {}
    raw_id = metadata.get("organization_id")
    if raw_id:
        try:
            org = await org_repo.get_by_id(UUID(raw_id))
        except ValueError:
            logger.warning("Webhook metadata has a malformed organization_id=%r", raw_id)
            org = None
        if org is not None:
            return org
    customer = obj.get("customer")
    if customer:
        return await org_repo.get_by_stripe_customer(customer)
    return None


async def _update(org: Organization, **changes: Any) -> Organization:
    updated = await org_repo.update(org.id, **changes)
    await invalidate_organization(org.id)
    return updated or org


async def _apply_checkout(session: Mapping[str, Any]) -> Organization | None:
    org = await _find_org(session)
    if org is None:
        logger.warning("checkout.session.completed for unknown organization")
        return None
    metadata = session.get("metadata") or {}
    changes: dict[str, Any] = {
        "subscription_status": SubscriptionStatus.ACTIVE,
        "stripe_customer_id": session.get("customer") or org.stripe_customer_id,
        "stripe_subscription_id": session.get("subscription") or org.stripe_subscription_id,
        "cancel_at_period_end": False,
    }
    plan = _metadata_choice(Plan, metadata.get("plan"))
    if plan is not None:
        changes["plan"] = plan
    cycle = _metadata_choice(BillingCycle, metadata.get("billing_cycle"))
    if cycle is not None:
        changes["billing_cycle"] = cycle
    org = await _update(org, **changes)
    logger.info("Checkout completed: org %s on %s (%s)", org.id, org.plan, org.billing_cycle)
    return org


async def _on_checkout_completed(obj: Mapping[str, Any]) -> None:
    await _apply_checkout(obj)


def _subscription_price(obj: Mapping[str, Any]) -> tuple[str | None, Any]:
    items = (obj.get("items") or {}).get("data") or []
    if not items:
        return None, None
    first = items[0]
    return (first.get("price") or {}).get("id"), first.get("current_period_end")


async def _on_subscription_updated(obj: Mapping[str, Any]) -> None:
    org = await _find_org(obj)
    if org is None:
        logger.warning("Subscription update for unknown organization")
        return
    price_id, item_period_end = _subscription_price(obj)
    changes: dict[str, Any] = {
        "stripe_subscription_id": obj.get("id"),
        "cancel_at_period_end": bool(obj.get("cancel_at_period_end")),
        "current_period_end": _timestamp(obj.get("current_period_end") or item_period_end),
    }
    status = _STATUS_MAP.get(obj.get("status", ""))
    if status is not None:
        changes["subscription_status"] = status
    if price_id:
        changes["stripe_price_id"] = price_id
        mapped = plan_for_price(price_id)
        if mapped is not None:
            changes["plan"], changes["billing_cycle"] = mapped
    org = await _update(org, **changes)
    logger.info("Subscription updated: org %s status=%s", org.id, org.subscription_status)


async def _on_subscription_deleted(obj: Mapping[str, Any]) -> None:
    org = await _find_org(obj)
    if org is None:
        logger.warning("Subscription deletion for unknown organization")
        return
    await _update(
        org,
        subscription_status=SubscriptionStatus.CANCELED,
        cancel_at_period_end=False,
    )
    logger.info("Subscription canceled: org %s", org.id)


def _invoice_handler(status: SubscriptionStatus) -> Callable[[Mapping[str, Any]], Awaitable[None]]:
    async def _handle(obj: Mapping[str, Any]) -> None:
        # Invoices carry the subscription's metadata under subscription_details.
        details = obj.get("subscription_details") or {}
        lookup = {"metadata": details.get("metadata") or {}, "customer": obj.get("customer")}
        org = await _find_org(lookup)
        if org is None:
            logger.warning("Invoice event for unknown organization")
            return
        await _update(org, subscription_status=status)
        logger.info("Invoice event: org %s -> %s", org.id, status)

    return _handle


WEBHOOK_HANDLERS: dict[str, Callable[[Mapping[str, Any]], Awaitable[None]]] = {
    "checkout.session.completed": _on_checkout_completed,
    "customer.subscription.updated": _on_subscription_updated,
    "customer.subscription.deleted": _on_subscription_deleted,
    "invoice.paid": _invoice_handler(SubscriptionStatus.ACTIVE),
    "invoice.payment_failed": _invoice_handler(SubscriptionStatus.PAST_DUE),
}


async def handle_event(event: Mapping[str, Any]) -> bool:
    """Dispatch a verified event.  Returns False for ignored event types."""
    event_type = event.get("type", "")
    handler = WEBHOOK_HANDLERS.get(event_type)
    if handler is None:
        logger.info("Ignoring Stripe event type %s", event_type)
        return False
    logger.info("Handling Stripe event %s (%s)", event.get("id"), event_type)
    await handler(event["data"]["object"])
    return True
