"""Billing endpoints and webhook handling against a stubbed Stripe API."""

from __future__ import annotations

import json
import time
from dataclasses import replace

import pytest
import stripe
from fastapi.testclient import TestClient

from app.core.config import SETTINGS
from app.models.organization import BillingCycle, Plan, SubscriptionStatus
from app.repos.org_repo import org_repo
from app.services import billing_service
from tests.conftest import auth, create_org, create_user, run

BASE = "/api/v1/billing"

PRICES = {"professional:monthly": "price_pro_m", "business:annual": "price_biz_y"}


@pytest.fixture
def stripe_on(monkeypatch: pytest.MonkeyPatch) -> dict[str, list]:
    """Enable billing and record every SDK call instead of sending it."""
    monkeypatch.setattr(
        billing_service,
        "SETTINGS",
        replace(
            SETTINGS,
            stripe_api_key="sk_test_dummy",
            stripe_webhook_secret="whsec_dummy",
            stripe_prices=PRICES,
        ),
    )
    calls: dict[str, list] = {"customer": [], "checkout": [], "modify": []}

    def _customer(**kwargs):
        calls["customer"].append(kwargs)
        return {"id": "cus_123"}

    def _checkout(**kwargs):
        calls["checkout"].append(kwargs)
        return {"id": "cs_123", "url": "https://checkout.stripe.test/cs_123"}

    def _modify(sub_id, **kwargs):
        calls["modify"].append((sub_id, kwargs))
        return {"id": sub_id}

    monkeypatch.setattr(stripe.Customer, "create", _customer)
    monkeypatch.setattr(stripe.checkout.Session, "create", _checkout)
    monkeypatch.setattr(stripe.Subscription, "modify", _modify)
    return calls


def test_billing_disabled_is_503(client: TestClient, owner) -> None:
    resp = client.post(f"{BASE}/checkout", headers=auth(owner), json={"plan": "professional"})
    assert resp.status_code == 503
    assert resp.json()["message"] == "Billing is not configured"


def test_checkout_creates_customer_once(client: TestClient, owner, org, stripe_on) -> None:
    resp = client.post(f"{BASE}/checkout", headers=auth(owner), json={"plan": "professional"})
    assert resp.status_code == 200
    assert resp.json()["data"] == {
        "sessionId": "cs_123",
        "url": "https://checkout.stripe.test/cs_123",
    }
    session = stripe_on["checkout"][0]
    assert session["line_items"] == [{"price": "price_pro_m", "quantity": 1}]
    assert session["metadata"] == {
        "organization_id": str(org.id),
        "plan": "professional",
        "billing_cycle": "monthly",
    }
    assert run(org_repo.get_by_id(org.id)).stripe_customer_id == "cus_123"

    client.post(f"{BASE}/checkout", headers=auth(owner), json={"plan": "professional"})
    assert len(stripe_on["customer"]) == 1


def test_checkout_without_configured_price(client: TestClient, owner, stripe_on) -> None:
    resp = client.post(
        f"{BASE}/checkout",
        headers=auth(owner),
        json={"plan": "enterprise", "billingCycle": "annual"},
    )
    assert resp.status_code == 400


def test_org_admin_cannot_manage_billing(client: TestClient, org_admin, stripe_on) -> None:
    resp = client.post(
        f"{BASE}/checkout", headers=auth(org_admin), json={"plan": "professional"}
    )
    assert resp.status_code == 403


def test_stripe_failure_is_a_bad_request(
    client: TestClient, owner, stripe_on, monkeypatch: pytest.MonkeyPatch
) -> None:
    def _boom(**kwargs):
        raise stripe.InvalidRequestError("No such price", param="price")

    monkeypatch.setattr(stripe.checkout.Session, "create", _boom)
    resp = client.post(f"{BASE}/checkout", headers=auth(owner), json={"plan": "professional"})
    assert resp.status_code == 400


def test_cancel_and_reactivate(client: TestClient, owner, org, stripe_on) -> None:
    run(org_repo.update(org.id, stripe_subscription_id="sub_1"))

    cancel = client.post(f"{BASE}/cancel", headers=auth(owner))
    assert cancel.json()["data"]["cancel_at_period_end"] is True
    reactivate = client.post(f"{BASE}/reactivate", headers=auth(owner))
    assert reactivate.json()["data"]["cancel_at_period_end"] is False
    assert stripe_on["modify"] == [
        ("sub_1", {"cancel_at_period_end": True}),
        ("sub_1", {"cancel_at_period_end": False}),
    ]


def test_cancel_without_subscription(client: TestClient, owner, stripe_on) -> None:
    resp = client.post(f"{BASE}/cancel", headers=auth(owner))
    assert resp.status_code == 400
    assert resp.json()["message"] == "No active subscription found"


def test_subscription_summary(client: TestClient, owner, org_admin) -> None:
    assert client.get(f"{BASE}/subscription", headers=auth(org_admin)).status_code == 403
    resp = client.get(f"{BASE}/subscription", headers=auth(owner))
    data = resp.json()["data"]
    assert data["subscription_status"] == "trialing"
    assert data["has_billing_account"] is False
    assert data["trial"]["isOnTrial"] is True


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


WEBHOOK_SECRET = "whsec_dummy"


def _event(event_type: str, obj: dict) -> dict:
    return {"id": "evt_1", "object": "event", "type": event_type, "data": {"object": obj}}


def _signed(event: dict) -> tuple[bytes, dict[str, str]]:
    """Serialize *event* and sign it the way Stripe signs webhook deliveries."""
    payload = json.dumps(event)
    timestamp = int(time.time())
    signature = stripe.WebhookSignature._compute_signature(
        f"{timestamp}.{payload}", WEBHOOK_SECRET
    )
    return payload.encode(), {"Stripe-Signature": f"t={timestamp},v1={signature}"}


class _Retrieved(dict):
    """Stand-in for a retrieved Stripe resource."""

    def to_dict(self) -> dict:
        return dict(self)


def test_webhook_unconfigured_is_503(client: TestClient) -> None:
    resp = client.post(f"{BASE}/webhook", content=b"{}", headers={"Stripe-Signature": "x"})
    assert resp.status_code == 503


def test_webhook_rejects_bad_signature(client: TestClient, stripe_on) -> None:
    resp = client.post(
        f"{BASE}/webhook",
        content=b'{"id": "evt_1"}',
        headers={"Stripe-Signature": "t=1,v1=deadbeef"},
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid signature"


def test_webhook_requires_signature(client: TestClient, stripe_on) -> None:
    resp = client.post(f"{BASE}/webhook", content=b"{}")
    assert resp.status_code == 400


def test_webhook_dispatches_verified_event(client: TestClient, org, stripe_on) -> None:
    event = _event(
        "checkout.session.completed",
        {
            "customer": "cus_9",
            "subscription": "sub_9",
            "metadata": {
                "organization_id": str(org.id),
                "plan": "business",
                "billing_cycle": "annual",
            },
        },
    )
    payload, headers = _signed(event)

    resp = client.post(f"{BASE}/webhook", content=payload, headers=headers)
    assert resp.json() == {"received": True, "handled": True}
    stored = run(org_repo.get_by_id(org.id))
    assert stored.subscription_status is SubscriptionStatus.ACTIVE
    assert stored.plan is Plan.BUSINESS
    assert stored.billing_cycle is BillingCycle.ANNUAL
    assert stored.stripe_subscription_id == "sub_9"


def test_signed_invoice_events_move_subscription_status(client: TestClient, stripe_on) -> None:
    org = create_org("invoices", stripe_customer_id="cus_inv")

    payload, headers = _signed(_event("invoice.payment_failed", {"customer": "cus_inv"}))
    assert client.post(f"{BASE}/webhook", content=payload, headers=headers).status_code == 200
    assert run(org_repo.get_by_id(org.id)).subscription_status is SubscriptionStatus.PAST_DUE

    paid = _event(
        "invoice.paid",
        {
            "customer": "cus_inv",
            "subscription_details": {"metadata": {"organization_id": str(org.id)}},
        },
    )
    payload, headers = _signed(paid)
    resp = client.post(f"{BASE}/webhook", content=payload, headers=headers)
    assert resp.json() == {"received": True, "handled": True}
    assert run(org_repo.get_by_id(org.id)).subscription_status is SubscriptionStatus.ACTIVE


def test_unknown_event_type_is_acknowledged(client: TestClient, stripe_on) -> None:
    payload, headers = _signed(_event("customer.created", {}))
    resp = client.post(f"{BASE}/webhook", content=payload, headers=headers)
    assert resp.json() == {"received": True, "handled": False}


def test_unknown_plan_in_metadata_is_ignored(client: TestClient, org, stripe_on) -> None:
    event = _event(
        "checkout.session.completed",
        {
            "customer": "cus_odd",
            "subscription": "sub_odd",
            "metadata": {
                "organization_id": str(org.id),
                "plan": "platinum",
                "billing_cycle": "weekly",
            },
        },
    )
    payload, headers = _signed(event)
    resp = client.post(f"{BASE}/webhook", content=payload, headers=headers)
    assert resp.status_code == 200
    stored = run(org_repo.get_by_id(org.id))
    assert stored.plan is Plan.FREE
    assert stored.billing_cycle is BillingCycle.MONTHLY
    assert stored.stripe_subscription_id == "sub_odd"


def test_subscription_update_maps_price_and_status(stripe_on) -> None:
    org = create_org("subs", stripe_customer_id="cus_7")
    obj = {
        "id": "sub_7",
        "customer": "cus_7",
        "status": "past_due",
        "cancel_at_period_end": True,
        "current_period_end": 1_800_000_000,
        "items": {"data": [{"price": {"id": "price_biz_y"}}]},
    }
    assert run(billing_service.handle_event(_event("customer.subscription.updated", obj)))

    stored = run(org_repo.get_by_id(org.id))
    assert stored.subscription_status is SubscriptionStatus.PAST_DUE
    assert stored.plan is Plan.BUSINESS
    assert stored.billing_cycle is BillingCycle.ANNUAL
    assert stored.cancel_at_period_end is True
    assert stored.current_period_end is not None


def test_replaying_an_event_is_harmless(stripe_on) -> None:
    org = create_org("replay", stripe_customer_id="cus_r")
    event = _event("invoice.payment_failed", {"customer": "cus_r"})
    run(billing_service.handle_event(event))
    first = run(org_repo.get_by_id(org.id))
    run(billing_service.handle_event(event))
    assert run(org_repo.get_by_id(org.id)) == first
    assert first.subscription_status is SubscriptionStatus.PAST_DUE


def test_subscription_deleted_cancels(stripe_on) -> None:
    org = create_org("gone", subscription_status=SubscriptionStatus.ACTIVE)
    obj = {"id": "sub_x", "metadata": {"organization_id": str(org.id)}}
    run(billing_service.handle_event(_event("customer.subscription.deleted", obj)))
    assert run(org_repo.get_by_id(org.id)).subscription_status is SubscriptionStatus.CANCELED


def test_event_for_unknown_org_is_ignored(stripe_on) -> None:
    handled = run(
        billing_service.handle_event(_event("invoice.paid", {"customer": "cus_nobody"}))
    )
    assert handled is True


def test_verify_checkout_rejects_foreign_session(
    client: TestClient, owner, stripe_on, monkeypatch: pytest.MonkeyPatch
) -> None:
    foreign = create_org("foreign")
    session = {
        "id": "cs_x",
        "payment_status": "paid",
        "metadata": {"organization_id": str(foreign.id)},
    }
    monkeypatch.setattr(
        stripe.checkout.Session, "retrieve", lambda *a, **k: _Retrieved(session)
    )
    resp = client.post(
        f"{BASE}/verify-checkout", headers=auth(owner), json={"sessionId": "cs_x"}
    )
    assert resp.status_code == 403
    assert run(org_repo.get_by_id(foreign.id)).subscription_status is SubscriptionStatus.TRIALING


def test_viewer_sees_subscription_after_checkout_verification(
    client: TestClient, owner, org, stripe_on, monkeypatch: pytest.MonkeyPatch
) -> None:
    session = {
        "id": "cs_ok",
        "payment_status": "paid",
        "customer": "cus_ok",
        "subscription": "sub_ok",
        "metadata": {"organization_id": str(org.id), "plan": "professional"},
    }
    monkeypatch.setattr(
        stripe.checkout.Session, "retrieve", lambda *a, **k: _Retrieved(session)
    )
    resp = client.post(
        f"{BASE}/verify-checkout", headers=auth(owner), json={"sessionId": "cs_ok"}
    )
    assert resp.status_code == 200

    member = create_user("viewer@acme.test", org=org)
    summary = client.get(f"{BASE}/subscription", headers=auth(member))
    # plain members lack org:view_billing
    assert summary.status_code == 403
    stored = run(org_repo.get_by_id(org.id))
    assert stored.plan is Plan.PROFESSIONAL
    assert stored.subscription_status is SubscriptionStatus.ACTIVE
