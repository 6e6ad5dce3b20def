from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
import stripe

from modelsnapper.core.exceptions import ValidationError
from modelsnapper.core.pricing import find_plan_by_provider_ref, get_plan
from modelsnapper.database.models import User
from modelsnapper.models.billing import PaymentProvider, SubscriptionState
from modelsnapper.models.auth import Identity
from modelsnapper.services.billing_service import billing_service
from modelsnapper.services.user_service import user_service

from conftest import auth

def test_billing_shape_for_new_user(client):
    response = client.get("/api/app/billing", headers=auth("acme"))

    assert response.status_code == 200
    body = response.json()
    assert set(body) == {"plan", "details", "credits"}
    assert body["plan"] == "free"
    assert body["credits"] == 10
    assert body["details"]["is_premium"] is False

def test_billing_requires_authentication(client):
    assert client.get("/api/app/billing").status_code == 401

def test_plans_catalogue(client):
    plans = {plan["id"]: plan for plan in client.get("/api/payments/plans").json()}

    assert set(plans) == {"free", "starter", "growth", "credits_50", "credits_100"}
    assert plans["starter"]["mode"] == "subscription"
    assert plans["starter"]["monthly_credits"] == 50
    assert plans["credits_100"]["credits"] == 100

def test_checkout_for_unknown_plan_is_refused(client):
    response = client.post("/api/payments/stripe/checkout", json={"plan_id": "platinum"}, headers=auth("acme"))

    assert response.status_code == 400
    assert response.json()["code"] == "UNKNOWN_PLAN"

def test_plan_lookup_ignores_unset_provider_refs():
    assert get_plan("nope") is None
    assert get_plan("growth")["id"] == "growth"
    assert find_plan_by_provider_ref("") is None
    assert find_plan_by_provider_ref(None) is None

@pytest.mark.anyio
async def test_inactive_subscription_downgrades(db):
    user = User(auth_user_id="sub_user", email_addresses=["sub@example.com"], credits=5)
    db.add(user)
    await db.commit()

    await billing_service.apply_subscription_state(db, user, SubscriptionState(plan_id="growth", status="active"))
    assert user.plan_type == "growth"
    assert user.plan_is_premium is True

    await billing_service.apply_subscription_state(db, user, SubscriptionState(plan_id="growth", status="unpaid"))
    assert user.plan_type == "free"
    assert user.subscription_status == "unpaid"

@pytest.mark.anyio
async def test_event_user_lookup_order(db):
    user = User(auth_user_id="user_x", email_addresses=["Buyer@Example.com"], stripe_customer_id="cus_x")
    db.add(user)
    await db.commit()
    await user_service.sync_email_index(db, user)

    by_customer = await billing_service.find_user_for_event(db, PaymentProvider.STRIPE, customer_id="cus_x")
    by_auth_id = await billing_service.find_user_for_event(db, PaymentProvider.STRIPE, user_id="user_x")
    by_email = await billing_service.find_user_for_event(db, PaymentProvider.LEMONSQUEEZY, email="buyer@example.com")
    wrong_provider = await billing_service.find_user_for_event(db, PaymentProvider.LEMONSQUEEZY, customer_id="cus_x")

    assert by_customer.id == user.id
    assert by_auth_id.id == user.id
    assert by_email.id == user.id
    assert wrong_provider is None

@pytest.mark.anyio
async def test_email_lookup_follows_identity_changes(db):
    identity = Identity(auth_user_id="user_mail", email_addresses=["Main@Example.com", "alt@example.com"])
    user = await user_service.get_or_create_user(db, identity)

    assert (await user_service.find_by_email(db, "ALT@example.com")).id == user.id
    assert (await user_service.find_by_email(db, " main@example.com ")).id == user.id

    moved = Identity(auth_user_id="user_mail", email_addresses=["new@example.com"])
    await user_service.get_or_create_user(db, moved)

    assert await user_service.find_by_email(db, "alt@example.com") is None
    assert (await user_service.find_by_email(db, "new@example.com")).id == user.id
    assert await user_service.find_by_email(db, "") is None

# =============================================================================
# SUBSCRIPTION CANCELLATION
# =============================================================================

@pytest.fixture
def stripe_subscriptions(test_settings, monkeypatch):
    """Fakes the Stripe subscription endpoints; records cancel and modify calls"""
    monkeypatch.setattr(test_settings, "STRIPE_SECRET_KEY", "sk_test_123")
    calls = []

    def list_subscriptions(**params):
        calls.append(("list", params))
        return SimpleNamespace(data=[{"id": "sub_1"}])

    def cancel(subscription_id, **params):
        calls.append(("cancel", subscription_id))
        return {"id": subscription_id, "cancel_at": None, "canceled_at": 1767225600}

    def modify(subscription_id, **params):
        calls.append(("modify", subscription_id, params))
        return {"id": subscription_id, "cancel_at": 1769904000, "canceled_at": None}

    monkeypatch.setattr(stripe.Subscription, "list", list_subscriptions)
    monkeypatch.setattr(stripe.Subscription, "cancel", cancel)
    monkeypatch.setattr(stripe.Subscription, "modify", modify)
    return calls

def test_cancel_without_subscription_is_refused(client):
    response = client.post("/api/subscription/cancel", json={}, headers=auth("acme"))

    assert response.status_code == 400
    assert response.json()["code"] == "NO_SUBSCRIPTION"

@pytest.mark.anyio
async def test_cancel_at_period_end_keeps_plan(db, stripe_subscriptions):
    user = User(auth_user_id="cancel_later", email_addresses=["later@example.com"], stripe_customer_id="cus_later")
    db.add(user)
    await db.commit()
    await billing_service.apply_subscription_state(db, user, SubscriptionState(plan_id="growth", status="active"))

    result = await billing_service.cancel_subscription(db, user, reason="Too expensive")

    assert result["subscription_id"] == "sub_1"
    assert result["canceled_immediately"] is False
    assert result["cancel_at"] == datetime(2026, 2, 1, tzinfo=timezone.utc)
    assert stripe_subscriptions[-1] == ("modify", "sub_1", {"cancel_at_period_end": True})
    assert user.plan_type == "growth"

@pytest.mark.anyio
async def test_immediate_cancel_downgrades_to_free(db, stripe_subscriptions):
    user = User(auth_user_id="cancel_now", email_addresses=["now@example.com"], stripe_customer_id="cus_now")
    db.add(user)
    await db.commit()
    await billing_service.apply_subscription_state(db, user, SubscriptionState(plan_id="starter", status="active"))

    result = await billing_service.cancel_subscription(db, user, immediately=True)

    assert result["canceled_immediately"] is True
    assert ("cancel", "sub_1") in stripe_subscriptions
    assert stripe_subscriptions[0] == ("list", {"customer": "cus_now", "status": "active", "limit": 1})
    assert user.plan_type == "free"
    assert user.plan_is_premium is False
    assert user.subscription_status == "canceled"

@pytest.mark.anyio
async def test_cancel_with_no_active_stripe_subscription(db, stripe_subscriptions, monkeypatch):
    monkeypatch.setattr(stripe.Subscription, "list", lambda **params: SimpleNamespace(data=[]))
    user = User(auth_user_id="cancel_none", email_addresses=["none@example.com"], stripe_customer_id="cus_none")
    db.add(user)
    await db.commit()

    with pytest.raises(ValidationError) as exc:
        await billing_service.cancel_subscription(db, user, immediately=True)

    assert exc.value.code == "NO_SUBSCRIPTION"
