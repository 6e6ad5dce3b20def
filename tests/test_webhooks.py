import hashlib
import hmac
import json
import time

from conftest import LEMONSQUEEZY_WEBHOOK_SECRET, STRIPE_WEBHOOK_SECRET, auth, user_id


def _stripe_post(client, event, secret=STRIPE_WEBHOOK_SECRET):
    payload = json.dumps(event)
    timestamp = int(time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return client.post(
        "/api/webhook/stripe",
        content=payload,
        headers={"stripe-signature": f"t={timestamp},v1={signature}", "Content-Type": "application/json"},
    )


def _lemonsqueezy_post(client, event, secret=LEMONSQUEEZY_WEBHOOK_SECRET):
    payload = json.dumps(event).encode()
    signature = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return client.post(
        "/api/webhook/lemonsqueezy",
        content=payload,
        headers={"X-Signature": signature, "Content-Type": "application/json"},
    )


def _billing(client, token):
    return client.get("/api/app/billing", headers=auth(token)).json()


# =============================================================================
# STRIPE
# =============================================================================

def _checkout_event(uid, plan_id="credits_50"):
    return {
        "id": "evt_1",
        "object": "event",
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": "cs_test_1",
            "object": "checkout.session",
            "mode": "payment",
            "customer": "cus_1",
            "amount_total": 999,
            "currency": "usd",
            "payment_status": "paid",
            "metadata": {"user_id": uid, "plan_id": plan_id},
        }},
    }


def test_stripe_credit_pack_is_granted_once(client):
    uid = user_id(client, "acme")

    first = _stripe_post(client, _checkout_event(uid))
    replay = _stripe_post(client, _checkout_event(uid))

    assert first.status_code == 200
    assert first.json() == {"status": "success"}
    assert replay.status_code == 200
    assert _billing(client, "acme")["credits"] == 60

    history = client.get("/api/payments/history", headers=auth("acme")).json()
    assert history["total"] == 1
    assert history["payments"][0]["provider"] == "stripe"
    assert float(history["payments"][0]["amount"]) == 9.99


def test_stripe_invalid_signature_is_rejected(client):
    uid = user_id(client, "acme")

    response = _stripe_post(client, _checkout_event(uid), secret="whsec_wrong")

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_SIGNATURE"
    assert _billing(client, "acme")["credits"] == 10


def test_stripe_missing_signature_is_rejected(client):
    response = client.post("/api/webhook/stripe", content=b"{}")
    assert response.status_code == 400


def test_stripe_subscription_lifecycle(client):
    uid = user_id(client, "acme")
    subscription = {
        "id": "sub_1",
        "object": "subscription",
        "customer": "cus_9",
        "status": "active",
        "metadata": {"user_id": uid, "plan_id": "starter"},
    }

    updated = _stripe_post(client, {"id": "evt_2", "object": "event", "type": "customer.subscription.updated",
                                    "data": {"object": subscription}})
    assert updated.status_code == 200
    billing = _billing(client, "acme")
    assert billing["plan"] == "starter"
    assert billing["details"]["is_premium"] is True

    invoice = {
        "id": "in_1",
        "object": "invoice",
        "customer": "cus_9",
        "amount_paid": 499,
        "currency": "usd",
        "billing_reason": "subscription_cycle",
        "subscription_details": {"metadata": {"plan_id": "starter"}},
    }
    _stripe_post(client, {"id": "evt_3", "object": "event", "type": "invoice.paid", "data": {"object": invoice}})
    assert _billing(client, "acme")["credits"] == 50

    _stripe_post(client, {"id": "evt_4", "object": "event", "type": "customer.subscription.deleted",
                          "data": {"object": dict(subscription, status="canceled")}})
    billing = _billing(client, "acme")
    assert billing["plan"] == "free"
    assert billing["details"]["is_premium"] is False
    assert billing["credits"] == 50


def test_stripe_event_for_unknown_customer_is_acknowledged(client):
    response = _stripe_post(client, _checkout_event("not-a-user"))
    assert response.status_code == 200


# =============================================================================
# LEMONSQUEEZY
# =============================================================================

def _order_event(uid):
    return {
        "meta": {"event_name": "order_created", "custom_data": {"user_id": uid, "plan_id": "credits_100"}},
        "data": {
            "id": "1001",
            "type": "orders",
            "attributes": {
                "customer_id": 77,
                "user_email": "acme@example.com",
                "total": 1799,
                "currency": "USD",
                "status": "paid",
                "identifier": "ord-1001",
                "first_order_item": {"variant_id": 5},
            },
        },
    }


def test_lemonsqueezy_order_grants_credits(client):
    uid = user_id(client, "acme")

    response = _lemonsqueezy_post(client, _order_event(uid))

    assert response.status_code == 200
    assert _billing(client, "acme")["credits"] == 110

    _lemonsqueezy_post(client, _order_event(uid))
    assert _billing(client, "acme")["credits"] == 110


def test_lemonsqueezy_invalid_signature_is_rejected(client):
    uid = user_id(client, "acme")

    response = _lemonsqueezy_post(client, _order_event(uid), secret="not-the-secret")

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_SIGNATURE"
    assert _billing(client, "acme")["credits"] == 10


def test_lemonsqueezy_subscription_sets_plan(client):
    uid = user_id(client, "acme")
    event = {
        "meta": {"event_name": "subscription_created", "custom_data": {"user_id": uid, "plan_id": "growth"}},
        "data": {"id": "sub_77", "type": "subscriptions",
                 "attributes": {"customer_id": 77, "status": "active", "variant_id": 9,
                                "user_email": "acme@example.com"}},
    }

    assert _lemonsqueezy_post(client, event).status_code == 200

    billing = _billing(client, "acme")
    assert billing["plan"] == "growth"
    assert billing["details"]["name"] == "Growth"
