import uuid
from datetime import timedelta

import pytest

from modelsnapper.core.exceptions import InsufficientCredits, NotFound
from modelsnapper.database.models import User, utcnow
from modelsnapper.models.billing import CreditTransactionType
from modelsnapper.services.credit_service import credit_service

from conftest import CRON_SECRET, auth, user_id


async def _user(db, credits, auth_user_id="user_1", plan_type="free"):
    user = User(auth_user_id=auth_user_id, email_addresses=[f"{auth_user_id}@example.com"],
                credits=credits, plan_type=plan_type)
    db.add(user)
    await db.commit()
    return user


@pytest.mark.anyio
async def test_debit_within_balance(db):
    user = await _user(db, 5)

    balance = await credit_service.adjust_credits(
        db, user.id, -3, reason="Render", transaction_type=CreditTransactionType.GENERATION
    )

    assert balance == 2
    transactions, total = await credit_service.list_transactions(db, user_id=user.id)
    assert total == 1
    assert transactions[0].amount == -3
    assert transactions[0].balance_after == 2
    assert transactions[0].type == "GENERATION"


@pytest.mark.anyio
async def test_overdraw_is_refused_and_balance_unchanged(db):
    user = await _user(db, 2)

    with pytest.raises(InsufficientCredits) as exc_info:
        await credit_service.adjust_credits(db, user.id, -3, reason="Render")

    assert exc_info.value.status_code == 402
    assert exc_info.value.data == {"required": 3, "available": 2}
    assert await credit_service.get_balance(db, user.id) == 2
    _, total = await credit_service.list_transactions(db, user_id=user.id)
    assert total == 0


@pytest.mark.anyio
async def test_unclamped_adjustment_stops_at_zero(db):
    user = await _user(db, 4)

    balance = await credit_service.adjust_credits(
        db, user.id, -10, reason="Abuse", transaction_type=CreditTransactionType.ADMIN_ADJUSTMENT,
        enforce_floor=False,
    )

    assert balance == 0
    assert await credit_service.get_balance(db, user.id) == 0


@pytest.mark.anyio
async def test_unknown_user_is_not_found(db):
    await _user(db, 1)

    with pytest.raises(NotFound):
        await credit_service.adjust_credits(db, uuid.uuid4(), 1, reason="Top up")


@pytest.mark.anyio
async def test_free_reset_only_touches_due_free_users(db, test_settings):
    due = await _user(db, 0, "due")
    recent = await _user(db, 1, "recent")
    paying = await _user(db, 0, "paying", plan_type="starter")
    due.last_credit_reset = utcnow() - timedelta(days=test_settings.FREE_CREDITS_RESET_DAYS + 1)
    recent.last_credit_reset = utcnow() - timedelta(days=1)
    paying.last_credit_reset = utcnow() - timedelta(days=90)
    await db.commit()

    assert await credit_service.reset_free_credits(db) == 1

    assert await credit_service.get_balance(db, due.id) == test_settings.FREE_CREDITS_RESET_AMOUNT
    assert await credit_service.get_balance(db, recent.id) == 1
    assert await credit_service.get_balance(db, paying.id) == 0


# =============================================================================
# ADMIN AND CRON ENDPOINTS
# =============================================================================

def test_admin_adjustment_clamps_and_is_logged(client):
    target = user_id(client, "acme")

    response = client.post(
        "/api/admin/credits/adjust",
        json={"target_user_id": target, "amount": -25, "reason": "Chargeback"},
        headers=auth("admin"),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["previous_balance"] == 10
    assert body["new_balance"] == 0

    ledger = client.get(f"/api/admin/credits/transactions?user_id={target}", headers=auth("admin")).json()
    assert ledger["total"] == 1
    assert ledger["transactions"][0]["type"] == "ADMIN_ADJUSTMENT"
    assert ledger["transactions"][0]["reason"] == "Chargeback"


def test_credit_adjustment_requires_admin(client):
    target = user_id(client, "acme")

    response = client.post(
        "/api/admin/credits/adjust",
        json={"target_user_id": target, "amount": 100, "reason": "Free money"},
        headers=auth("acme"),
    )

    assert response.status_code == 403
    assert client.get("/api/app/billing", headers=auth("acme")).json()["credits"] == 10


def test_cron_endpoints_require_secret(client):
    assert client.get("/api/cron/reset-free-credits").status_code == 401
    wrong = client.get("/api/cron/reset-free-credits", headers={"Authorization": "Bearer nope"})
    assert wrong.status_code == 401

    ok = client.get("/api/cron/expire-consent-requests", headers={"Authorization": f"Bearer {CRON_SECRET}"})
    assert ok.status_code == 200
    assert ok.json() == {"expired": 0}
