from datetime import timedelta
from decimal import Decimal

import httpx
import pytest

from modelsnapper.database.models import Render, User, utcnow
from modelsnapper.services.fashn_client import FashnAPIError, FashnClient
from modelsnapper.services.render_service import render_service

from conftest import CRON_SECRET, FakeGenerationClient, auth, create_active_model, create_business

GARMENT = "https://cdn.example.com/shirt.png"


def _avatar(client):
    response = client.post(
        "/api/admin/avatars",
        json={"gender": "female", "body_type": "slim", "skin_tone": "medium",
              "image_url": "https://cdn.example.com/avatar.png"},
        headers=auth("admin"),
    )
    assert response.status_code == 201, response.text
    return response.json()["id"]


def _credits(client, token):
    return client.get("/api/app/billing", headers=auth(token)).json()["credits"]


def test_avatar_render_debits_one_credit(client, generation_client):
    avatar_id = _avatar(client)
    create_business(client, "acme")

    response = client.post("/api/render", json={"garment_image_url": GARMENT, "avatar_id": avatar_id},
                           headers=auth("acme"))

    assert response.status_code == 202, response.text
    body = response.json()
    assert body["status"] == "processing"
    assert body["model_type"] == "AI_AVATAR"
    assert body["provider_request_id"] == "pred_123"
    assert generation_client.submitted[0]["model_image"] == "https://cdn.example.com/avatar.png"
    assert _credits(client, "acme") == 9


def test_render_requires_exactly_one_subject(client):
    create_business(client, "acme")

    response = client.post("/api/render", json={"garment_image_url": GARMENT}, headers=auth("acme"))

    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_human_model_render_needs_approved_consent(client, generation_client):
    model_id = create_active_model(client, "mia")
    create_business(client, "acme")

    refused = client.post("/api/render", json={"garment_image_url": GARMENT, "model_id": model_id},
                          headers=auth("acme"))
    assert refused.status_code == 403
    assert refused.json()["code"] == "CONSENT_REQUIRED"
    assert generation_client.submitted == []
    assert _credits(client, "acme") == 10

    request_id = client.post("/api/consent", json={"model_id": model_id}, headers=auth("acme")).json()["id"]
    client.put(f"/api/consent/{request_id}", json={"status": "APPROVED"}, headers=auth("mia"))

    accepted = client.post("/api/render", json={"garment_image_url": GARMENT, "model_id": model_id},
                           headers=auth("acme"))
    assert accepted.status_code == 202
    assert accepted.json()["model_type"] == "HUMAN_MODEL"
    assert generation_client.submitted[0]["model_image"] == "https://cdn.example.com/model.png"


def test_provider_rejection_refunds_credit(client, generation_client):
    avatar_id = _avatar(client)
    create_business(client, "acme")
    generation_client.fail_submit = True

    response = client.post("/api/render", json={"garment_image_url": GARMENT, "avatar_id": avatar_id},
                           headers=auth("acme"))

    assert response.status_code == 502
    assert response.json()["code"] == "UPSTREAM_ERROR"
    assert _credits(client, "acme") == 10

    history = client.get("/api/render/history", headers=auth("acme")).json()
    assert history["total"] == 1
    assert history["renders"][0]["status"] == "failed"


def test_render_without_credits_is_refused(client):
    avatar_id = _avatar(client)
    target = client.get("/api/user/me", headers=auth("acme")).json()["id"]
    create_business(client, "acme")
    client.post("/api/admin/credits/adjust", json={"target_user_id": target, "amount": -10, "reason": "Test"},
                headers=auth("admin"))

    response = client.post("/api/render", json={"garment_image_url": GARMENT, "avatar_id": avatar_id},
                           headers=auth("acme"))

    assert response.status_code == 402
    assert response.json()["code"] == "INSUFFICIENT_CREDITS"
    assert client.get("/api/render/history", headers=auth("acme")).json()["total"] == 0


def test_status_poll_completes_render(client, generation_client):
    avatar_id = _avatar(client)
    create_business(client, "acme")
    render_id = client.post("/api/render", json={"garment_image_url": GARMENT, "avatar_id": avatar_id},
                            headers=auth("acme")).json()["id"]

    generation_client.status = {"status": "completed", "output": ["https://cdn.example.com/out.png"], "error": None}
    response = client.get(f"/api/render/{render_id}/status", headers=auth("acme"))

    assert response.status_code == 200
    assert response.json()["status"] == "completed"
    assert response.json()["output_url"] == "https://cdn.example.com/out.png"
    assert _credits(client, "acme") == 9


def test_failed_prediction_refunds_once(client, generation_client):
    avatar_id = _avatar(client)
    create_business(client, "acme")
    render_id = client.post("/api/render", json={"garment_image_url": GARMENT, "avatar_id": avatar_id},
                            headers=auth("acme")).json()["id"]

    generation_client.status = {"status": "failed", "output": None, "error": {"message": "Bad garment"}}
    first = client.get(f"/api/render/{render_id}/status", headers=auth("acme"))
    second = client.get(f"/api/render/{render_id}/status", headers=auth("acme"))

    assert first.json()["status"] == "failed"
    assert first.json()["error_message"] == "Bad garment"
    assert second.json()["status"] == "failed"
    assert _credits(client, "acme") == 10


def test_other_users_cannot_see_render(client):
    avatar_id = _avatar(client)
    create_business(client, "acme")
    create_business(client, "rival")
    render_id = client.post("/api/render", json={"garment_image_url": GARMENT, "avatar_id": avatar_id},
                            headers=auth("acme")).json()["id"]

    assert client.get(f"/api/render/{render_id}", headers=auth("rival")).status_code == 404
    assert client.get(f"/api/render/{render_id}", headers=auth("admin")).status_code == 200


def test_render_costing_more_than_balance_leaves_balance(client, test_settings, monkeypatch):
    avatar_id = _avatar(client)
    target = client.get("/api/user/me", headers=auth("acme")).json()["id"]
    create_business(client, "acme")
    client.post("/api/admin/credits/adjust", json={"target_user_id": target, "amount": -8, "reason": "Test"},
                headers=auth("admin"))
    monkeypatch.setattr(test_settings, "RENDER_CREDIT_COST", 5)

    response = client.post("/api/render", json={"garment_image_url": GARMENT, "avatar_id": avatar_id},
                           headers=auth("acme"))

    assert response.status_code == 402
    assert response.json()["data"] == {"required": 5, "available": 2}
    assert _credits(client, "acme") == 2


def _failed_render(client, generation_client, token="acme"):
    avatar_id = _avatar(client)
    create_business(client, token)
    generation_client.fail_submit = True
    response = client.post("/api/render", json={"garment_image_url": GARMENT, "avatar_id": avatar_id},
                           headers=auth(token))
    assert response.status_code == 502, response.text
    return client.get("/api/render/history", headers=auth(token)).json()["renders"][0]["id"]


# =============================================================================
# SUBMISSION FAILURES
# =============================================================================

def test_unexpected_submission_error_refunds_credit(client, generation_client):
    avatar_id = _avatar(client)
    create_business(client, "acme")
    generation_client.submit_error = AttributeError("'str' object has no attribute 'get'")

    response = client.post("/api/render", json={"garment_image_url": GARMENT, "avatar_id": avatar_id},
                           headers=auth("acme"))

    assert response.status_code == 502
    assert response.json()["code"] == "UPSTREAM_ERROR"
    assert _credits(client, "acme") == 10

    render = client.get("/api/render/history", headers=auth("acme")).json()["renders"][0]
    assert render["status"] == "failed"
    assert render["error_message"] == "Submission failed: AttributeError"


@pytest.mark.anyio
async def test_stale_submission_fails_on_poll(db):
    user = User(auth_user_id="stale_user", email_addresses=["stale@example.com"], credits=9)
    db.add(user)
    await db.commit()
    started = utcnow() - timedelta(minutes=10)
    stale = Render(user_id=user.id, garment_image_url=GARMENT, status="processing", credits_used=1,
                   created_at=started, updated_at=started)
    fresh = Render(user_id=user.id, garment_image_url=GARMENT, status="processing", credits_used=0)
    db.add_all([stale, fresh])
    await db.commit()

    polled = await render_service.refresh_status(db, stale.id, user, FakeGenerationClient())
    untouched = await render_service.refresh_status(db, fresh.id, user, FakeGenerationClient())

    assert polled.status == "failed"
    assert polled.error_message == "Submission did not complete"
    assert untouched.status == "processing"
    await db.refresh(user)
    assert user.credits == 10


@pytest.mark.anyio
async def test_sweep_fails_only_stale_submissions(db):
    user = User(auth_user_id="sweep_user", email_addresses=["sweep@example.com"], credits=7)
    db.add(user)
    await db.commit()
    started = utcnow() - timedelta(hours=1)
    db.add_all([
        Render(user_id=user.id, garment_image_url=GARMENT, status="processing", credits_used=1,
               created_at=started, updated_at=started),
        Render(user_id=user.id, garment_image_url=GARMENT, status="pending", credits_used=1,
               created_at=started, updated_at=started),
        Render(user_id=user.id, garment_image_url=GARMENT, status="processing", credits_used=1,
               provider_request_id="pred_live", created_at=started, updated_at=started),
        Render(user_id=user.id, garment_image_url=GARMENT, status="processing", credits_used=1),
    ])
    await db.commit()

    assert await render_service.fail_stale_submissions(db) == 2
    assert await render_service.fail_stale_submissions(db) == 0
    await db.refresh(user)
    assert user.credits == 9


def test_stale_render_sweep_requires_cron_secret(client):
    assert client.get("/api/cron/fail-stale-renders").status_code == 401

    response = client.get("/api/cron/fail-stale-renders", headers={"Authorization": f"Bearer {CRON_SECRET}"})
    assert response.status_code == 200
    assert response.json() == {"failed": 0}


def _fashn_client(body):
    def handler(request):
        return httpx.Response(200, json=body)

    fashn = FashnClient(api_key="fa_test", base_url="https://fashn.test")
    fashn.session = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return fashn


@pytest.mark.anyio
async def test_fashn_string_error_raises_api_error(anyio_backend):
    fashn = _fashn_client({"id": None, "error": "quota exceeded"})
    try:
        with pytest.raises(FashnAPIError, match="quota exceeded"):
            await fashn.submit_tryon(GARMENT, "https://cdn.example.com/avatar.png")
    finally:
        await fashn.session.aclose()


@pytest.mark.anyio
async def test_fashn_non_object_body_raises_api_error(anyio_backend):
    fashn = _fashn_client(["pred_1"])
    try:
        with pytest.raises(FashnAPIError, match="Unexpected response body"):
            await fashn.submit_tryon(GARMENT, "https://cdn.example.com/avatar.png")
    finally:
        await fashn.session.aclose()


# =============================================================================
# RETRIES
# =============================================================================

def test_failed_render_can_be_retried(client, generation_client):
    render_id = _failed_render(client, generation_client)
    generation_client.fail_submit = False

    response = client.post(f"/api/render/{render_id}/retry", headers=auth("acme"))

    assert response.status_code == 202, response.text
    body = response.json()
    assert body["id"] == render_id
    assert body["status"] == "processing"
    assert body["retry_count"] == 1
    assert body["provider_request_id"] == "pred_123"
    assert body["error_message"] is None
    assert _credits(client, "acme") == 9


def test_only_failed_renders_are_retried(client, generation_client):
    avatar_id = _avatar(client)
    create_business(client, "acme")
    render_id = client.post("/api/render", json={"garment_image_url": GARMENT, "avatar_id": avatar_id},
                            headers=auth("acme")).json()["id"]

    response = client.post(f"/api/render/{render_id}/retry", headers=auth("acme"))

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_STATE"
    assert _credits(client, "acme") == 9


def test_retries_stop_at_the_limit(client, generation_client, test_settings, monkeypatch):
    monkeypatch.setattr(test_settings, "RENDER_MAX_RETRIES", 1)
    render_id = _failed_render(client, generation_client)

    again = client.post(f"/api/render/{render_id}/retry", headers=auth("acme"))
    assert again.status_code == 502
    assert _credits(client, "acme") == 10

    refused = client.post(f"/api/render/{render_id}/retry", headers=auth("acme"))
    assert refused.status_code == 400
    assert refused.json()["code"] == "MAX_RETRIES_EXCEEDED"

    render = client.get(f"/api/render/{render_id}", headers=auth("acme")).json()
    assert render["status"] == "failed"
    assert render["retry_count"] == 1
    assert render["max_retries"] == 1


def test_retry_without_credits_leaves_render_failed(client, generation_client):
    render_id = _failed_render(client, generation_client)
    target = client.get("/api/user/me", headers=auth("acme")).json()["id"]
    client.post("/api/admin/credits/adjust", json={"target_user_id": target, "amount": -10, "reason": "Test"},
                headers=auth("admin"))
    generation_client.fail_submit = False

    response = client.post(f"/api/render/{render_id}/retry", headers=auth("acme"))

    assert response.status_code == 402
    render = client.get(f"/api/render/{render_id}", headers=auth("acme")).json()
    assert render["status"] == "failed"
    assert render["retry_count"] == 0


def test_other_users_cannot_retry_render(client, generation_client):
    render_id = _failed_render(client, generation_client)
    create_business(client, "rival")

    response = client.post(f"/api/render/{render_id}/retry", headers=auth("rival"))

    assert response.status_code == 404
    assert _credits(client, "rival") == 10


# =============================================================================
# MODEL DASHBOARD
# =============================================================================

def test_model_dashboard_counts_completed_renders(client, generation_client):
    model_id = create_active_model(client, "mia")
    create_business(client, "acme")
    client.put("/api/business/profile", json={"business_name": "Acme Apparel"}, headers=auth("acme"))
    request_id = client.post("/api/consent", json={"model_id": model_id}, headers=auth("acme")).json()["id"]
    client.put(f"/api/consent/{request_id}", json={"status": "APPROVED"}, headers=auth("mia"))
    render_id = client.post("/api/render", json={"garment_image_url": GARMENT, "model_id": model_id},
                            headers=auth("acme")).json()["id"]

    empty = client.get("/api/model/dashboard/stats", headers=auth("mia")).json()
    assert empty["total_generations"] == 0
    assert Decimal(str(empty["total_earnings"])) == 0

    generation_client.status = {"status": "completed", "output": ["https://cdn.example.com/out.png"], "error": None}
    client.get(f"/api/render/{render_id}/status", headers=auth("acme"))
    client.get(f"/api/render/{render_id}/status", headers=auth("acme"))

    stats = client.get("/api/model/dashboard/stats", headers=auth("mia"))
    assert stats.status_code == 200
    body = stats.json()
    assert body["total_generations"] == 1
    assert Decimal(str(body["total_earnings"])) == Decimal("2")
    assert Decimal(str(body["this_month_earnings"])) == Decimal("2")
    assert Decimal(str(body["pending_earnings"])) == Decimal("2")

    generations = client.get("/api/model/dashboard/generations", headers=auth("mia")).json()
    assert generations["total"] == 1
    assert generations["has_more"] is False
    assert generations["generations"][0]["id"] == render_id
    assert generations["generations"][0]["requested_by"] == "Acme Apparel"
    assert generations["generations"][0]["output_url"] == "https://cdn.example.com/out.png"


def test_model_dashboard_is_for_models(client):
    create_business(client, "acme")

    assert client.get("/api/model/dashboard/stats", headers=auth("acme")).status_code == 403
    assert client.get("/api/model/dashboard/generations", headers=auth("acme")).status_code == 403
