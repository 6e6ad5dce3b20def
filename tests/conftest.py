import pytest
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials
from fastapi.testclient import TestClient

from modelsnapper.core.config import settings
from modelsnapper.core.exceptions import NotAuthenticated
from modelsnapper.database import connection
from modelsnapper.middleware.auth_middleware import get_current_identity, security
from modelsnapper.models.auth import Identity
from modelsnapper.services.fashn_client import FashnAPIError, get_generation_client

from main import app

ADMIN_EMAIL = "admin@modelsnapper.test"
CRON_SECRET = "cron-test-secret"
STRIPE_WEBHOOK_SECRET = "whsec_test"
LEMONSQUEEZY_WEBHOOK_SECRET = "ls-test-secret"


class FakeGenerationClient:
    """Stands in for FashnClient; records calls and replays canned results"""

    def __init__(self):
        self.submitted = []
        self.fail_submit = False
        # Raised as is from submit_tryon, e.g. a parsing bug inside the client
        self.submit_error = None
        self.prediction_id = "pred_123"
        self.status = {"id": "pred_123", "status": "processing", "output": None, "error": None}

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    async def submit_tryon(self, garment_image, model_image, category="auto"):
        self.submitted.append({"garment_image": garment_image, "model_image": model_image, "category": category})
        if self.submit_error is not None:
            raise self.submit_error
        if self.fail_submit:
            raise FashnAPIError("Rate limit exceeded")
        return self.prediction_id

    async def get_status(self, prediction_id):
        return dict(self.status, id=prediction_id)


async def fake_identity(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Identity:
    # The bearer token doubles as the identity provider user id
    if credentials is None or not credentials.credentials:
        raise NotAuthenticated()
    token = credentials.credentials
    email = ADMIN_EMAIL if token == "admin" else f"{token}@example.com"
    return Identity(auth_user_id=token, email_addresses=[email], first_name=token.capitalize())


def auth(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def test_settings(monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "DATABASE_URL", f"sqlite:///{tmp_path / 'modelsnapper.db'}")
    monkeypatch.setattr(settings, "AUTO_CREATE_TABLES", True)
    monkeypatch.setattr(settings, "ADMIN_EMAILS", ADMIN_EMAIL)
    monkeypatch.setattr(settings, "CRON_SECRET", CRON_SECRET)
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", STRIPE_WEBHOOK_SECRET)
    monkeypatch.setattr(settings, "LEMONSQUEEZY_WEBHOOK_SECRET", LEMONSQUEEZY_WEBHOOK_SECRET)
    monkeypatch.setattr(settings, "RESEND_API_KEY", None)
    monkeypatch.setattr(settings, "FREE_CREDITS", 10)
    monkeypatch.setattr(settings, "RENDER_CREDIT_COST", 1)
    monkeypatch.setattr(settings, "CONSENT_REQUEST_TTL_DAYS", 30)
    return settings


@pytest.fixture
def generation_client():
    return FakeGenerationClient()


@pytest.fixture
def client(generation_client):
    app.dependency_overrides[get_current_identity] = fake_identity
    app.dependency_overrides[get_generation_client] = lambda: generation_client
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
async def db(anyio_backend, tmp_path):
    await connection.close_database()
    await connection.init_database(f"sqlite:///{tmp_path / 'services.db'}")
    await connection.create_tables()
    async with connection.get_session() as session:
        yield session
    await connection.close_database()


# =============================================================================
# API SEEDING HELPERS
# =============================================================================

def onboard(client, token, role):
    response = client.post("/api/user/role", json={"role": role}, headers=auth(token))
    assert response.status_code == 200, response.text
    return response.json()


def create_active_model(client, token, photo="https://cdn.example.com/model.png", requires_consent=True):
    onboard(client, token, "MODEL")
    response = client.put(
        "/api/model/profile",
        json={
            "display_name": token.capitalize(),
            "primary_photo": photo,
            "status": "active",
            "requires_consent": requires_consent,
        },
        headers=auth(token),
    )
    assert response.status_code == 200, response.text
    return response.json()["id"]


def create_business(client, token):
    onboard(client, token, "BUSINESS")
    response = client.get("/api/business/profile", headers=auth(token))
    assert response.status_code == 200, response.text
    return response.json()["id"]


def user_id(client, token):
    response = client.get("/api/user/me", headers=auth(token))
    assert response.status_code == 200, response.text
    return response.json()["id"]
