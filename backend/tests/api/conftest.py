"""API-specific test fixtures."""

import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select, update

from app.db.models.user import User
from app.db.models.webhook_log import StripeWebhookLog
from app.main import create_app


@pytest.fixture
def api_client(settings, stripe_gateway):
    """FastAPI test client wired through the real composition root.

    The lifespan creates the schema in the SQLite file named by ``settings``
    inside the TestClient's own event loop.
    """
    app = create_app(settings, gateway=stripe_gateway)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def sync_engine(settings, api_client):
    """Synchronous engine on the same SQLite file, for arranging and asserting rows."""
    engine = create_engine(settings.database_url.replace("+aiosqlite", ""))
    yield engine
    engine.dispose()


@pytest.fixture
def register_user(api_client):
    def _register(email: str = "a@b.com", password: str = "Secure@2025", full_name: str = "A B") -> dict:
        response = api_client.post(
            "/auth/register",
            json={"email": email, "password": password, "fullName": full_name},
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _register


@pytest.fixture
def auth_headers():
    def _headers(token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def user_row(sync_engine):
    def _row(user_id: str):
        with sync_engine.connect() as conn:
            return conn.execute(select(User.__table__).where(User.id == uuid.UUID(user_id))).one()

    return _row


@pytest.fixture
def update_user(sync_engine):
    def _update(user_id: str, **values) -> None:
        with sync_engine.begin() as conn:
            conn.execute(update(User.__table__).where(User.id == uuid.UUID(user_id)).values(**values))

    return _update


@pytest.fixture
def webhook_log_rows(sync_engine):
    def _rows() -> list:
        with sync_engine.connect() as conn:
            return conn.execute(select(StripeWebhookLog.__table__)).all()

    return _rows
