"""Shared test fixtures for all test groups."""

import hashlib
import hmac
import time

import pytest

from app.core.config import Settings
from app.core.security import hash_password
from app.db import close_db, create_session_factory, init_db
from app.db.models.user import User
from app.integrations.stripe_gateway import HostedSession, StripeGateway

TEST_WEBHOOK_SECRET = "whsec_test_secret"
TEST_PASSWORD = "Secure@2025"


class FakeStripeGateway(StripeGateway):
    """Records remote calls instead of talking to Stripe.

    Webhook verification is inherited unchanged, so signed payloads go through
    the real ``stripe.Webhook.construct_event``.
    """

    def __init__(self, webhook_secret: str = TEST_WEBHOOK_SECRET):
        super().__init__("sk_test_dummy", webhook_secret)
        self.customer_calls: list[dict] = []
        self.checkout_calls: list[dict] = []
        self.portal_calls: list[dict] = []
        self.prices: list = []

    async def create_customer(self, email: str, name: str, user_id: str) -> str:
        self.customer_calls.append({"email": email, "name": name, "user_id": user_id})
        return f"cus_test_{len(self.customer_calls)}"

    async def create_checkout_session(self, **kwargs) -> HostedSession:
        self.checkout_calls.append(kwargs)
        session_id = f"cs_test_{len(self.checkout_calls)}"
        return HostedSession(id=session_id, url=f"https://checkout.stripe.com/c/pay/{session_id}")

    async def create_portal_session(self, customer_id: str, return_url: str) -> HostedSession:
        self.portal_calls.append({"customer_id": customer_id, "return_url": return_url})
        return HostedSession(id="bps_test_1", url="https://billing.stripe.com/p/session/bps_test_1")

    async def list_recurring_prices(self) -> list:
        return list(self.prices)


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a throwaway SQLite file."""
    return Settings(
        _env_file=None,
        debug=True,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        host_api="http://testserver",
        jwt_secret="test-jwt-secret-that-is-long-enough-for-hs256",
        bcrypt_rounds=4,
        stripe_secret_key="sk_test_dummy",
        stripe_webhook_secret=TEST_WEBHOOK_SECRET,
        static_videos_dir=str(tmp_path / "videos"),
    )


@pytest.fixture
def stripe_gateway() -> FakeStripeGateway:
    return FakeStripeGateway()


@pytest.fixture
async def engine(settings):
    engine = await init_db(settings.database_url)
    yield engine
    await close_db(engine)


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def make_user(session_factory):
    """Factory inserting a user row directly, bypassing the auth service."""

    async def _make(email: str = "a@b.com", **overrides) -> User:
        fields = {
            "email": email,
            "password": hash_password(TEST_PASSWORD, rounds=4),
            "full_name": "A B",
        }
        fields.update(overrides)
        user = User(**fields)
        async with session_factory() as session:
            session.add(user)
            await session.commit()
            await session.refresh(user)
        return user

    return _make


@pytest.fixture
def load_user(session_factory):
    async def _load(user_id) -> User | None:
        async with session_factory() as session:
            return await session.get(User, user_id)

    return _load


@pytest.fixture
def stripe_signature():
    """Build a ``stripe-signature`` header value for a raw payload."""

    def _sign(payload: bytes, secret: str = TEST_WEBHOOK_SECRET, timestamp: int | None = None) -> str:
        ts = int(time.time()) if timestamp is None else timestamp
        signed = f"{ts}.".encode() + payload
        digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
        return f"t={ts},v1={digest}"

    return _sign
