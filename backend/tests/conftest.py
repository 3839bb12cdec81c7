"""Shared pytest fixtures for test suite"""
import os
import tempfile

from cryptography.fernet import Fernet

# Settings are read at import time, so the environment must be ready first
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("CRON_API_KEY", "test-cron-key")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_123")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test123")
os.environ.setdefault("MEDIA_ROOT", tempfile.mkdtemp(prefix="reelcast-media-"))
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import pytest
from typing import Generator
from unittest.mock import Mock, patch
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
import fakeredis
import stripe

from reelcast.core.config import EDITED_CLIPS_DIR
from reelcast.db import redis as redis_module
from reelcast.db.session import get_db
from reelcast.main import app
from reelcast.models import Base
from reelcast.models.edited_video import EditedVideo
from reelcast.models.social_account import SocialMediaAccount
from reelcast.models.subscription import Subscription
from reelcast.models.subscription_plan import SubscriptionPlan
from reelcast.models.user import User, ROLE_ADMIN
from reelcast.services.auth_service import create_user
from reelcast.utils.encryption import encrypt

TEST_PASSWORD = "TestPassword123!"

# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# StaticPool keeps one connection so every session sees the same in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def mock_redis():
    """Swap the lazy Redis client for fakeredis (Lua enabled for the rate limiter)"""
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)
    with patch.object(redis_module, "_client", fake_redis):
        yield fake_redis


@pytest.fixture(scope="function")
def client(db_session: Session, mock_redis) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database and mocked Redis"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db

    try:
        with patch("reelcast.main.initialize_otel", return_value=False):
            with TestClient(app) as test_client:
                yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def test_user(db_session: Session) -> User:
    return create_user(email="creator@example.com", password=TEST_PASSWORD, name="Creator", db=db_session)


@pytest.fixture(scope="function")
def other_user(db_session: Session) -> User:
    """Second user for ownership tests"""
    return create_user(email="other@example.com", password=TEST_PASSWORD, name="Other", db=db_session)


@pytest.fixture(scope="function")
def admin_user(db_session: Session) -> User:
    return create_user(email="admin@example.com", password=TEST_PASSWORD, name="Admin", role=ROLE_ADMIN, db=db_session)


def login(client: TestClient, email: str, password: str = TEST_PASSWORD) -> TestClient:
    """Log in through the API and attach the session's CSRF token to the client"""
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200

    csrf_response = client.get("/api/auth/csrf")
    assert csrf_response.status_code == 200
    client.headers.update({"X-CSRF-Token": csrf_response.json()["csrf_token"]})
    return client


@pytest.fixture(scope="function")
def authenticated_client(client: TestClient, test_user: User) -> TestClient:
    """Client with authenticated user session and CSRF token"""
    return login(client, test_user.email)


@pytest.fixture(scope="function")
def admin_client(client: TestClient, admin_user: User) -> TestClient:
    """Client logged in as an admin"""
    return login(client, admin_user.email)


@pytest.fixture(scope="function")
def basic_plan(db_session: Session) -> SubscriptionPlan:
    plan = SubscriptionPlan(
        name="Basic",
        description="Basic plan",
        monthly_price=19.0,
        yearly_price=180.0,
        features=["100 minutes"],
        minutes_allowed=100,
        max_file_size=300,
        max_concurrent_requests=2,
        storage_duration=7,
    )
    db_session.add(plan)
    db_session.commit()
    db_session.refresh(plan)
    return plan


def subscribe(user: User, plan: SubscriptionPlan, db: Session, minutes_used: int = 0, status: str = "active",
              period_end=None) -> Subscription:
    """Give a user an active paid subscription on a plan"""
    subscription = Subscription(
        user_id=user.id,
        plan_id=plan.id,
        plan=plan.slug,
        status=status,
        minutes_used=minutes_used,
        minutes_allowed=plan.minutes_allowed,
        stripe_subscription_id=f"sub_{user.id}",
        stripe_customer_id=f"cus_{user.id}",
    )
    user.is_subscribed = status in ("active", "active-canceling")
    user.stripe_subscription_id = subscription.stripe_subscription_id
    user.stripe_customer_id = subscription.stripe_customer_id
    user.stripe_current_period_end = period_end
    db.add(subscription)
    db.commit()
    db.refresh(user)
    return subscription


@pytest.fixture(scope="function")
def subscribed_user(test_user: User, basic_plan: SubscriptionPlan, db_session: Session) -> User:
    subscribe(test_user, basic_plan, db_session)
    return test_user


def make_clip(user: User, db: Session, content: bytes = b"0123456789" * 10, name: str = None,
              title: str = "My clip") -> EditedVideo:
    """Write a clip into the edited clips directory and record it"""
    EDITED_CLIPS_DIR.mkdir(parents=True, exist_ok=True)
    name = name or f"clip-{user.id}-{os.urandom(4).hex()}.mp4"
    (EDITED_CLIPS_DIR / name).write_bytes(content)

    clip = EditedVideo(
        user_id=user.id,
        title=title,
        source_type="upload",
        source_id="src-1",
        file_path=f"editedClips/{name}",
        file_size=len(content),
        duration=12.5,
    )
    db.add(clip)
    db.commit()
    db.refresh(clip)
    return clip


@pytest.fixture(scope="function")
def clip(test_user: User, db_session: Session) -> EditedVideo:
    return make_clip(test_user, db_session)


def make_account(user: User, db: Session, platform: str = "TIKTOK", name: str = "creator_tt",
                 token_expiry=None, refresh_token: str = None, extra_data: dict = None) -> SocialMediaAccount:
    account = SocialMediaAccount(
        user_id=user.id,
        platform=platform,
        account_name=name,
        account_id="acct-1",
        access_token=encrypt("access-token"),
        refresh_token=encrypt(refresh_token) if refresh_token else None,
        token_expiry=token_expiry,
        is_active=True,
        extra_data=extra_data or {},
    )
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


@pytest.fixture(scope="function")
def social_account(test_user: User, db_session: Session) -> SocialMediaAccount:
    return make_account(test_user, db_session)


@pytest.fixture(scope="function", autouse=True)
def auto_mock_stripe():
    """Automatically mock Stripe for all tests so nothing reaches the real API"""
    with patch("reelcast.services.stripe_service.stripe") as mock_stripe_module:
        # Real exception classes so except clauses keep working
        mock_stripe_module.StripeError = stripe.StripeError
        mock_stripe_module.SignatureVerificationError = stripe.SignatureVerificationError

        mock_stripe_module.checkout.Session.create = Mock(return_value=Mock(
            id="cs_test123",
            url="https://checkout.stripe.com/test"
        ))
        mock_stripe_module.checkout.Session.retrieve = Mock(return_value={
            "id": "cs_test123",
            "status": "complete",
            "subscription": "sub_test123",
            "customer": "cus_test123",
            "metadata": {},
        })
        mock_stripe_module.billing_portal.Session.create = Mock(return_value=Mock(
            url="https://billing.stripe.com/test"
        ))
        mock_stripe_module.Subscription.retrieve = Mock(return_value={
            "id": "sub_test123",
            "status": "active",
            "customer": "cus_test123",
            "current_period_end": 1893456000,  # 2030-01-01
            "cancel_at_period_end": False,
            "items": {"data": [{"price": {"id": "price_test123"}}]},
        })
        mock_stripe_module.Subscription.cancel = Mock(return_value={"id": "sub_test123", "status": "canceled"})
        mock_stripe_module.Webhook.construct_event = Mock(return_value={
            "id": "evt_test123",
            "type": "customer.subscription.created",
            "data": {"object": {}}
        })
        mock_stripe_module.Balance.retrieve = Mock(return_value={
            "livemode": False,
            "available": [{"amount": 1250, "currency": "usd"}],
        })

        yield mock_stripe_module
