"""Shared pytest fixtures for test suite"""
import os
import pytest
import secrets
import sys
from datetime import datetime, timezone, timedelta
from pathlib import Path
from typing import Callable, Generator
from unittest.mock import patch
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
import fakeredis

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")

from app.main import app
from app.db import redis as redis_module
from app.db.session import build_engine, get_db
from app.models import Base
from app.models.model_config import ModelConfig
from app.models.pricing_plan import PricingPlan
from app.models.user import User, USER_ROLE_ADMIN, USER_ROLE_REGULAR
from app.models.user_subscription import UserSubscription, SubscriptionStatus


# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# StaticPool keeps the single in-memory connection alive across sessions
test_engine = build_engine(TEST_DATABASE_URL, poolclass=StaticPool)

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
    """Replace the lazily created Redis client with fakeredis"""
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
            pass  # Session closed by the db_session fixture

    app.dependency_overrides[get_db] = override_get_db

    try:
        with patch("app.main.init_db"):
            with patch("app.main.initialize_otel", return_value=False):
                with patch("app.main.instrument_sqlalchemy"):
                    with TestClient(app) as test_client:
                        yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def login_as(client: TestClient, mock_redis) -> Callable[[User], TestClient]:
    """Attach a session cookie for ``user`` to the test client"""

    def _login(user: User) -> TestClient:
        session_id = secrets.token_urlsafe(16)
        redis_module.set_session(session_id, user.id)
        client.cookies.set("session_id", session_id)
        return client

    return _login


def _create_user(db: Session, email: str, role: str) -> User:
    user = User(email=email, role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture(scope="function")
def test_user(db_session: Session) -> User:
    return _create_user(db_session, "reader@example.com", USER_ROLE_REGULAR)


@pytest.fixture(scope="function")
def test_user_2(db_session: Session) -> User:
    """Second user for isolation tests"""
    return _create_user(db_session, "writer@example.com", USER_ROLE_REGULAR)


@pytest.fixture(scope="function")
def admin_user(db_session: Session) -> User:
    return _create_user(db_session, "admin@example.com", USER_ROLE_ADMIN)


@pytest.fixture(scope="function")
def starter_plan(db_session: Session) -> PricingPlan:
    """Active plan: 500 credits for 30 days"""
    plan = PricingPlan(
        key="starter",
        name="Starter",
        price_in_minor_units=49900,
        token_allowance=50000,
        billing_cycle_days=30,
        is_active=True
    )
    db_session.add(plan)
    db_session.commit()
    db_session.refresh(plan)
    return plan


@pytest.fixture(scope="function")
def pro_plan(db_session: Session) -> PricingPlan:
    plan = PricingPlan(
        key="pro",
        name="Pro",
        price_in_minor_units=149900,
        token_allowance=200000,
        billing_cycle_days=90,
        is_active=True
    )
    db_session.add(plan)
    db_session.commit()
    db_session.refresh(plan)
    return plan


@pytest.fixture(scope="function")
def retired_plan(db_session: Session) -> PricingPlan:
    plan = PricingPlan(
        key="legacy",
        name="Legacy",
        price_in_minor_units=9900,
        token_allowance=10000,
        billing_cycle_days=30,
        is_active=False
    )
    db_session.add(plan)
    db_session.commit()
    db_session.refresh(plan)
    return plan


@pytest.fixture(scope="function")
def default_model(db_session: Session) -> ModelConfig:
    """Model with no configured rates (baseline cost)"""
    model_config = ModelConfig(key="fast", display_name="Fast", free_messages_per_day=3)
    db_session.add(model_config)
    db_session.commit()
    db_session.refresh(model_config)
    return model_config


@pytest.fixture(scope="function")
def premium_model(db_session: Session) -> ModelConfig:
    """Model with input rate 2 and output rate 4"""
    model_config = ModelConfig(
        key="deep",
        display_name="Deep",
        input_cost_per_million=2,
        output_cost_per_million=4,
        free_messages_per_day=1
    )
    db_session.add(model_config)
    db_session.commit()
    db_session.refresh(model_config)
    return model_config


@pytest.fixture(scope="function")
def make_subscription(db_session: Session) -> Callable[..., UserSubscription]:
    """Factory for subscriptions in an arbitrary state"""

    def _make(
        user: User,
        plan: PricingPlan,
        balance: int,
        allowance: int = None,
        expires_in: timedelta = timedelta(days=30),
        status: str = SubscriptionStatus.ACTIVE.value,
        started_ago: timedelta = timedelta(days=1)
    ) -> UserSubscription:
        now = datetime.now(timezone.utc)
        allowance = balance if allowance is None else allowance
        subscription = UserSubscription(
            user_id=user.id,
            plan_id=plan.id,
            status=status,
            token_allowance=allowance,
            token_balance=balance,
            tokens_used=allowance - balance,
            started_at=now - started_ago,
            expires_at=now + expires_in,
            created_at=now - started_ago,
            updated_at=now - started_ago
        )
        db_session.add(subscription)
        db_session.commit()
        db_session.refresh(subscription)
        return subscription

    return _make


@pytest.fixture(autouse=True)
def mock_stripe():
    """Never reach the real Stripe API"""
    with patch("app.services.stripe_service.stripe") as mock:
        yield mock
