"""Concurrent ledger operations against a file-backed database"""
import pytest
import threading
from datetime import datetime, timezone, timedelta
from sqlalchemy.orm import sessionmaker

from app.core.config import TOKENS_PER_CREDIT
from app.core.errors import ErrorKind
from app.db.session import build_engine
from app.models import Base
from app.models.pricing_plan import PricingPlan
from app.models.token_usage import TokenUsage
from app.models.user import User
from app.models.user_subscription import UserSubscription, SubscriptionStatus
from app.services.admin_service import grant_credits
from app.services.token_service import record_usage


@pytest.fixture
def file_session_factory(tmp_path):
    """Sessions on a real file so each thread gets its own connection"""
    engine = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


def _seed(factory, balance):
    db = factory()
    try:
        now = datetime.now(timezone.utc)
        user = User(email="busy@example.com")
        plan = PricingPlan(
            key="bulk", name="Bulk", price_in_minor_units=1000,
            token_allowance=balance, billing_cycle_days=30, is_active=True
        )
        db.add_all([user, plan])
        db.flush()
        subscription = UserSubscription(
            user_id=user.id, plan_id=plan.id, status=SubscriptionStatus.ACTIVE.value,
            token_allowance=balance, token_balance=balance, tokens_used=0,
            started_at=now, expires_at=now + timedelta(days=30)
        )
        db.add(subscription)
        db.commit()
        return user.id, subscription.id
    finally:
        db.close()


def _run_concurrently(count, target):
    barrier = threading.Barrier(count)
    results = [None] * count

    def worker(index):
        barrier.wait()
        results[index] = target(index)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return results


@pytest.mark.critical
class TestConcurrentUsage:
    """Balance mutations on one subscription are linearizable"""

    def test_one_more_request_than_credits(self, file_session_factory):
        n = 12
        user_id, subscription_id = _seed(file_session_factory, balance=(n - 1) * TOKENS_PER_CREDIT)

        def spend(index):
            db = file_session_factory()
            try:
                # 60 + 40 raw tokens cost exactly one credit
                return record_usage(db, user_id, f"chat-{index}", None, 60, 40)
            finally:
                db.close()

        results = _run_concurrently(n, spend)

        successes = [r for r in results if r is not None and r.ok]
        failures = [r for r in results if r is not None and not r.ok]
        assert len(successes) == n - 1
        assert len(failures) == 1
        assert failures[0].kind == ErrorKind.PAYMENT_REQUIRED

        db = file_session_factory()
        try:
            subscription = db.get(UserSubscription, subscription_id)
            assert subscription.token_balance == 0
            assert subscription.tokens_used == subscription.token_allowance
            assert subscription.status == SubscriptionStatus.EXHAUSTED.value
            deducted = sum(u.tokens_deducted for u in db.query(TokenUsage).all())
            assert deducted == (n - 1) * TOKENS_PER_CREDIT
        finally:
            db.close()

    def test_grants_and_usage_interleave_without_lost_updates(self, file_session_factory):
        user_id, subscription_id = _seed(file_session_factory, balance=10 * TOKENS_PER_CREDIT)

        def act(index):
            db = file_session_factory()
            try:
                if index % 2:
                    return grant_credits(db, user_id, TOKENS_PER_CREDIT)
                return record_usage(db, user_id, f"chat-{index}", None, 1, 0)
            finally:
                db.close()

        results = _run_concurrently(10, act)
        assert all(r is not None and r.ok for r in results)

        db = file_session_factory()
        try:
            subscription = db.get(UserSubscription, subscription_id)
            # 5 grants and 5 single-credit deductions cancel out
            assert subscription.token_balance == 10 * TOKENS_PER_CREDIT
            assert subscription.token_allowance == 15 * TOKENS_PER_CREDIT
            assert subscription.tokens_used == 5 * TOKENS_PER_CREDIT
            assert db.query(UserSubscription).filter(UserSubscription.user_id == user_id).count() == 1
        finally:
            db.close()
