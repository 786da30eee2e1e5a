"""Admin operations - grants, pricing plans, model configs, user listings"""
import pytest
from datetime import datetime, timezone, timedelta

from app.core.config import MANUAL_TOP_UP_PLAN_KEY
from app.core.errors import ErrorKind
from app.models.pricing_plan import PricingPlan
from app.models.user_subscription import UserSubscription, SubscriptionStatus
from app.services.admin_service import (
    grant_credits, get_user_by_email, list_users_with_balances, get_user_details_with_balance,
    create_model_config, update_model_config, model_config_to_dict
)
from app.services.plan_service import (
    list_pricing_plans, get_pricing_plan, create_pricing_plan, update_pricing_plan, delete_pricing_plan
)
from app.services.subscription_service import as_utc, ensure_manual_plan


@pytest.mark.critical
class TestGrantCredits:
    """Manual credit grants"""

    def test_grant_merges_into_active_subscription(self, test_user, starter_plan, make_subscription, db_session):
        existing = make_subscription(test_user, starter_plan, balance=300, allowance=1000)

        granted = grant_credits(db_session, test_user.id, 5000, expires_in_days=7).unwrap()

        assert granted.id == existing.id
        assert granted.plan_id == starter_plan.id
        assert granted.token_balance == 5300
        assert granted.token_allowance == 6000
        assert granted.tokens_used == 700
        assert db_session.query(UserSubscription).count() == 1

    def test_grant_extends_expiry_only_forward(self, test_user, starter_plan, make_subscription, db_session):
        existing = make_subscription(test_user, starter_plan, balance=300, expires_in=timedelta(days=60))
        expiry = as_utc(existing.expires_at)

        granted = grant_credits(db_session, test_user.id, 100, expires_in_days=1).unwrap()

        assert as_utc(granted.expires_at) == expiry

    def test_grant_without_subscription_uses_manual_plan(self, test_user, db_session):
        now = datetime.now(timezone.utc)

        granted = grant_credits(db_session, test_user.id, 2500, expires_in_days=10, now=now).unwrap()

        plan = db_session.get(PricingPlan, granted.plan_id)
        assert plan.key == MANUAL_TOP_UP_PLAN_KEY
        assert granted.status == SubscriptionStatus.ACTIVE.value
        assert granted.token_balance == 2500
        assert granted.token_allowance == 2500
        assert as_utc(granted.expires_at) == now + timedelta(days=10)

    def test_grant_default_duration(self, test_user, db_session):
        now = datetime.now(timezone.utc)

        granted = grant_credits(db_session, test_user.id, 100, now=now).unwrap()

        assert as_utc(granted.expires_at) == now + timedelta(days=90)

    def test_grant_after_exhaustion_opens_new_subscription(self, test_user, starter_plan, make_subscription, db_session):
        exhausted = make_subscription(test_user, starter_plan, balance=0, allowance=100)

        granted = grant_credits(db_session, test_user.id, 400).unwrap()

        assert granted.id != exhausted.id
        assert granted.token_balance == 400

    def test_grant_restores_deleted_manual_plan(self, test_user, db_session):
        plan = ensure_manual_plan(db_session)
        plan.deleted_at = datetime.now(timezone.utc)
        db_session.commit()

        granted = grant_credits(db_session, test_user.id, 100).unwrap()

        db_session.refresh(plan)
        assert granted.plan_id == plan.id
        assert plan.deleted_at is None

    @pytest.mark.parametrize("tokens", [0, -10, 1.5, True, "100"])
    def test_invalid_amount(self, tokens, test_user, db_session):
        result = grant_credits(db_session, test_user.id, tokens)

        assert result.kind == ErrorKind.VALIDATION
        assert result.code == "bad_request:grant"
        assert db_session.query(UserSubscription).count() == 0

    @pytest.mark.parametrize("days", [0, -5])
    def test_short_duration_clamped_to_one_day(self, days, test_user, db_session):
        now = datetime.now(timezone.utc)

        granted = grant_credits(db_session, test_user.id, 100, expires_in_days=days, now=now).unwrap()

        assert as_utc(granted.expires_at) == now + timedelta(days=1)

    def test_merge_does_not_create_manual_plan(self, test_user, starter_plan, make_subscription, db_session):
        make_subscription(test_user, starter_plan, balance=300)

        grant_credits(db_session, test_user.id, 100).unwrap()

        assert db_session.query(PricingPlan).filter(PricingPlan.key == MANUAL_TOP_UP_PLAN_KEY).count() == 0

    def test_unknown_user(self, db_session):
        result = grant_credits(db_session, 4242, 100)

        assert result.kind == ErrorKind.NOT_FOUND
        assert result.code == "not_found:user"


@pytest.mark.medium
class TestUserListings:
    def test_get_user_by_email_is_case_insensitive(self, test_user, db_session):
        assert get_user_by_email(db_session, "  Reader@Example.com ").id == test_user.id
        assert get_user_by_email(db_session, "nobody@example.com") is None

    def test_list_users_with_balances(self, test_user, test_user_2, starter_plan, make_subscription, db_session):
        make_subscription(test_user, starter_plan, balance=900)

        listing = list_users_with_balances(db_session, page=1, limit=10)

        assert listing["total"] == 2
        balances = {u["email"]: u["balance"]["tokens_remaining"] for u in listing["users"]}
        assert balances == {test_user.email: 900, test_user_2.email: 0}

    def test_list_users_search_and_paging(self, test_user, test_user_2, admin_user, db_session):
        assert list_users_with_balances(db_session, search="writer")["total"] == 1
        page = list_users_with_balances(db_session, page=2, limit=2)
        assert page["total"] == 3
        assert len(page["users"]) == 1

    def test_user_details(self, test_user, starter_plan, make_subscription, db_session):
        make_subscription(test_user, starter_plan, balance=250)

        details = get_user_details_with_balance(db_session, test_user.id).unwrap()

        assert details["user"]["email"] == test_user.email
        assert details["balance"]["credits_remaining"] == 2
        assert details["usage"]["usage_count"] == 0

    def test_user_details_unknown_user(self, db_session):
        assert get_user_details_with_balance(db_session, 999).code == "not_found:user"


@pytest.mark.high
class TestPricingPlans:
    """Plan CRUD with soft delete"""

    def test_create_plan(self, db_session):
        plan = create_pricing_plan(db_session, "team", " Team ", 99900, 120000, 30).unwrap()

        assert plan.id is not None
        assert plan.name == "Team"
        assert plan.is_active is True

    @pytest.mark.parametrize("key", ["", "Bad Key", "-leading", MANUAL_TOP_UP_PLAN_KEY])
    def test_create_rejects_bad_key(self, key, db_session):
        result = create_pricing_plan(db_session, key, "Plan", 100, 100, 30)
        assert result.code == "bad_request:pricing_plan"

    def test_create_rejects_bad_fields(self, db_session):
        assert not create_pricing_plan(db_session, "a", "Plan", -1, 100, 30).ok
        assert not create_pricing_plan(db_session, "b", "Plan", 100, -1, 30).ok
        assert not create_pricing_plan(db_session, "c", "Plan", 100, 100, 0).ok
        assert not create_pricing_plan(db_session, "d", "  ", 100, 100, 30).ok

    def test_create_duplicate_key(self, starter_plan, db_session):
        result = create_pricing_plan(db_session, "starter", "Another", 100, 100, 30)

        assert result.kind == ErrorKind.VALIDATION
        assert "already exists" in result.message

    def test_list_plans(self, starter_plan, pro_plan, retired_plan, db_session):
        ensure_manual_plan(db_session)
        db_session.commit()

        assert [p.key for p in list_pricing_plans(db_session)] == ["starter", "pro"]
        assert [p.key for p in list_pricing_plans(db_session, include_inactive=True)] == ["legacy", "starter", "pro"]
        assert len(list_pricing_plans(db_session, limit=1)) == 1

    def test_update_plan(self, starter_plan, db_session):
        plan = update_pricing_plan(
            db_session, starter_plan.id, {"token_allowance": 60000, "name": None, "bogus": 1}
        ).unwrap()

        assert plan.token_allowance == 60000
        assert plan.name == "Starter"

    def test_update_rejects_invalid(self, starter_plan, db_session):
        result = update_pricing_plan(db_session, starter_plan.id, {"billing_cycle_days": 0})
        assert result.kind == ErrorKind.VALIDATION

    def test_manual_plan_is_not_editable(self, db_session):
        plan = ensure_manual_plan(db_session)
        db_session.commit()

        assert update_pricing_plan(db_session, plan.id, {"name": "x"}).kind == ErrorKind.NOT_FOUND
        assert delete_pricing_plan(db_session, plan.id).kind == ErrorKind.NOT_FOUND

    def test_soft_delete(self, test_user, starter_plan, make_subscription, db_session):
        subscription = make_subscription(test_user, starter_plan, balance=100)

        deleted = delete_pricing_plan(db_session, starter_plan.id).unwrap()

        assert deleted.deleted_at is not None
        assert deleted.is_active is False
        assert get_pricing_plan(db_session, starter_plan.id) is None
        assert get_pricing_plan(db_session, starter_plan.id, include_deleted=True) is not None
        assert [p.key for p in list_pricing_plans(db_session, only_deleted=True)] == ["starter"]
        db_session.refresh(subscription)
        assert subscription.plan_id == starter_plan.id

    def test_delete_twice(self, starter_plan, db_session):
        delete_pricing_plan(db_session, starter_plan.id).unwrap()
        assert delete_pricing_plan(db_session, starter_plan.id).code == "not_found:pricing_plan"


@pytest.mark.medium
class TestModelConfigs:
    def test_create_defaults_free_allowance(self, db_session):
        model_config = create_model_config(db_session, "mini", "Mini").unwrap()

        data = model_config_to_dict(model_config)
        assert data["free_messages_per_day"] == 3
        assert data["input_cost_per_million"] is None
        assert data["is_enabled"] is True

    def test_create_rejects_bad_rate(self, db_session):
        result = create_model_config(db_session, "mini", "Mini", input_cost_per_million=-2)
        assert result.code == "bad_request:model"

    def test_create_duplicate_key(self, default_model, db_session):
        assert create_model_config(db_session, "fast", "Fast again").kind == ErrorKind.VALIDATION

    def test_update_clears_rates(self, premium_model, db_session):
        updated = update_model_config(
            db_session, premium_model.id, {"input_cost_per_million": None, "free_messages_per_day": 5}
        ).unwrap()

        assert updated.input_cost_per_million is None
        assert updated.output_cost_per_million == 4
        assert updated.free_messages_per_day == 5

    def test_update_unknown(self, db_session):
        assert update_model_config(db_session, 77, {"is_enabled": False}).code == "not_found:model"
