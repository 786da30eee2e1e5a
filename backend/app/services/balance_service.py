"""Balance service - user-facing view of the current subscription"""
import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from app.models.pricing_plan import PricingPlan
from app.services.cost_model import tokens_to_credits
from app.services.subscription_service import (
    resolve_active_subscription, get_latest_subscription, utcnow, as_utc
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BalanceSummary:
    subscription_id: Optional[int] = None
    status: Optional[str] = None
    plan: Optional[Dict[str, Any]] = None
    tokens_remaining: int = 0
    tokens_total: int = 0
    credits_remaining: int = 0
    credits_total: int = 0
    started_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat() if self.started_at else None
        data["expires_at"] = self.expires_at.isoformat() if self.expires_at else None
        return data


EMPTY_BALANCE = BalanceSummary()


def get_balance_summary(db: Session, user_id: int, now: Optional[datetime] = None) -> BalanceSummary:
    """Summarize the active subscription, or the most recent one when none is active.

    An expired subscription is still reported (plan and expiry) but with all
    balances at zero. Storage errors yield the empty summary.
    """
    now = now or utcnow()
    try:
        subscription = resolve_active_subscription(db, user_id, now, lock=False)
        db.commit()
        if subscription is None:
            subscription = get_latest_subscription(db, user_id)
        if subscription is None:
            return EMPTY_BALANCE

        plan = db.query(PricingPlan).filter(
            PricingPlan.id == subscription.plan_id,
            PricingPlan.deleted_at.is_(None)
        ).first()
    except SQLAlchemyError as e:
        logger.warning(f"Unable to load balance summary for user {user_id}: {e}")
        db.rollback()
        return EMPTY_BALANCE

    expires_at = as_utc(subscription.expires_at)
    if expires_at <= now:
        tokens_remaining = 0
        tokens_total = 0
    else:
        tokens_remaining = max(0, subscription.token_balance)
        tokens_total = max(0, subscription.token_allowance)

    return BalanceSummary(
        subscription_id=subscription.id,
        status=subscription.status,
        plan={"id": plan.id, "key": plan.key, "name": plan.name} if plan else None,
        tokens_remaining=tokens_remaining,
        tokens_total=tokens_total,
        credits_remaining=tokens_to_credits(tokens_remaining),
        credits_total=tokens_to_credits(tokens_total),
        started_at=as_utc(subscription.started_at),
        expires_at=expires_at
    )
