"""Subscription service - entitlement resolution and merge-on-renew"""
import logging
from typing import Dict, Optional, List, Any
from datetime import datetime, timezone, timedelta
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.dialects import postgresql, sqlite

from app.core.config import MANUAL_TOP_UP_PLAN_KEY
from app.core.errors import Ok, Result, not_found, validation_error, storage_error
from app.core.logging import billing_logger
from app.core.metrics import credits_granted_counter
from app.models.user import User
from app.models.pricing_plan import PricingPlan
from app.models.user_subscription import UserSubscription, SubscriptionStatus

logger = logging.getLogger(__name__)

ACTIVE = SubscriptionStatus.ACTIVE.value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (as returned by SQLite) as UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def lock_user(db: Session, user_id: int) -> Optional[User]:
    """Lock the user row for the rest of the transaction.

    Every mutation of a user's subscriptions takes this lock first, so two
    purchases or grants for a user with no active row cannot both insert one.
    """
    return db.query(User).filter(User.id == user_id).with_for_update().first()


def resolve_active_subscription(
    db: Session,
    user_id: int,
    now: Optional[datetime] = None,
    lock: bool = True
) -> Optional[UserSubscription]:
    """Resolve the user's spendable subscription inside the current transaction.

    Applies the passive transitions before answering:
    - active rows whose expires_at has passed become expired
    - the latest-expiring active row with no balance becomes exhausted

    Returns None when nothing is spendable. Never cache the result across
    transactions; call it again in the transaction that mutates the row.
    """
    now = now or utcnow()

    expired_count = db.query(UserSubscription).filter(
        UserSubscription.user_id == user_id,
        UserSubscription.status == ACTIVE,
        UserSubscription.expires_at <= now
    ).update(
        {"status": SubscriptionStatus.EXPIRED.value, "updated_at": now},
        synchronize_session="fetch"
    )
    if expired_count:
        billing_logger.info(f"Expired {expired_count} subscription(s) for user {user_id}")

    query = db.query(UserSubscription).filter(
        UserSubscription.user_id == user_id,
        UserSubscription.status == ACTIVE,
        UserSubscription.expires_at > now
    ).order_by(UserSubscription.expires_at.desc()).populate_existing()
    if lock:
        query = query.with_for_update()

    subscription = query.first()
    if subscription is None:
        return None

    if subscription.token_balance <= 0:
        subscription.status = SubscriptionStatus.EXHAUSTED.value
        subscription.token_balance = 0
        subscription.tokens_used = subscription.token_allowance
        subscription.updated_at = now
        db.flush()
        billing_logger.info(f"Subscription {subscription.id} for user {user_id} marked exhausted")
        return None

    return subscription


def get_latest_subscription(db: Session, user_id: int) -> Optional[UserSubscription]:
    """Most recently updated subscription in any status"""
    return db.query(UserSubscription).filter(
        UserSubscription.user_id == user_id
    ).order_by(
        UserSubscription.updated_at.desc(),
        UserSubscription.id.desc()
    ).first()


def has_any_subscription(db: Session, user_id: int) -> bool:
    return db.query(UserSubscription.id).filter(
        UserSubscription.user_id == user_id
    ).first() is not None


def apply_allowance(
    db: Session,
    user_id: int,
    allowance: int,
    expires_at: datetime,
    now: datetime,
    plan_id: Optional[int] = None,
    fallback_plan_id: Optional[int] = None
) -> UserSubscription:
    """Merge ``allowance`` into the active subscription, or open a new one.

    Merge: allowance and balance both grow by ``allowance``, expiry becomes
    the later of the two, status is forced back to active. ``plan_id``
    re-points a merged row at the purchased plan; grants leave it alone.

    New row: created against ``plan_id`` or, failing that,
    ``fallback_plan_id``. Caller holds the user lock and commits.
    """
    active = resolve_active_subscription(db, user_id, now)

    if active is not None:
        balance_before = active.token_balance
        active.token_allowance = UserSubscription.token_allowance + allowance
        active.token_balance = UserSubscription.token_balance + allowance
        active.expires_at = max(as_utc(active.expires_at), expires_at)
        active.status = ACTIVE
        active.updated_at = now
        if plan_id is not None:
            active.plan_id = plan_id
        db.flush()
        db.refresh(active)
        billing_logger.info(
            f"Merged {allowance} tokens into subscription {active.id} for user {user_id} "
            f"(balance: {balance_before} -> {active.token_balance}, expires: {active.expires_at})"
        )
        return active

    target_plan_id = plan_id if plan_id is not None else fallback_plan_id
    if target_plan_id is None:
        raise ValueError("A plan is required to open a new subscription")

    subscription = UserSubscription(
        user_id=user_id,
        plan_id=target_plan_id,
        status=ACTIVE,
        token_allowance=allowance,
        token_balance=allowance,
        tokens_used=0,
        started_at=now,
        expires_at=expires_at,
        created_at=now,
        updated_at=now
    )
    db.add(subscription)
    db.flush()
    billing_logger.info(
        f"Opened subscription {subscription.id} for user {user_id} with {allowance} tokens "
        f"(plan {target_plan_id}, expires: {expires_at})"
    )
    return subscription


def create_user_subscription(
    db: Session,
    user_id: int,
    plan_id: int,
    now: Optional[datetime] = None
) -> Result:
    """Credit a purchased plan to the user (called once the payment is confirmed)

    Returns:
        Ok(UserSubscription) or Err for unknown/inactive plan, unknown user, storage failure
    """
    now = now or utcnow()

    try:
        plan = db.query(PricingPlan).filter(
            PricingPlan.id == plan_id,
            PricingPlan.deleted_at.is_(None)
        ).first()

        if not plan:
            db.rollback()
            return not_found("pricing_plan", "Pricing plan not found")

        if not plan.is_active:
            db.rollback()
            return validation_error("bad_request:pricing_plan", "Selected plan is not currently active")

        if lock_user(db, user_id) is None:
            db.rollback()
            return not_found("user", f"User {user_id} not found")

        allowance = max(0, plan.token_allowance)
        expires_at = now + timedelta(days=max(1, plan.billing_cycle_days))
        subscription = apply_allowance(db, user_id, allowance, expires_at, now, plan_id=plan.id)
        db.commit()
        db.refresh(subscription)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error creating subscription for user {user_id}, plan {plan_id}: {e}", exc_info=True)
        return storage_error("Failed to create user subscription")

    credits_granted_counter.labels(source="purchase").inc()
    return Ok(subscription)


def ensure_manual_plan(db: Session, now: Optional[datetime] = None) -> PricingPlan:
    """Upsert the sentinel plan used for administrator grants.

    Creates it on first use and clears deleted_at if it was soft-deleted.
    """
    now = now or utcnow()
    dialect = db.get_bind().dialect.name

    if dialect == "postgresql":
        insert = postgresql.insert
    elif dialect == "sqlite":
        insert = sqlite.insert
    else:
        raise RuntimeError(f"Unsupported database dialect for plan upsert: {dialect}")

    stmt = insert(PricingPlan).values(
        key=MANUAL_TOP_UP_PLAN_KEY,
        name="Manual credit top-up",
        description="Credits granted directly by an administrator",
        price_in_minor_units=0,
        token_allowance=0,
        billing_cycle_days=365,
        is_active=False,
        created_at=now,
        updated_at=now,
        deleted_at=None
    ).on_conflict_do_update(
        index_elements=["key"],
        set_={"deleted_at": None, "updated_at": now}
    )
    db.execute(stmt)

    return db.query(PricingPlan).filter(
        PricingPlan.key == MANUAL_TOP_UP_PLAN_KEY
    ).populate_existing().one()


def list_active_subscription_summaries(db: Session, limit: int = 20, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Spendable subscriptions with user email and plan name (admin overview)"""
    now = now or utcnow()
    try:
        rows = db.query(
            UserSubscription.id,
            User.email,
            PricingPlan.name,
            UserSubscription.token_allowance,
            UserSubscription.token_balance,
            UserSubscription.expires_at
        ).join(
            User, UserSubscription.user_id == User.id
        ).outerjoin(
            PricingPlan,
            (UserSubscription.plan_id == PricingPlan.id) & PricingPlan.deleted_at.is_(None)
        ).filter(
            UserSubscription.status == ACTIVE,
            UserSubscription.expires_at > now,
            UserSubscription.token_balance > 0
        ).order_by(
            UserSubscription.updated_at.desc()
        ).limit(limit).all()
    except SQLAlchemyError as e:
        logger.warning(f"Unable to list active subscriptions: {e}")
        db.rollback()
        return []

    return [
        {
            "subscription_id": row[0],
            "user_email": row[1],
            "plan_name": row[2],
            "token_allowance": row[3],
            "token_balance": row[4],
            "expires_at": as_utc(row[5]).isoformat(),
        }
        for row in rows
    ]
