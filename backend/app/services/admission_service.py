"""Admission service - decides whether a user may send a chat message"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.errors import Ok, Result, payment_required, rate_limited, not_found, storage_error
from app.core.metrics import admission_decisions_counter
from app.models.model_config import ModelConfig
from app.models.user import User, USER_ROLE_ADMIN
from app.models.user_message import UserMessage
from app.services.settings_service import GlobalFreeAllowance, load_free_message_policy
from app.services.subscription_service import resolve_active_subscription, utcnow, as_utc

logger = logging.getLogger(__name__)

# (since, model_config_id or None for all models) -> number of user messages
MessageCounter = Callable[[datetime, Optional[int]], int]

ROLE_WINDOW = timedelta(hours=24)


@dataclass(frozen=True)
class AdmissionDecision:
    allowed: bool
    billable: bool
    reason: str  # "paid" or "free"


def max_messages_per_day(role: str) -> Optional[int]:
    """Role entitlement; None means unlimited"""
    if role == USER_ROLE_ADMIN:
        return None
    return settings.MAX_MESSAGES_PER_DAY_REGULAR


def billing_day_start(now: datetime, offset_minutes: int) -> datetime:
    """Start of the billing day containing ``now``, returned in UTC.

    The billing day runs from local midnight at UTC+``offset_minutes``.
    """
    offset = timedelta(minutes=offset_minutes)
    local = as_utc(now) + offset
    local_midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return local_midnight - offset


def user_message_counter(db: Session, user_id: int) -> MessageCounter:
    """Count the user's logged messages since a point in time"""
    def count(since: datetime, model_config_id: Optional[int] = None) -> int:
        query = db.query(func.count(UserMessage.id)).filter(
            UserMessage.user_id == user_id,
            UserMessage.created_at >= since
        )
        if model_config_id is not None:
            query = query.filter(UserMessage.model_config_id == model_config_id)
        return query.scalar() or 0
    return count


def record_user_message(
    db: Session,
    user_id: int,
    chat_id: str,
    model_config_id: Optional[int],
    billable: bool = True,
    now: Optional[datetime] = None
) -> UserMessage:
    """Log an admitted message; usage for it is billed according to ``billable``"""
    message = UserMessage(
        user_id=user_id,
        chat_id=chat_id,
        model_config_id=model_config_id,
        billable=billable,
        created_at=now or utcnow()
    )
    db.add(message)
    db.commit()
    db.refresh(message)
    return message


def can_send_message(
    db: Session,
    user: User,
    model_config_id: Optional[int],
    now: Optional[datetime] = None,
    counter: Optional[MessageCounter] = None
) -> Result:
    """Admission check, in order: role cap, model availability, paid credits,
    free daily allowance.

    Paid admission reserves nothing; the deduction happens when usage is
    recorded, so a low balance can still fail at that point.

    Returns:
        Ok(AdmissionDecision) or Err (rate_limit, payment_required, not_found:model)
    """
    now = now or utcnow()
    counter = counter or user_message_counter(db, user.id)

    try:
        cap = max_messages_per_day(user.role)
        if cap is not None and counter(now - ROLE_WINDOW, None) > cap:
            admission_decisions_counter.labels(outcome="rate_limited").inc()
            logger.info(f"User {user.id} exceeded daily message cap of {cap}")
            return rate_limited("You have exceeded your maximum number of messages for the day")

        model_config = None
        if model_config_id is not None:
            model_config = db.query(ModelConfig).filter(
                ModelConfig.id == model_config_id,
                ModelConfig.deleted_at.is_(None),
                ModelConfig.is_enabled.is_(True)
            ).first()
            if model_config is None:
                return not_found("model", f"Model {model_config_id} is not available")

        subscription = resolve_active_subscription(db, user.id, now, lock=False)
        # Persist any expiry/exhaustion transitions the resolver applied
        db.commit()
        if subscription is not None:
            admission_decisions_counter.labels(outcome="paid").inc()
            return Ok(AdmissionDecision(allowed=True, billable=True, reason="paid"))

        policy = load_free_message_policy(db)
        day_start = billing_day_start(now, settings.BILLING_DAY_UTC_OFFSET_MINUTES)

        if isinstance(policy, GlobalFreeAllowance):
            allowance = policy.limit
            used = counter(day_start, None)
        else:
            allowance = model_config.free_messages_per_day if model_config else settings.FREE_MESSAGES_PER_DAY
            used = counter(day_start, model_config_id)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error checking admission for user {user.id}: {e}", exc_info=True)
        return storage_error("Failed to check message admission")

    if used < max(0, allowance):
        admission_decisions_counter.labels(outcome="free").inc()
        return Ok(AdmissionDecision(allowed=True, billable=False, reason="free"))

    admission_decisions_counter.labels(outcome="payment_required").inc()
    return payment_required("You have no active credits remaining. Please recharge to continue.")
