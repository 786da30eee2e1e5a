"""Token service - ledger logic for credits"""
from sqlalchemy.orm import Session
from sqlalchemy import update, case, func
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List
import logging
import math

from app.core.errors import Ok, Result, not_found, payment_required, validation_error, storage_error
from app.core.logging import billing_logger
from app.core.metrics import usage_recorded_counter, tokens_deducted_counter, insufficient_credits_counter
from app.core.otel import get_tracer
from app.models.model_config import ModelConfig
from app.models.token_usage import TokenUsage
from app.models.user_message import UserMessage
from app.models.user_subscription import UserSubscription, SubscriptionStatus
from app.services.cost_model import compute_deduction, resolve_rates, tokens_to_credits
from app.services.subscription_service import resolve_active_subscription, utcnow, as_utc

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)


def _token_count(value) -> int:
    """Round a raw token count to a non-negative int (malformed counts become 0)"""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number):
        return 0
    return max(0, round(number))


def _exhaust_subscription(db: Session, subscription_id: int, now: datetime) -> None:
    """Drain the remaining balance into tokens_used and mark the row exhausted"""
    db.execute(
        update(UserSubscription)
        .where(UserSubscription.id == subscription_id)
        .values(
            token_balance=0,
            tokens_used=case(
                (
                    UserSubscription.tokens_used + UserSubscription.token_balance > UserSubscription.token_allowance,
                    UserSubscription.token_allowance
                ),
                (
                    UserSubscription.token_balance > 0,
                    UserSubscription.tokens_used + UserSubscription.token_balance
                ),
                else_=UserSubscription.tokens_used
            ),
            status=SubscriptionStatus.EXHAUSTED.value,
            updated_at=now
        )
        .execution_options(synchronize_session=False)
    )


def record_usage(
    db: Session,
    user_id: int,
    chat_id: str,
    model_config_id: Optional[int],
    input_tokens,
    output_tokens,
    deduct_credits: bool = True,
    now: Optional[datetime] = None
) -> Result:
    """Record one usage event and, when billable, deduct its cost.

    Everything happens in a single transaction. A billable event against a
    balance that cannot cover the deduction drains and exhausts the
    subscription, records no usage row and returns payment_required.

    Returns:
        Ok(TokenUsage) or Err
    """
    now = now or utcnow()
    input_count = _token_count(input_tokens)
    output_count = _token_count(output_tokens)
    total_tokens = input_count + output_count

    if total_tokens <= 0:
        return validation_error("bad_request:usage", "Usage must include at least one token")

    with tracer.start_as_current_span("ledger.record_usage") as span:
        span.set_attribute("ledger.user_id", user_id)
        span.set_attribute("ledger.billable", deduct_credits)
        span.set_attribute("ledger.total_tokens", total_tokens)

        try:
            if not deduct_credits:
                usage = TokenUsage(
                    user_id=user_id,
                    chat_id=chat_id,
                    model_config_id=model_config_id,
                    subscription_id=None,
                    input_tokens=input_count,
                    output_tokens=output_count,
                    total_tokens=total_tokens,
                    tokens_deducted=0,
                    created_at=now
                )
                db.add(usage)
                db.commit()
                db.refresh(usage)
                usage_recorded_counter.labels(billable="false").inc()
                logger.debug(f"Recorded free usage for user {user_id} in chat {chat_id}: {total_tokens} tokens")
                return Ok(usage)

            model_config = None
            if model_config_id is not None:
                model_config = db.query(ModelConfig).filter(ModelConfig.id == model_config_id).first()
            input_rate, output_rate = resolve_rates(model_config)
            deduction = compute_deduction(input_tokens, output_tokens, input_rate, output_rate)
            span.set_attribute("ledger.tokens_deducted", deduction)

            subscription = resolve_active_subscription(db, user_id, now)
            if subscription is None:
                # Keep the passive expiry/exhaustion transitions
                db.commit()
                insufficient_credits_counter.labels(reason="no_subscription").inc()
                return payment_required("No active subscription with remaining credits")

            subscription_id = subscription.id
            balance_before = subscription.token_balance

            deducted = 0
            if balance_before >= deduction:
                result = db.execute(
                    update(UserSubscription)
                    .where(
                        UserSubscription.id == subscription_id,
                        UserSubscription.status == SubscriptionStatus.ACTIVE.value,
                        UserSubscription.token_balance >= deduction
                    )
                    .values(
                        token_balance=UserSubscription.token_balance - deduction,
                        tokens_used=UserSubscription.tokens_used + deduction,
                        status=case(
                            (UserSubscription.token_balance > deduction, SubscriptionStatus.ACTIVE.value),
                            else_=SubscriptionStatus.EXHAUSTED.value
                        ),
                        updated_at=now
                    )
                    .execution_options(synchronize_session=False)
                )
                deducted = result.rowcount

            if deducted != 1:
                _exhaust_subscription(db, subscription_id, now)
                db.commit()
                insufficient_credits_counter.labels(reason="insufficient_balance").inc()
                billing_logger.warning(
                    f"Subscription {subscription_id} for user {user_id} exhausted: "
                    f"balance {balance_before} cannot cover {deduction} tokens"
                )
                return payment_required("Insufficient credits remaining")

            usage = TokenUsage(
                user_id=user_id,
                chat_id=chat_id,
                model_config_id=model_config_id,
                subscription_id=subscription_id,
                input_tokens=input_count,
                output_tokens=output_count,
                total_tokens=total_tokens,
                tokens_deducted=deduction,
                created_at=now
            )
            db.add(usage)
            db.commit()
            db.refresh(usage)
        except SQLAlchemyError as e:
            db.rollback()
            span.record_exception(e)
            logger.error(f"Error recording usage for user {user_id} in chat {chat_id}: {e}", exc_info=True)
            return storage_error("Failed to record token usage")

    usage_recorded_counter.labels(billable="true").inc()
    tokens_deducted_counter.inc(deduction)
    billing_logger.info(
        f"Deducted {deduction} tokens from subscription {subscription_id} for user {user_id} "
        f"(chat {chat_id}, balance: {balance_before} -> {balance_before - deduction})"
    )
    return Ok(usage)


def record_usage_for_message(
    db: Session,
    user_id: int,
    chat_id: str,
    input_tokens,
    output_tokens,
    now: Optional[datetime] = None
) -> Result:
    """Record usage for the latest admitted message in ``chat_id`` that has none yet.

    The admission decides the model and whether the usage is billed, so a
    caller cannot pick a cheaper model or skip the deduction. Each admitted
    message accepts one usage report; a report refused for insufficient
    credits still settles the message.

    Returns:
        Ok(TokenUsage) or Err (not_found:message when nothing awaits usage)
    """
    if _token_count(input_tokens) + _token_count(output_tokens) <= 0:
        return validation_error("bad_request:usage", "Usage must include at least one token")

    try:
        message = db.query(UserMessage).filter(
            UserMessage.user_id == user_id,
            UserMessage.chat_id == chat_id,
            UserMessage.usage_recorded.is_(False)
        ).order_by(
            UserMessage.created_at.desc(),
            UserMessage.id.desc()
        ).first()
        claimed = 0
        if message is not None:
            claimed = db.execute(
                update(UserMessage)
                .where(UserMessage.id == message.id, UserMessage.usage_recorded.is_(False))
                .values(usage_recorded=True)
                .execution_options(synchronize_session=False)
            ).rowcount
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error claiming message for usage in chat {chat_id}: {e}", exc_info=True)
        return storage_error("Failed to record token usage")

    if claimed != 1:
        db.rollback()
        return not_found("message", f"No admitted message awaiting usage in chat {chat_id}")

    # The claim commits or rolls back together with the usage transaction
    return record_usage(
        db, user_id, chat_id, message.model_config_id, input_tokens, output_tokens,
        deduct_credits=message.billable, now=now
    )



def get_token_usage_totals_for_user(db: Session, user_id: int) -> Dict[str, int]:
    """Lifetime usage totals for a user"""
    empty = {
        "input_tokens": 0,
        "output_tokens": 0,
        "total_tokens": 0,
        "tokens_deducted": 0,
        "credits_deducted": 0,
        "usage_count": 0,
    }
    try:
        row = db.query(
            func.coalesce(func.sum(TokenUsage.input_tokens), 0),
            func.coalesce(func.sum(TokenUsage.output_tokens), 0),
            func.coalesce(func.sum(TokenUsage.total_tokens), 0),
            func.coalesce(func.sum(TokenUsage.tokens_deducted), 0),
            func.count(TokenUsage.id)
        ).filter(TokenUsage.user_id == user_id).one()
    except SQLAlchemyError as e:
        logger.warning(f"Unable to load usage totals for user {user_id}: {e}")
        db.rollback()
        return empty

    return {
        "input_tokens": int(row[0]),
        "output_tokens": int(row[1]),
        "total_tokens": int(row[2]),
        "tokens_deducted": int(row[3]),
        "credits_deducted": tokens_to_credits(int(row[3])),
        "usage_count": int(row[4]),
    }


def get_daily_token_usage_for_user(
    db: Session,
    user_id: int,
    days: int = 30,
    now: Optional[datetime] = None
) -> List[Dict[str, Any]]:
    """Usage per UTC calendar day over the last ``days`` days, oldest first.

    Days without usage are omitted.
    """
    now = as_utc(now or utcnow())
    days = max(1, int(days))
    window_start = now.replace(hour=0, minute=0, second=0, microsecond=0) - timedelta(days=days - 1)

    try:
        rows = db.query(
            TokenUsage.created_at,
            TokenUsage.input_tokens,
            TokenUsage.output_tokens,
            TokenUsage.total_tokens,
            TokenUsage.tokens_deducted
        ).filter(
            TokenUsage.user_id == user_id,
            TokenUsage.created_at >= window_start
        ).all()
    except SQLAlchemyError as e:
        logger.warning(f"Unable to load daily usage for user {user_id}: {e}")
        db.rollback()
        return []

    buckets: Dict[str, Dict[str, Any]] = {}
    for created_at, input_count, output_count, total, deducted in rows:
        day = as_utc(created_at).date().isoformat()
        bucket = buckets.setdefault(day, {
            "date": day,
            "input_tokens": 0,
            "output_tokens": 0,
            "total_tokens": 0,
            "tokens_deducted": 0,
        })
        bucket["input_tokens"] += input_count
        bucket["output_tokens"] += output_count
        bucket["total_tokens"] += total
        bucket["tokens_deducted"] += deducted

    return [buckets[day] for day in sorted(buckets)]


def get_session_token_usage_for_user(db: Session, user_id: int) -> List[Dict[str, Any]]:
    """Usage per chat, heaviest chat first"""
    total = func.sum(TokenUsage.total_tokens)
    try:
        rows = db.query(
            TokenUsage.chat_id,
            func.sum(TokenUsage.input_tokens),
            func.sum(TokenUsage.output_tokens),
            total,
            func.sum(TokenUsage.tokens_deducted),
            func.max(TokenUsage.created_at)
        ).filter(
            TokenUsage.user_id == user_id
        ).group_by(
            TokenUsage.chat_id
        ).order_by(total.desc()).all()
    except SQLAlchemyError as e:
        logger.warning(f"Unable to load per-chat usage for user {user_id}: {e}")
        db.rollback()
        return []

    return [
        {
            "chat_id": row[0],
            "input_tokens": int(row[1] or 0),
            "output_tokens": int(row[2] or 0),
            "total_tokens": int(row[3] or 0),
            "tokens_deducted": int(row[4] or 0),
            "last_used_at": as_utc(row[5]).isoformat() if row[5] else None,
        }
        for row in rows
    ]


def list_token_usage_for_user(db: Session, user_id: int, limit: int = 50) -> List[Dict[str, Any]]:
    """Usage history, newest first"""
    try:
        entries = db.query(TokenUsage).filter(
            TokenUsage.user_id == user_id
        ).order_by(
            TokenUsage.created_at.desc(),
            TokenUsage.id.desc()
        ).limit(max(1, limit)).all()
    except SQLAlchemyError as e:
        logger.warning(f"Unable to load usage history for user {user_id}: {e}")
        db.rollback()
        return []

    return [
        {
            "id": entry.id,
            "chat_id": entry.chat_id,
            "model_config_id": entry.model_config_id,
            "subscription_id": entry.subscription_id,
            "input_tokens": entry.input_tokens,
            "output_tokens": entry.output_tokens,
            "total_tokens": entry.total_tokens,
            "tokens_deducted": entry.tokens_deducted,
            "billable": entry.subscription_id is not None,
            "created_at": as_utc(entry.created_at).isoformat(),
        }
        for entry in entries
    ]
