"""Admin service - Admin operations and user management"""
import logging
from typing import Any, Dict, Optional
from datetime import datetime, timedelta
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError, IntegrityError

from app.core.config import settings
from app.core.errors import Ok, Result, not_found, validation_error, storage_error
from app.core.logging import billing_logger
from app.core.metrics import credits_granted_counter
from app.models.user import User
from app.models.model_config import ModelConfig
from app.services.balance_service import get_balance_summary
from app.services.cost_model import normalize_cost_rate
from app.services.subscription_service import (
    apply_allowance, ensure_manual_plan, lock_user, resolve_active_subscription, utcnow
)
from app.services.token_service import get_token_usage_totals_for_user

logger = logging.getLogger(__name__)

MODEL_CONFIG_FIELDS = ("display_name", "input_cost_per_million", "output_cost_per_million", "free_messages_per_day", "is_enabled")


def grant_credits(
    db: Session,
    user_id: int,
    tokens: int,
    expires_in_days: Optional[int] = None,
    now: Optional[datetime] = None
) -> Result:
    """Add ``tokens`` to the user's balance outside the payment flow.

    Merges into the active subscription (keeping its plan) or opens a new
    one on the manual top-up plan. Durations below one day are clamped to
    one day.

    Returns:
        Ok(UserSubscription) or Err
    """
    now = now or utcnow()
    if expires_in_days is None:
        expires_in_days = settings.MANUAL_GRANT_DEFAULT_DAYS
    expires_in_days = max(1, int(expires_in_days))

    if not isinstance(tokens, int) or isinstance(tokens, bool) or tokens <= 0:
        return validation_error("bad_request:grant", "Token amount must be a positive integer")

    try:
        if lock_user(db, user_id) is None:
            db.rollback()
            return not_found("user", f"User {user_id} not found")

        # The manual plan is only needed when no row is there to merge into
        fallback_plan_id = None
        if resolve_active_subscription(db, user_id, now) is None:
            fallback_plan_id = ensure_manual_plan(db, now).id
        expires_at = now + timedelta(days=expires_in_days)
        subscription = apply_allowance(
            db, user_id, tokens, expires_at, now,
            fallback_plan_id=fallback_plan_id
        )
        db.commit()
        db.refresh(subscription)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error granting {tokens} tokens to user {user_id}: {e}", exc_info=True)
        return storage_error("Failed to grant credits")

    credits_granted_counter.labels(source="manual").inc()
    billing_logger.info(
        f"Granted {tokens} tokens to user {user_id} (subscription {subscription.id}, "
        f"balance now {subscription.token_balance}, expires {subscription.expires_at})"
    )
    return Ok(subscription)


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email.strip().lower()).first()


def list_users_with_balances(
    db: Session,
    page: int = 1,
    limit: int = 50,
    search: Optional[str] = None
) -> Dict[str, Any]:
    """List users with their balance summaries

    Returns:
        Dict with 'users', 'total', 'page', 'limit'
    """
    page = max(1, page)
    limit = max(1, limit)
    query = db.query(User)
    if search:
        query = query.filter(User.email.ilike(f"%{search}%"))

    total = query.count()
    users = query.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit).all()

    return {
        "users": [{
            "id": u.id,
            "email": u.email,
            "role": u.role,
            "is_admin": u.is_admin,
            "created_at": u.created_at.isoformat(),
            "balance": get_balance_summary(db, u.id).to_dict()
        } for u in users],
        "total": total,
        "page": page,
        "limit": limit
    }


def get_user_details_with_balance(db: Session, user_id: int) -> Result:
    """Balance summary plus lifetime usage totals for one user"""
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        return not_found("user", f"User {user_id} not found")

    return Ok({
        "user": {
            "id": user.id,
            "email": user.email,
            "role": user.role,
            "is_admin": user.is_admin,
            "created_at": user.created_at.isoformat()
        },
        "balance": get_balance_summary(db, user_id).to_dict(),
        "usage": get_token_usage_totals_for_user(db, user_id)
    })


def _validate_model_config_fields(fields: Dict[str, Any]) -> Optional[str]:
    for rate_field in ("input_cost_per_million", "output_cost_per_million"):
        if rate_field in fields and fields[rate_field] is not None and normalize_cost_rate(fields[rate_field]) is None:
            return f"{rate_field} must be a positive number"
    if "free_messages_per_day" in fields and fields["free_messages_per_day"] < 0:
        return "free_messages_per_day cannot be negative"
    if "display_name" in fields and not (fields["display_name"] or "").strip():
        return "display_name is required"
    return None


def create_model_config(
    db: Session,
    key: str,
    display_name: str,
    input_cost_per_million: Optional[float] = None,
    output_cost_per_million: Optional[float] = None,
    free_messages_per_day: Optional[int] = None,
    is_enabled: bool = True
) -> Result:
    fields = {
        "display_name": display_name,
        "input_cost_per_million": input_cost_per_million,
        "output_cost_per_million": output_cost_per_million,
        "free_messages_per_day": settings.FREE_MESSAGES_PER_DAY if free_messages_per_day is None else free_messages_per_day,
        "is_enabled": is_enabled,
    }
    error = _validate_model_config_fields(fields)
    if error:
        return validation_error("bad_request:model", error)

    model_config = ModelConfig(key=key, **fields)
    try:
        db.add(model_config)
        db.commit()
        db.refresh(model_config)
    except IntegrityError:
        db.rollback()
        return validation_error("bad_request:model", f"A model with key {key!r} already exists")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error creating model config {key}: {e}", exc_info=True)
        return storage_error("Failed to create model config")

    logger.info(f"Created model config {key} (id={model_config.id})")
    return Ok(model_config)


def update_model_config(db: Session, model_config_id: int, updates: Dict[str, Any]) -> Result:
    """Partial update. Rates may be cleared with None to fall back to the baseline."""
    fields = {k: v for k, v in updates.items() if k in MODEL_CONFIG_FIELDS}
    for required in ("display_name", "free_messages_per_day", "is_enabled"):
        if required in fields and fields[required] is None:
            del fields[required]
    error = _validate_model_config_fields(fields)
    if error:
        return validation_error("bad_request:model", error)

    try:
        model_config = db.query(ModelConfig).filter(
            ModelConfig.id == model_config_id,
            ModelConfig.deleted_at.is_(None)
        ).first()
        if not model_config:
            return not_found("model", f"Model {model_config_id} not found")

        for field, value in fields.items():
            setattr(model_config, field, value)
        db.commit()
        db.refresh(model_config)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error updating model config {model_config_id}: {e}", exc_info=True)
        return storage_error("Failed to update model config")

    logger.info(f"Updated model config {model_config.key}: {sorted(fields)}")
    return Ok(model_config)


def model_config_to_dict(model_config: ModelConfig) -> Dict[str, Any]:
    return {
        "id": model_config.id,
        "key": model_config.key,
        "display_name": model_config.display_name,
        "input_cost_per_million": model_config.input_cost_per_million,
        "output_cost_per_million": model_config.output_cost_per_million,
        "free_messages_per_day": model_config.free_messages_per_day,
        "is_enabled": model_config.is_enabled,
    }
