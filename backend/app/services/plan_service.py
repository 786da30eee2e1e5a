"""Pricing plan administration"""
import logging
import re
from typing import Optional, List, Dict, Any
from datetime import datetime
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError, IntegrityError

from app.core.config import MANUAL_TOP_UP_PLAN_KEY
from app.core.errors import Ok, Result, not_found, validation_error, storage_error
from app.models.pricing_plan import PricingPlan
from app.services.subscription_service import utcnow, as_utc

logger = logging.getLogger(__name__)

PLAN_KEY_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]{0,63}$")
UPDATABLE_FIELDS = ("name", "description", "price_in_minor_units", "token_allowance", "billing_cycle_days", "is_active")


def plan_to_dict(plan: PricingPlan) -> Dict[str, Any]:
    return {
        "id": plan.id,
        "key": plan.key,
        "name": plan.name,
        "description": plan.description,
        "price_in_minor_units": plan.price_in_minor_units,
        "token_allowance": plan.token_allowance,
        "billing_cycle_days": plan.billing_cycle_days,
        "is_active": plan.is_active,
        "deleted_at": as_utc(plan.deleted_at).isoformat() if plan.deleted_at else None,
    }


def _validate_plan_fields(fields: Dict[str, Any]) -> Optional[str]:
    """Return an error message for the first invalid field, or None"""
    if "name" in fields and not (fields["name"] or "").strip():
        return "Plan name is required"
    if "price_in_minor_units" in fields and fields["price_in_minor_units"] < 0:
        return "Price cannot be negative"
    if "token_allowance" in fields and fields["token_allowance"] < 0:
        return "Token allowance cannot be negative"
    if "billing_cycle_days" in fields and fields["billing_cycle_days"] < 1:
        return "Billing cycle must be at least one day"
    return None


def list_pricing_plans(
    db: Session,
    include_inactive: bool = False,
    include_deleted: bool = False,
    only_deleted: bool = False,
    limit: Optional[int] = None
) -> List[PricingPlan]:
    """List plans, cheapest first. The manual top-up sentinel is never listed."""
    try:
        query = db.query(PricingPlan).filter(PricingPlan.key != MANUAL_TOP_UP_PLAN_KEY)
        if only_deleted:
            query = query.filter(PricingPlan.deleted_at.isnot(None))
        elif not include_deleted:
            query = query.filter(PricingPlan.deleted_at.is_(None))
        if not include_inactive and not only_deleted:
            query = query.filter(PricingPlan.is_active.is_(True))
        query = query.order_by(PricingPlan.price_in_minor_units.asc(), PricingPlan.id.asc())
        if limit:
            query = query.limit(limit)
        return query.all()
    except SQLAlchemyError as e:
        logger.warning(f"Unable to list pricing plans: {e}")
        db.rollback()
        return []


def get_pricing_plan(db: Session, plan_id: int, include_deleted: bool = False) -> Optional[PricingPlan]:
    query = db.query(PricingPlan).filter(PricingPlan.id == plan_id)
    if not include_deleted:
        query = query.filter(PricingPlan.deleted_at.is_(None))
    return query.first()


def create_pricing_plan(
    db: Session,
    key: str,
    name: str,
    price_in_minor_units: int,
    token_allowance: int,
    billing_cycle_days: int,
    description: Optional[str] = None,
    is_active: bool = True
) -> Result:
    if not PLAN_KEY_PATTERN.match(key or "") or key == MANUAL_TOP_UP_PLAN_KEY:
        return validation_error("bad_request:pricing_plan", f"Invalid plan key: {key!r}")

    error = _validate_plan_fields({
        "name": name,
        "price_in_minor_units": price_in_minor_units,
        "token_allowance": token_allowance,
        "billing_cycle_days": billing_cycle_days,
    })
    if error:
        return validation_error("bad_request:pricing_plan", error)

    plan = PricingPlan(
        key=key,
        name=name.strip(),
        description=description,
        price_in_minor_units=price_in_minor_units,
        token_allowance=token_allowance,
        billing_cycle_days=billing_cycle_days,
        is_active=is_active
    )
    try:
        db.add(plan)
        db.commit()
        db.refresh(plan)
    except IntegrityError:
        db.rollback()
        return validation_error("bad_request:pricing_plan", f"A plan with key {key!r} already exists")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error creating pricing plan {key}: {e}", exc_info=True)
        return storage_error("Failed to create pricing plan")

    logger.info(f"Created pricing plan {plan.key} (id={plan.id})")
    return Ok(plan)


def update_pricing_plan(db: Session, plan_id: int, updates: Dict[str, Any]) -> Result:
    """Apply a partial update; unknown keys are ignored"""
    fields = {k: v for k, v in updates.items() if k in UPDATABLE_FIELDS and v is not None}
    error = _validate_plan_fields(fields)
    if error:
        return validation_error("bad_request:pricing_plan", error)

    try:
        plan = get_pricing_plan(db, plan_id)
        if not plan or plan.key == MANUAL_TOP_UP_PLAN_KEY:
            return not_found("pricing_plan", "Pricing plan not found")

        for field, value in fields.items():
            setattr(plan, field, value.strip() if field == "name" else value)
        db.commit()
        db.refresh(plan)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error updating pricing plan {plan_id}: {e}", exc_info=True)
        return storage_error("Failed to update pricing plan")

    logger.info(f"Updated pricing plan {plan.key}: {sorted(fields)}")
    return Ok(plan)


def delete_pricing_plan(db: Session, plan_id: int, now: Optional[datetime] = None) -> Result:
    """Soft delete: subscriptions keep pointing at the row"""
    now = now or utcnow()
    try:
        plan = get_pricing_plan(db, plan_id)
        if not plan or plan.key == MANUAL_TOP_UP_PLAN_KEY:
            return not_found("pricing_plan", "Pricing plan not found")

        plan.deleted_at = now
        plan.is_active = False
        db.commit()
        db.refresh(plan)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error deleting pricing plan {plan_id}: {e}", exc_info=True)
        return storage_error("Failed to delete pricing plan")

    logger.info(f"Soft-deleted pricing plan {plan.key}")
    return Ok(plan)
