import json
import logging
import stripe
from typing import Dict, Optional, Any
from datetime import datetime, timezone
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import Ok, Result, not_found, validation_error
from app.core.logging import billing_logger
from app.models.user import User
from app.models.stripe_event import StripeEvent
from app.services.payment_service import (
    create_payment_transaction, get_payment_transaction,
    mark_payment_transaction_processing, mark_payment_transaction_paid, mark_payment_transaction_failed
)
from app.services.plan_service import get_pricing_plan
from app.services.subscription_service import create_user_subscription

logger = logging.getLogger(__name__)

# Configure Stripe
stripe.api_key = settings.STRIPE_SECRET_KEY

# ============================================================================
# CHECKOUT
# ============================================================================

def create_checkout_session(db: Session, user_id: int, plan_id: int, success_url: str, cancel_url: str) -> Result:
    """One-off Stripe Checkout payment for a plan; records a pending transaction

    Returns:
        Ok({"id", "url"}) or Err
    """
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        return not_found("user", f"User {user_id} not found")

    plan = get_pricing_plan(db, plan_id)
    if not plan:
        return not_found("pricing_plan", "Pricing plan not found")
    if not plan.is_active:
        return validation_error("bad_request:pricing_plan", "Selected plan is not currently active")
    if plan.price_in_minor_units <= 0:
        return validation_error("bad_request:pricing_plan", "Selected plan cannot be purchased")

    session = stripe.checkout.Session.create(
        payment_method_types=["card"],
        mode="payment",
        line_items=[{
            "price_data": {
                "currency": settings.STRIPE_CURRENCY,
                "unit_amount": plan.price_in_minor_units,
                "product_data": {"name": plan.name},
            },
            "quantity": 1,
        }],
        customer_email=user.email,
        success_url=success_url,
        cancel_url=cancel_url,
        metadata={"user_id": str(user_id), "plan_id": str(plan.id)},
    )

    create_payment_transaction(
        db,
        user_id=user_id,
        plan_id=plan.id,
        order_id=session.id,
        amount=plan.price_in_minor_units,
        currency=settings.STRIPE_CURRENCY,
        notes={"plan_key": plan.key}
    )
    logger.info(f"Created checkout session {session.id} for user {user_id}, plan {plan.key}")
    return Ok({"id": session.id, "url": session.url})

# ============================================================================
# WEBHOOK & EVENT LOGGING
# ============================================================================

def log_stripe_event(event_id: str, event_type: str, payload: dict, db: Session) -> StripeEvent:
    stripe_event = db.query(StripeEvent).filter(StripeEvent.stripe_event_id == event_id).first()
    if not stripe_event:
        stripe_event = StripeEvent(
            stripe_event_id=event_id,
            event_type=event_type,
            payload=payload,
            processed=False
        )
        db.add(stripe_event)
        db.commit()
        db.refresh(stripe_event)
    return stripe_event


def mark_stripe_event_processed(event_id: str, db: Session, error_message: str = None):
    stripe_event = db.query(StripeEvent).filter(StripeEvent.stripe_event_id == event_id).first()
    if stripe_event:
        stripe_event.processed = True
        stripe_event.processed_at = datetime.now(timezone.utc)
        stripe_event.error_message = error_message
        db.commit()


def _get_stripe_value(obj: Any, key: str, default=None):
    """Safely extract value from Stripe object (supports both dict and attribute access)."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    value = getattr(obj, key, None)
    return default if value is None else value

# ============================================================================
# EVENT HANDLERS
# ============================================================================

def handle_checkout_completed(session: Any, db: Session):
    """Credit the purchased plan once the checkout is paid"""
    order_id = _get_stripe_value(session, "id")
    if _get_stripe_value(session, "payment_status") not in ("paid", "no_payment_required"):
        logger.info(f"Checkout {order_id} completed without payment yet, waiting for async confirmation")
        return

    transaction = get_payment_transaction(db, order_id)
    if not transaction:
        raise ValueError(f"Unknown checkout session {order_id}")

    if not mark_payment_transaction_processing(db, order_id, transaction.user_id):
        return

    result = create_user_subscription(db, transaction.user_id, transaction.plan_id)
    if not result.ok:
        mark_payment_transaction_failed(db, order_id)
        raise ValueError(f"Could not credit plan for checkout {order_id}: {result.message}")

    mark_payment_transaction_paid(db, order_id, _get_stripe_value(session, "payment_intent"))
    billing_logger.info(
        f"Checkout {order_id} paid: plan {transaction.plan_id} credited to user {transaction.user_id}"
    )


def handle_checkout_failed(session: Any, db: Session):
    order_id = _get_stripe_value(session, "id")
    if get_payment_transaction(db, order_id):
        mark_payment_transaction_failed(db, order_id)


def process_stripe_webhook(
    payload: bytes,
    sig_header: str,
    db: Session
) -> Dict[str, Any]:
    """Process Stripe webhook event

    Validates webhook signature, handles idempotency, and processes different event types.
    Returns success (200) even on processing errors to prevent Stripe retries.
    Only raises exceptions for signature validation failures.

    Args:
        payload: Raw request body as bytes (must not be parsed by middleware)
        sig_header: Stripe signature header
        db: Database session

    Raises:
        ValueError: For invalid payload
        stripe.SignatureVerificationError: For invalid signature
    """
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("Webhook secret not configured")
        raise ValueError("Webhook secret not configured")

    try:
        event = stripe.Webhook.construct_event(
            payload, sig_header, settings.STRIPE_WEBHOOK_SECRET
        )
    except ValueError as e:
        logger.error(f"Invalid webhook payload: {e}")
        raise ValueError("Invalid payload")

    # Log event for idempotency
    stripe_event = log_stripe_event(event["id"], event["type"], json.loads(payload), db)

    if stripe_event.processed:
        logger.info(f"Webhook event {event['id']} already processed")
        return {"status": "already_processed"}

    event_type = event["type"]
    data = event["data"]["object"]

    try:
        if event_type in ("checkout.session.completed", "checkout.session.async_payment_succeeded"):
            handle_checkout_completed(data, db)
        elif event_type in ("checkout.session.expired", "checkout.session.async_payment_failed"):
            handle_checkout_failed(data, db)

        mark_stripe_event_processed(event["id"], db)
        logger.info(f"Successfully processed webhook event {event['id']} of type {event_type}")
        return {"status": "success"}
    except Exception as e:
        # Stripe retries non-2xx responses; the error is kept on the event row instead
        logger.error(f"Error processing webhook {event['id']}: {e}", exc_info=True)
        db.rollback()
        mark_stripe_event_processed(event["id"], db, error_message=str(e))
        return {"status": "error_logged", "error": str(e)}
