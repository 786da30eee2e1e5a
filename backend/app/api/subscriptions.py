"""Subscriptions API routes"""
import logging
import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.security import require_auth
from app.db.session import get_db
from app.schemas.subscriptions import CheckoutRequest
from app.services.plan_service import list_pricing_plans, plan_to_dict
from app.services.stripe_service import create_checkout_session, process_stripe_webhook

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])
logger = logging.getLogger(__name__)


@router.get("/plans")
def get_plans(db: Session = Depends(get_db)):
    """Get purchasable plans"""
    return {"plans": [plan_to_dict(plan) for plan in list_pricing_plans(db)]}


@router.post("/checkout")
def create_checkout(
    checkout_request: CheckoutRequest,
    request: Request,
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Create Stripe checkout session for a plan"""
    frontend_url = settings.FRONTEND_URL or str(request.base_url).rstrip("/")
    try:
        return create_checkout_session(
            db,
            user_id,
            checkout_request.plan_id,
            success_url=f"{frontend_url}/billing?checkout=success",
            cancel_url=f"{frontend_url}/billing?checkout=cancelled"
        ).unwrap()
    except stripe.StripeError as e:
        logger.error(f"Stripe error creating checkout for user {user_id}: {e}")
        raise HTTPException(502, "Payment provider unavailable")


@router.post("/webhook")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """Handle Stripe webhook events

    The body is read as raw bytes for signature verification.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    if not sig_header:
        raise HTTPException(400, "Missing stripe-signature header")

    try:
        return process_stripe_webhook(payload, sig_header, db)
    except ValueError as e:
        logger.error(f"Invalid webhook payload: {e}")
        raise HTTPException(400, str(e))
    except stripe.SignatureVerificationError as e:
        logger.error(f"Invalid webhook signature: {e}")
        raise HTTPException(400, "Invalid signature")
    except Exception as e:
        # Return 200 so Stripe does not retry indefinitely
        logger.error(f"Unexpected error processing webhook: {e}", exc_info=True)
        return {"status": "error", "message": "Webhook processing failed"}
