"""Payment service - plan purchase transactions.

Status moves pending -> processing -> paid, or to failed. Each transition is
a conditional UPDATE so a duplicate confirmation cannot credit a plan twice:
only the caller that moves an order out of pending goes on to credit it.
"""
import logging
from typing import Any, Dict, Optional
from sqlalchemy import update
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from app.models.payment_transaction import (
    PaymentTransaction,
    PAYMENT_STATUS_PENDING, PAYMENT_STATUS_PROCESSING, PAYMENT_STATUS_PAID, PAYMENT_STATUS_FAILED
)
from app.services.subscription_service import utcnow

logger = logging.getLogger(__name__)


def get_payment_transaction(db: Session, order_id: str) -> Optional[PaymentTransaction]:
    return db.query(PaymentTransaction).filter(PaymentTransaction.order_id == order_id).first()


def create_payment_transaction(
    db: Session,
    user_id: int,
    plan_id: int,
    order_id: str,
    amount: int,
    currency: str,
    notes: Optional[Dict[str, Any]] = None
) -> PaymentTransaction:
    """Record a pending order; returns the existing row if the order id is known"""
    existing = get_payment_transaction(db, order_id)
    if existing:
        return existing

    transaction = PaymentTransaction(
        order_id=order_id,
        user_id=user_id,
        plan_id=plan_id,
        amount=amount,
        currency=currency,
        status=PAYMENT_STATUS_PENDING,
        notes=notes
    )
    try:
        db.add(transaction)
        db.commit()
    except IntegrityError:
        # Concurrent insert of the same order
        db.rollback()
        return get_payment_transaction(db, order_id)

    db.refresh(transaction)
    logger.info(f"Recorded pending payment {order_id} for user {user_id}, plan {plan_id}")
    return transaction


def _transition(db: Session, order_id: str, to_status: str, *conditions, **values) -> bool:
    result = db.execute(
        update(PaymentTransaction)
        .where(PaymentTransaction.order_id == order_id, *conditions)
        .values(status=to_status, updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def mark_payment_transaction_processing(db: Session, order_id: str, user_id: int) -> bool:
    """Claim a pending order for crediting. False if someone else already did."""
    claimed = _transition(
        db, order_id, PAYMENT_STATUS_PROCESSING,
        PaymentTransaction.user_id == user_id,
        PaymentTransaction.status == PAYMENT_STATUS_PENDING
    )
    if not claimed:
        logger.info(f"Payment {order_id} is not pending for user {user_id}, skipping")
    return claimed


def mark_payment_transaction_paid(db: Session, order_id: str, payment_id: Optional[str] = None) -> bool:
    return _transition(
        db, order_id, PAYMENT_STATUS_PAID,
        PaymentTransaction.status == PAYMENT_STATUS_PROCESSING,
        payment_id=payment_id
    )


def mark_payment_transaction_failed(db: Session, order_id: str) -> bool:
    """Fail any order that has not been paid"""
    failed = _transition(
        db, order_id, PAYMENT_STATUS_FAILED,
        PaymentTransaction.status != PAYMENT_STATUS_PAID
    )
    if failed:
        logger.warning(f"Payment {order_id} marked failed")
    return failed
