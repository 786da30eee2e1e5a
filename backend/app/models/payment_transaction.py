"""PaymentTransaction model"""
from sqlalchemy import Column, Integer, String, ForeignKey, JSON, DateTime
from datetime import datetime, timezone
from app.models.base import Base

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PROCESSING = "processing"
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_FAILED = "failed"


class PaymentTransaction(Base):
    """Plan purchase order: pending -> processing -> paid | failed"""
    __tablename__ = "payment_transactions"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(255), unique=True, nullable=False, index=True)  # Stripe checkout session id
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("pricing_plans.id", ondelete="RESTRICT"), nullable=False)
    amount = Column(Integer, nullable=False)
    currency = Column(String(8), nullable=False)
    status = Column(String(20), default=PAYMENT_STATUS_PENDING, nullable=False)
    payment_id = Column(String(255), nullable=True)
    notes = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)
