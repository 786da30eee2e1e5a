"""UserSubscription model"""
import enum
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from app.models.base import Base


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


class UserSubscription(Base):
    """A user's token entitlement.

    At most one row per user is ``active``; renewals and grants merge into it.
    token_balance stays within [0, token_allowance] and
    tokens_used == token_allowance - token_balance.
    """
    __tablename__ = "user_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("pricing_plans.id", ondelete="RESTRICT"), nullable=False)
    status = Column(String(20), default=SubscriptionStatus.ACTIVE.value, nullable=False)

    # Token tracking
    token_allowance = Column(Integer, nullable=False)
    token_balance = Column(Integer, nullable=False)
    tokens_used = Column(Integer, default=0, nullable=False)

    # Validity window
    started_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    user = relationship("User", back_populates="subscriptions")
    plan = relationship("PricingPlan")

    __table_args__ = (
        Index('ix_user_subscriptions_user_status', 'user_id', 'status'),
        CheckConstraint('token_balance >= 0', name='ck_user_subscriptions_balance_non_negative'),
    )

    def __repr__(self):
        return (
            f"<UserSubscription(user_id={self.user_id}, status={self.status}, "
            f"balance={self.token_balance}/{self.token_allowance})>"
        )
