"""PricingPlan model"""
from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean
from datetime import datetime, timezone
from app.models.base import Base


class PricingPlan(Base):
    """Purchasable credit plan. Soft-deleted via deleted_at, never hard-deleted while referenced."""
    __tablename__ = "pricing_plans"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(64), unique=True, nullable=False, index=True)
    name = Column(String(128), nullable=False)
    description = Column(Text, nullable=True)
    price_in_minor_units = Column(Integer, nullable=False)  # e.g. paise / cents
    token_allowance = Column(Integer, nullable=False)
    billing_cycle_days = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<PricingPlan(key={self.key}, allowance={self.token_allowance}, days={self.billing_cycle_days})>"
