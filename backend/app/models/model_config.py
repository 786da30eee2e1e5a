"""ModelConfig model"""
from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime
from datetime import datetime, timezone
from app.models.base import Base


class ModelConfig(Base):
    """Per-model billing attributes.

    Cost rates are ledger tokens per million raw tokens; unset or
    non-positive rates fall back to the baseline rate of 1.
    """
    __tablename__ = "model_configs"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(64), unique=True, nullable=False, index=True)
    display_name = Column(String(128), nullable=False)
    input_cost_per_million = Column(Float, nullable=True)
    output_cost_per_million = Column(Float, nullable=True)
    free_messages_per_day = Column(Integer, default=3, nullable=False)
    is_enabled = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
