"""TokenUsage model"""
from sqlalchemy import Column, Integer, String, ForeignKey, Index, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from app.models.base import Base


class TokenUsage(Base):
    """Append-only usage log; one row per billed (or free) usage event, never updated"""
    __tablename__ = "token_usage"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    chat_id = Column(String(64), nullable=False, index=True)
    model_config_id = Column(Integer, ForeignKey("model_configs.id", ondelete="SET NULL"), nullable=True)
    subscription_id = Column(Integer, ForeignKey("user_subscriptions.id", ondelete="SET NULL"), nullable=True, index=True)
    input_tokens = Column(Integer, default=0, nullable=False)
    output_tokens = Column(Integer, default=0, nullable=False)
    total_tokens = Column(Integer, default=0, nullable=False)
    tokens_deducted = Column(Integer, default=0, nullable=False)  # 0 for unbilled (free tier) usage
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True)

    # Relationships
    user = relationship("User", back_populates="token_usage")

    __table_args__ = (
        Index('ix_token_usage_user_chat', 'user_id', 'chat_id'),
        Index('ix_token_usage_user_created', 'user_id', 'created_at'),
    )
