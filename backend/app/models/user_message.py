"""UserMessage model"""
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, Index, DateTime
from datetime import datetime, timezone
from app.models.base import Base


class UserMessage(Base):
    """Log of accepted user chat messages, counted by admission"""
    __tablename__ = "user_messages"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    chat_id = Column(String(64), nullable=False)
    model_config_id = Column(Integer, ForeignKey("model_configs.id", ondelete="SET NULL"), nullable=True)
    billable = Column(Boolean, default=True, nullable=False)  # admitted on paid credits
    usage_recorded = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        Index('ix_user_messages_user_created', 'user_id', 'created_at'),
        Index('ix_user_messages_user_chat', 'user_id', 'chat_id'),
    )
