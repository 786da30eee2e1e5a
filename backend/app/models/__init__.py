"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from app.models.base import Base
from app.models.user import User
from app.models.pricing_plan import PricingPlan
from app.models.user_subscription import UserSubscription, SubscriptionStatus
from app.models.token_usage import TokenUsage
from app.models.model_config import ModelConfig
from app.models.user_message import UserMessage
from app.models.payment_transaction import PaymentTransaction
from app.models.stripe_event import StripeEvent
from app.models.system_setting import SystemSetting

# Export all for convenience
__all__ = [
    "Base", "User", "PricingPlan", "UserSubscription", "SubscriptionStatus",
    "TokenUsage", "ModelConfig", "UserMessage", "PaymentTransaction",
    "StripeEvent", "SystemSetting"
]
