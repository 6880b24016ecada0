"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from docobo.models.base import Base
from docobo.models.enums import PaymentProvider, SubscriptionStatus, WebhookEventType
from docobo.models.guild import Guild, Member, PaidRole
from docobo.models.subscription import Subscription
from docobo.models.webhook_event import WebhookEvent

# Export all for convenience
__all__ = [
    "Base", "PaymentProvider", "SubscriptionStatus", "WebhookEventType",
    "Guild", "Member", "PaidRole", "Subscription", "WebhookEvent"
]
