"""Enumerations persisted on webhook and subscription rows"""
import enum


class PaymentProvider(str, enum.Enum):
    POLAR = "POLAR"
    SEPAY = "SEPAY"


class SubscriptionStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    REVOKED = "REVOKED"
    REFUNDED = "REFUNDED"

    @property
    def is_terminal(self) -> bool:
        return self in (SubscriptionStatus.REVOKED, SubscriptionStatus.REFUNDED)


class WebhookEventType(str, enum.Enum):
    """Internal event vocabulary shared by both providers"""
    SUBSCRIPTION_CREATED = "SUBSCRIPTION_CREATED"
    SUBSCRIPTION_UPDATED = "SUBSCRIPTION_UPDATED"
    SUBSCRIPTION_ACTIVE = "SUBSCRIPTION_ACTIVE"
    SUBSCRIPTION_CANCELED = "SUBSCRIPTION_CANCELED"
    SUBSCRIPTION_UNCANCELED = "SUBSCRIPTION_UNCANCELED"
    SUBSCRIPTION_REVOKED = "SUBSCRIPTION_REVOKED"
    ORDER_CREATED = "ORDER_CREATED"
    ORDER_UPDATED = "ORDER_UPDATED"
    ORDER_PAID = "ORDER_PAID"
    ORDER_REFUNDED = "ORDER_REFUNDED"
    PAYMENT_IN = "PAYMENT_IN"
