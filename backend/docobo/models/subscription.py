"""Subscription model"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, JSON, Enum, Index
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from docobo.models.base import Base
from docobo.models.enums import PaymentProvider, SubscriptionStatus


class Subscription(Base):
    """Entitlement of one member to one paid role.

    Rows are never deleted; REVOKED and REFUNDED are kept for audit.
    """
    __tablename__ = "subscriptions"
    __table_args__ = (
        Index("ix_subscriptions_provider_external_id", "provider", "external_subscription_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    member_id = Column(Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)
    role_id = Column(Integer, ForeignKey("paid_roles.id", ondelete="CASCADE"), nullable=False, index=True)
    provider = Column(Enum(PaymentProvider, native_enum=False, length=16), nullable=False)
    external_subscription_id = Column(String(255), nullable=False)
    status = Column(
        Enum(SubscriptionStatus, native_enum=False, length=16),
        default=SubscriptionStatus.PENDING,
        nullable=False
    )
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    # "metadata" is reserved on declarative classes
    provider_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    member = relationship("Member", back_populates="subscriptions")
    paid_role = relationship("PaidRole", back_populates="subscriptions")
