"""WebhookEvent model"""
from sqlalchemy import Column, Integer, String, Boolean, Text, JSON, DateTime, Enum, ForeignKey
from datetime import datetime, timezone
from docobo.models.base import Base
from docobo.models.enums import PaymentProvider, WebhookEventType


class WebhookEvent(Base):
    """Webhook delivery log for idempotency and operator audit"""
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    external_event_id = Column(String(255), unique=True, nullable=False, index=True)
    provider = Column(Enum(PaymentProvider, native_enum=False, length=16), nullable=False, index=True)
    event_type = Column(Enum(WebhookEventType, native_enum=False, length=32), nullable=False)
    raw_payload = Column(JSON, nullable=False)
    processed = Column(Boolean, default=False, nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
