"""Idempotency ledger over the webhook_events table"""
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from docobo.models.enums import PaymentProvider, WebhookEventType
from docobo.models.webhook_event import WebhookEvent

logger = logging.getLogger(__name__)


class DuplicateEventError(Exception):
    """The external event id is already recorded (lost an insert race)"""


def seen(external_event_id: str, db: Session) -> bool:
    return db.query(
        db.query(WebhookEvent).filter(WebhookEvent.external_event_id == external_event_id).exists()
    ).scalar()


def record(
    external_event_id: str,
    provider: PaymentProvider,
    event_type: WebhookEventType,
    raw_payload: Any,
    db: Session,
    subscription_id: Optional[int] = None,
) -> int:
    """Insert a ledger row before any side effect runs.

    Returns:
        Primary key of the new row.

    Raises:
        DuplicateEventError: The unique constraint on external_event_id fired.
    """
    event = WebhookEvent(
        external_event_id=external_event_id,
        provider=provider,
        event_type=event_type,
        raw_payload=raw_payload,
        subscription_id=subscription_id,
        processed=False
    )
    db.add(event)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise DuplicateEventError(external_event_id)
    db.refresh(event)
    return event.id


def complete(
    external_event_id: str,
    db: Session,
    error_message: Optional[str] = None,
    subscription_id: Optional[int] = None,
) -> None:
    """Write the single completion update for a recorded event.

    Success sets processed/processed_at and clears any error. Failure leaves
    processed=False and stores the message for operator inspection.
    """
    event = db.query(WebhookEvent).filter(WebhookEvent.external_event_id == external_event_id).first()
    if not event:
        logger.error(f"Cannot complete unknown webhook event {external_event_id}")
        return

    if error_message:
        event.processed = False
        event.processed_at = None
        event.error_message = error_message
    else:
        event.processed = True
        event.processed_at = datetime.now(timezone.utc)
        event.error_message = None
    if subscription_id is not None:
        event.subscription_id = subscription_id
    db.commit()


def list_backlog(db: Session, provider: Optional[PaymentProvider] = None, limit: int = 50) -> List[WebhookEvent]:
    """Unprocessed ledger rows, oldest first. This is the manual reconciliation queue."""
    query = db.query(WebhookEvent).filter(WebhookEvent.processed.is_(False))
    if provider is not None:
        query = query.filter(WebhookEvent.provider == provider)
    return query.order_by(WebhookEvent.created_at.asc(), WebhookEvent.id.asc()).limit(limit).all()
