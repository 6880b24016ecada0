"""Background processing for acknowledged webhook deliveries

Ingress routes hand each authenticated, non-duplicate event to
``process_event`` through FastAPI background tasks. The worker is the only
writer of ledger completion for that event id.
"""
from typing import Optional

from docobo.core.logging import webhook_logger
from docobo.core.metrics import webhook_events_processed_counter
from docobo.core.otel import event_span, get_tracer
from docobo.db.session import SessionLocal
from docobo.models.enums import WebhookEventType
from docobo.services import ledger
from docobo.services.entitlements import apply_event
from docobo.services.normalizer import EntitlementEvent
from docobo.services.reference_resolver import (
    InsufficientPaymentError, ResolutionError, resolve_payment
)
from docobo.services.role_effector import apply_side_effect, get_role_effector


def process_event(event: EntitlementEvent) -> Optional[str]:
    """Record, transition and apply side effects for one event.

    Never raises: every failure ends up in the ledger row's error message.

    Returns:
        The error message written to the ledger, or None on success.
    """
    with event_span(event, tracer=get_tracer()) as span:
        return _process_in_span(event, span)


def _process_in_span(event: EntitlementEvent, span) -> Optional[str]:
    provider = event.provider.value
    db = SessionLocal()
    try:
        try:
            ledger.record(event.external_event_id, event.provider, event.event_type, event.payload, db)
        except ledger.DuplicateEventError:
            # Another delivery of the same id won the insert race and owns completion
            webhook_logger.info(f"Duplicate {provider} event {event.external_event_id} dropped at record")
            webhook_events_processed_counter.labels(provider=provider, result="duplicate").inc()
            span.set_attribute("webhook.result", "duplicate")
            return None

        try:
            error_message, subscription_id, result = _run_pipeline(event, db)
        except Exception as e:
            db.rollback()
            webhook_logger.error(f"Failed to process {provider} event {event.external_event_id}: {e}", exc_info=True)
            error_message, subscription_id, result = str(e) or e.__class__.__name__, None, "error"

        ledger.complete(event.external_event_id, db, error_message=error_message, subscription_id=subscription_id)
        webhook_events_processed_counter.labels(provider=provider, result=result).inc()
        span.set_attribute("webhook.result", result)
        if error_message:
            span.set_attribute("webhook.error", error_message)
        return error_message
    except Exception as e:
        # Ledger itself unavailable; nothing left to write to
        db.rollback()
        webhook_logger.error(f"Ledger failure for {provider} event {event.external_event_id}: {e}", exc_info=True)
        webhook_events_processed_counter.labels(provider=provider, result="error").inc()
        span.set_attribute("webhook.result", "error")
        return str(e)
    finally:
        db.close()


def _run_pipeline(event: EntitlementEvent, db):
    """Returns (error_message, subscription_id, metric result)"""
    payment = None
    if event.event_type is WebhookEventType.PAYMENT_IN:
        try:
            payment = resolve_payment(event, db)
        except InsufficientPaymentError as e:
            webhook_logger.warning(f"SePay transaction {event.external_event_id}: {e}")
            return str(e), None, "error"
        except ResolutionError as e:
            # Merchant reconciliation problem, not a transient fault: complete without retry
            webhook_logger.warning(f"SePay transaction {event.external_event_id} not admitted: {e}")
            return None, None, "noop"

    transition = apply_event(event, db, payment=payment)
    if transition.is_noop:
        return None, transition.subscription_id, "noop"

    effect_result = apply_side_effect(transition, get_role_effector())
    if effect_result is not None and not effect_result.ok:
        message = f"Role {transition.effect.value} failed: {effect_result.value}"
        webhook_logger.error(
            f"{message} for subscription {transition.subscription_id} "
            f"(event {event.external_event_id}); state change kept"
        )
        return message, transition.subscription_id, "error"

    return None, transition.subscription_id, "success"
