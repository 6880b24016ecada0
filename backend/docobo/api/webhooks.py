"""Webhook ingress routes for Polar and SePay"""
from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from docobo.core.logging import security_logger, webhook_logger
from docobo.core.metrics import webhook_requests_counter
from docobo.db.session import get_db
from docobo.models.enums import PaymentProvider
from docobo.services import ledger
from docobo.services.normalizer import InvalidPayloadError, verify_and_normalize
from docobo.services.verification import WebhookVerificationError
from docobo.tasks.webhook_worker import process_event

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/polar")
@router.post("/provider-a", include_in_schema=False)
async def polar_webhook(request: Request, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    """Handle Polar (Standard Webhooks) deliveries

    403 on any signature problem, 200 for a duplicate, 202 once the event is
    handed to the background worker. The body is read as raw bytes because
    the signature covers the exact bytes sent.
    """
    payload = await request.body()

    try:
        event = verify_and_normalize(PaymentProvider.POLAR, payload, request.headers)
    except WebhookVerificationError as e:
        security_logger.warning(f"Polar webhook verification failed: {e}")
        webhook_requests_counter.labels(provider="polar", outcome="rejected").inc()
        return JSONResponse(status_code=403, content={"error": "Invalid signature"})
    except InvalidPayloadError as e:
        webhook_logger.error(f"Invalid Polar webhook payload: {e}")
        webhook_requests_counter.labels(provider="polar", outcome="invalid").inc()
        return JSONResponse(status_code=400, content={"error": "Invalid payload"})

    if ledger.seen(event.external_event_id, db):
        webhook_logger.info(f"Duplicate Polar event: {event.external_event_id}")
        webhook_requests_counter.labels(provider="polar", outcome="duplicate").inc()
        return JSONResponse(status_code=200, content={"success": True, "message": "Duplicate event"})

    background_tasks.add_task(process_event, event)
    webhook_requests_counter.labels(provider="polar", outcome="accepted").inc()
    return JSONResponse(
        status_code=202,
        content={"success": True, "message": "Event received"}
    )


@router.post("/sepay")
@router.post("/provider-b", include_in_schema=False)
async def sepay_webhook(request: Request, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    """Handle SePay bank-transfer notifications

    SePay expects ``{"success": true}`` with 200 for everything it should not
    retry: accepted, duplicate, outgoing transfers, and our own processing
    failures. Only authentication failures get 403.
    """
    payload = await request.body()

    try:
        event = verify_and_normalize(PaymentProvider.SEPAY, payload, request.headers)
    except WebhookVerificationError:
        security_logger.warning("SePay webhook auth failed")
        webhook_requests_counter.labels(provider="sepay", outcome="rejected").inc()
        return JSONResponse(status_code=403, content={"success": False, "error": "Unauthorized"})
    except InvalidPayloadError as e:
        webhook_logger.error(f"Invalid SePay webhook payload: {e}")
        webhook_requests_counter.labels(provider="sepay", outcome="invalid").inc()
        return {"success": True}

    if event is None:
        webhook_logger.info("Ignoring outgoing SePay transfer")
        webhook_requests_counter.labels(provider="sepay", outcome="ignored").inc()
        return {"success": True}

    try:
        if ledger.seen(event.external_event_id, db):
            webhook_logger.info(f"Duplicate SePay transaction: {event.external_event_id}")
            webhook_requests_counter.labels(provider="sepay", outcome="duplicate").inc()
            return {"success": True}
    except Exception as e:
        # record() in the worker still dedupes
        webhook_logger.error(f"SePay dedup check failed for {event.external_event_id}: {e}", exc_info=True)
        webhook_requests_counter.labels(provider="sepay", outcome="error").inc()

    background_tasks.add_task(process_event, event)
    webhook_requests_counter.labels(provider="sepay", outcome="accepted").inc()
    return {"success": True}
