"""Monitoring API routes for health checks and metrics"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Response, Depends
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from docobo.db.session import get_db, ping_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=["monitoring"])


@router.get("/metrics")
def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/health")
def health_check(db: Session = Depends(get_db)):
    """Liveness plus a database round-trip.

    Always 200; the body carries ``"error"`` when the store is unreachable.
    """
    status = "ok"
    try:
        ping_db(db)
    except SQLAlchemyError as e:
        logger.error(f"Health check database ping failed: {e}")
        status = "error"

    return {"status": status, "timestamp": datetime.now(timezone.utc).isoformat()}
