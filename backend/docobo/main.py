"""FastAPI application entry point"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from docobo.core.config import settings
from docobo.core.logging import setup_logging
from docobo.core.middleware import security_middleware, global_exception_handler
from docobo.core.otel import initialize_otel, setup_otel_logging, instrument_app
from docobo.db.session import engine, init_db
from docobo.services.role_effector import close_role_effector

from docobo.api import monitoring, webhooks

setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    if initialize_otel():
        if setup_otel_logging():
            logger.info(f"OpenTelemetry fully initialized, exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
        else:
            logger.warning("OpenTelemetry metrics/traces initialized but logging setup failed")
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    logger.info(f"🚀 Webhook server ready ({settings.ENVIRONMENT})")

    yield

    # Shutdown
    logger.info("Shutting down...")
    close_role_effector()


app = FastAPI(
    title="Docobo Webhooks",
    description="Payment webhook ingestion and Discord role entitlements",
    version="0.1.0",
    lifespan=lifespan
)

# Instrumentation adds middleware, so it must happen before the app starts
if settings.OTEL_EXPORTER_OTLP_ENDPOINT:
    instrument_app(app, engine)

app.middleware("http")(security_middleware)
app.add_exception_handler(Exception, global_exception_handler)

app.include_router(webhooks.router)
app.include_router(monitoring.router)
