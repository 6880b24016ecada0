"""OpenTelemetry tracing for the webhook service

Request spans come from the FastAPI instrumentor. Background processing runs
after the response is sent, so each event also gets its own span from
``event_span``. Metrics stay on prometheus (see core/metrics.py).
"""
import logging
from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from docobo.core.config import settings

logger = logging.getLogger(__name__)

SERVICE_VERSION = "0.1.0"
TRACER_NAME = "docobo.webhooks"


def _resource() -> Resource:
    return Resource.create({
        "service.name": settings.OTEL_SERVICE_NAME,
        "service.version": SERVICE_VERSION,
        "deployment.environment": settings.OTEL_ENVIRONMENT
    })


def initialize_otel():
    """Install the OTLP trace provider. False when no endpoint is configured."""
    endpoint = settings.OTEL_EXPORTER_OTLP_ENDPOINT
    if not endpoint:
        return False

    try:
        provider = TracerProvider(resource=_resource())
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True)))
        trace.set_tracer_provider(provider)
        return True
    except Exception as e:
        logger.warning(f"Failed to initialize OpenTelemetry: {e}")
        return False


def setup_otel_logging():
    """Ship webhook/security/discord log records over OTLP as well as stdout"""
    endpoint = settings.OTEL_EXPORTER_OTLP_ENDPOINT
    if not endpoint:
        return False

    try:
        from opentelemetry._logs import set_logger_provider
        from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
        from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
        from opentelemetry.sdk._logs.export import BatchLogRecordProcessor

        logger_provider = LoggerProvider(resource=_resource())
        logger_provider.add_log_record_processor(
            BatchLogRecordProcessor(OTLPLogExporter(endpoint=endpoint, insecure=True))
        )
        set_logger_provider(logger_provider)
        logging.getLogger().addHandler(LoggingHandler(level=logging.NOTSET, logger_provider=logger_provider))
        return True
    except Exception as e:
        logger.warning(f"Failed to setup OTEL logging: {e}")
        return False


def instrument_app(app, engine):
    """Instrument FastAPI, the Discord HTTP client and the database engine"""
    FastAPIInstrumentor.instrument_app(app)
    HTTPXClientInstrumentor().instrument()
    try:
        SQLAlchemyInstrumentor().instrument(engine=engine)
        logger.info("SQLAlchemy instrumentation enabled")
    except Exception as e:
        logger.warning(f"Failed to instrument SQLAlchemy: {e}")


def get_tracer():
    return trace.get_tracer(TRACER_NAME, SERVICE_VERSION)


@contextmanager
def event_span(event, tracer=None):
    """Span around the background processing of one webhook event.

    Yields the span so the caller can record the outcome.
    """
    tracer = tracer or get_tracer()
    with tracer.start_as_current_span(
        "webhook.process_event",
        kind=trace.SpanKind.CONSUMER,
        attributes={
            "webhook.provider": event.provider.value,
            "webhook.event_type": event.event_type.value,
            "webhook.raw_type": event.raw_type,
            "webhook.external_event_id": event.external_event_id,
        }
    ) as span:
        yield span
