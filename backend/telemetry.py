# telemetry.py — OpenTelemetry tracing for OpsDesk
"""
Spans for HTTP requests, snapshot store mutations and SQL statements.

Tracing is off unless OTEL_EXPORTER_OTLP_ENDPOINT is set and the `telemetry`
extra is installed; `traced()` then degrades to a plain context manager, so
callers never need to check.
"""
import os
import logging
from contextlib import contextmanager

logger = logging.getLogger("opsdesk.telemetry")

SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "opsdesk-api")
SERVICE_VERSION = "1.0.0"
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
OTLP_ENDPOINT = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "")


def _build_provider():
    from opentelemetry import trace
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor
    from opentelemetry.sdk.resources import Resource, SERVICE_NAME as RES_SVC_NAME
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

    provider = TracerProvider(resource=Resource.create({
        RES_SVC_NAME: SERVICE_NAME,
        "service.version": SERVICE_VERSION,
        "deployment.environment": ENVIRONMENT,
    }))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=OTLP_ENDPOINT, insecure=True)))
    trace.set_tracer_provider(provider)
    return provider


def _instrument_app(app, provider) -> None:
    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
    except ImportError:
        logger.warning("opentelemetry-instrumentation-fastapi not installed; HTTP spans disabled")
        return
    FastAPIInstrumentor.instrument_app(app, excluded_urls="health", tracer_provider=provider)
    logger.info("FastAPI instrumented")


def _instrument_engine(engine, provider) -> None:
    """SQL spans for the snapshot store's engine only"""
    try:
        from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
    except ImportError:
        logger.warning("opentelemetry-instrumentation-sqlalchemy not installed; SQL spans disabled")
        return
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine, tracer_provider=provider)
    logger.info("Snapshot store engine instrumented")


def setup_telemetry(app=None, engine=None):
    """Install the OTLP tracer provider and instrument the app and store engine"""
    if not OTLP_ENDPOINT:
        logger.info("Tracing disabled (OTEL_EXPORTER_OTLP_ENDPOINT not set)")
        return None

    try:
        provider = _build_provider()
    except ImportError:
        logger.info("OpenTelemetry SDK not installed; tracing disabled")
        return None

    if app is not None:
        _instrument_app(app, provider)
    if engine is not None:
        _instrument_engine(engine, provider)

    logger.info(f"Tracing to {OTLP_ENDPOINT} as {SERVICE_NAME}")
    return provider


def get_tracer(name: str = "opsdesk"):
    """Tracer from the global provider, or None when the OpenTelemetry API is absent"""
    try:
        from opentelemetry import trace
    except ImportError:
        return None
    return trace.get_tracer(name, SERVICE_VERSION)


@contextmanager
def traced(name: str, tracer_name: str = "opsdesk", **attributes):
    """Run a block inside a span when tracing is available"""
    tracer = get_tracer(tracer_name)
    if tracer is None:
        yield None
        return
    with tracer.start_as_current_span(name) as span:
        for key, value in attributes.items():
            span.set_attribute(key, value)
        yield span
