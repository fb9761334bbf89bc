"""OpenTelemetry and logging configuration."""

import logging
import os
from typing import Any

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.botocore import BotocoreInstrumentor
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from pythonjsonlogger import jsonlogger

logger = logging.getLogger(__name__)

SERVICE_NAME = "canteen-menu-sync"
SERVICE_VERSION = "1.0.0"
DEFAULT_OTLP_ENDPOINT = "http://localhost:4318"
DEFAULT_METRIC_EXPORT_INTERVAL_MS = 60000

# Libraries that log every request or socket frame at INFO
NOISY_LOGGERS = ("botocore", "urllib3", "uvicorn.access", "websockets")


def _otlp_endpoint() -> str:
    return os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", DEFAULT_OTLP_ENDPOINT).rstrip("/")


def get_service_resource() -> Resource:
    """Create OpenTelemetry resource with service identification.

    Returns:
        Resource with service name, version and environment attributes
    """
    return Resource.create(
        {
            "service.name": os.getenv("OTEL_SERVICE_NAME", SERVICE_NAME),
            "service.version": SERVICE_VERSION,
            "deployment.environment": os.getenv("ENVIRONMENT", "development"),
        }
    )


def setup_tracing(resource: Resource) -> None:
    """Export spans for mutations, bootstrap reads and DynamoDB calls over OTLP/HTTP.

    Args:
        resource: Service resource for trace identification
    """
    endpoint = _otlp_endpoint()
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=f"{endpoint}/v1/traces")))
    trace.set_tracer_provider(provider)

    logger.info(f"OpenTelemetry tracing configured with endpoint: {endpoint}")


def setup_metrics(resource: Resource) -> None:
    """Export the broadcaster and inventory counters periodically over OTLP/HTTP.

    The export interval is read from METRIC_EXPORT_INTERVAL_MS.

    Args:
        resource: Service resource for metric identification
    """
    endpoint = _otlp_endpoint()
    interval = int(os.getenv("METRIC_EXPORT_INTERVAL_MS", str(DEFAULT_METRIC_EXPORT_INTERVAL_MS)))

    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=f"{endpoint}/v1/metrics"), export_interval_millis=interval
    )
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=[reader]))

    logger.info(f"OpenTelemetry metrics configured with endpoint: {endpoint} every {interval}ms")


def instrument_libraries() -> None:
    """Instrument httpx (bootstrap fetches) and botocore (DynamoDB calls).

    Safe to call more than once.
    """
    for instrumentor in (HTTPXClientInstrumentor(), BotocoreInstrumentor()):
        if not instrumentor.is_instrumented_by_opentelemetry:
            instrumentor.instrument()


def setup_observability(app: Any = None, enable_exporters: bool = True) -> None:
    """Initialize OpenTelemetry with tracing, metrics, and auto-instrumentation.

    Args:
        app: Optional FastAPI application to instrument
        enable_exporters: Whether to enable OTLP exporters (forced off when ENVIRONMENT=test)
    """
    if os.getenv("ENVIRONMENT", "development") == "test":
        enable_exporters = False

    resource = get_service_resource()

    if enable_exporters:
        setup_tracing(resource)
        setup_metrics(resource)
    else:
        trace.set_tracer_provider(TracerProvider(resource=resource))
        metrics.set_meter_provider(MeterProvider(resource=resource))

    instrument_libraries()

    if app is not None:
        FastAPIInstrumentor.instrument_app(app)
        logger.info("FastAPI application instrumented")

    logger.info(f"Observability configured (exporters {'on' if enable_exporters else 'off'})")


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured JSON logging on the root logger.

    LOG_LEVEL in the environment wins over the argument. Loggers listed in
    NOISY_LOGGERS are held at WARNING unless the level is DEBUG.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    level_str = os.getenv("LOG_LEVEL", log_level).upper()
    level = getattr(logging, level_str, logging.INFO)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(
        jsonlogger.JsonFormatter("%(asctime)s %(name)s %(levelname)s %(message)s", timestamp=True)
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.addHandler(console_handler)

    if level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logger.info(f"Structured JSON logging configured at {level_str} level")
