"""Telemetry utilities for logging, metrics, and tracing.

This module provides centralized observability infrastructure including:
- Structured logging with PII redaction
- Prometheus metrics collection
- OpenTelemetry tracing setup
- Performance measurement utilities
"""

import json
import logging
import re
import sys
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from prometheus_client import Counter, Histogram, start_http_server
from pydantic import BaseModel
from structlog.processors import JSONRenderer

# Prometheus metrics
OPERATION_COUNTER = Counter(
    "zonebus_operations_total",
    "Total number of operations",
    ["operation", "status", "entity_id"],
)

OPERATION_LATENCY = Histogram(
    "zonebus_operation_duration_seconds",
    "Operation latency in seconds",
    ["operation", "entity_id"],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0, 120.0],
)

ZONE_CONNECTIONS = Counter(
    "zonebus_zone_connections_total",
    "Zone connection attempts by outcome",
    ["zone_id", "status"],
)

EVENTS_BROADCAST = Counter(
    "zonebus_events_broadcast_total",
    "Outbound events read from publisher event streams",
    ["entity_id", "status"],
)

DELIVERY_FAILURES = Counter(
    "zonebus_delivery_failures_total",
    "Outbound items that could not be delivered to a zone",
    ["entity_id", "zone_id"],
)

RESPONSES_SENT = Counter(
    "zonebus_query_responses_total",
    "Records written in response to peer queries",
    ["entity_id", "status"],
)

MESSAGES_PROCESSED = Counter(
    "zonebus_messages_processed_total",
    "Inbound messages handled by consumer workers",
    ["entity_id", "kind", "status"],
)

QUEUE_DEPTH = Histogram(
    "zonebus_queue_depth",
    "Subscriber queue depth observed on push",
    ["entity_id"],
    buckets=[0, 1, 5, 10, 25, 50, 100, 250, 500, 1000],
)

BACKPRESSURE_WAITS = Counter(
    "zonebus_backpressure_waits_total",
    "Pushes that had to wait for a free queue slot",
    ["entity_id"],
)

# PII patterns for redaction
PII_PATTERNS = {
    "email": re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b"),
    "phone": re.compile(
        r"\b(?:\+?1[-.\s]?)?\(?[0-9]{3}\)?[-.\s]?[0-9]{3}[-.\s]?[0-9]{4}\b|\b[0-9]{3}-[0-9]{4}\b"
    ),
    "ssn": re.compile(r"\b\d{3}-?\d{2}-?\d{4}\b"),
    "credit_card": re.compile(r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b"),
}


def redact_pii(text: Any) -> Any:
    """Redact personally identifiable information from text.

    Args:
        text: Input text that may contain PII

    Returns:
        Text with PII patterns replaced with [REDACTED_<type>], or original input if not a string

    Example:
        >>> redact_pii("Contact john@example.com or call 555-123-4567")
        'Contact [REDACTED_EMAIL] or call [REDACTED_PHONE]'
    """
    if not isinstance(text, str):
        return text

    result = text
    for pii_type, pattern in PII_PATTERNS.items():
        result = pattern.sub(f"[REDACTED_{pii_type.upper()}]", result)
    return result


def pii_redaction_processor(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Structlog processor to redact PII from log events.

    Args:
        logger: Logger instance (unused)
        method_name: Log method name (unused)
        event_dict: Event dictionary to process

    Returns:
        Event dictionary with PII redacted from string values
    """

    def redact_value(value: Any) -> Any:
        if isinstance(value, str):
            return redact_pii(value)
        elif isinstance(value, dict):
            return {k: redact_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [redact_value(item) for item in value]
        return value

    return {key: redact_value(value) for key, value in event_dict.items()}


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: str | None = None,
    enable_pii_redaction: bool = True,
) -> None:
    """Initialize structured logging with PII redaction.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: "json" for machine-readable lines, "text" for console output
        log_file: Optional file to write to instead of stderr
        enable_pii_redaction: Whether to enable PII redaction processor
    """
    handler: logging.Handler
    if log_file:
        handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stderr)

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper(), logging.INFO),
        handlers=[handler],
        force=True,
    )

    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if enable_pii_redaction:
        processors.append(pii_redaction_processor)

    if log_format == "text":
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    else:
        processors.append(JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def setup_tracing(
    service_name: str = "zonebus",
    otlp_endpoint: str | None = None,
) -> None:
    """Initialize OpenTelemetry tracing.

    Args:
        service_name: Name of the service for tracing
        otlp_endpoint: OTLP endpoint URL (if None, uses console exporter)
    """
    from zonebus import __version__

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.version": __version__,
        }
    )

    tracer_provider = TracerProvider(resource=resource)
    trace.set_tracer_provider(tracer_provider)

    exporter: OTLPSpanExporter | ConsoleSpanExporter
    if otlp_endpoint:
        exporter = OTLPSpanExporter(endpoint=otlp_endpoint)
    else:
        exporter = ConsoleSpanExporter()

    tracer_provider.add_span_processor(BatchSpanProcessor(exporter))


def get_tracer(name: str) -> trace.Tracer:
    """Get OpenTelemetry tracer for a component.

    Args:
        name: Tracer name (typically module name)

    Returns:
        Tracer instance
    """
    return trace.get_tracer(name)


def get_logger(name: str, **context: Any) -> Any:
    """Get a structured logger with optional context.

    Args:
        name: Logger name
        **context: Additional context to bind to logger

    Returns:
        Bound logger with context
    """
    logger = structlog.get_logger(name)
    if context:
        logger = logger.bind(**context)
    return logger


def describe_payload(payload: Any) -> str:
    """Serialize a business record for inclusion in a log line."""
    if payload is None:
        return "null"
    if isinstance(payload, BaseModel):
        return payload.model_dump_json()
    try:
        return json.dumps(payload, default=str, sort_keys=True)
    except (TypeError, ValueError):
        return repr(payload)


def log_operation(
    logger: Any,
    operation: str,
    status: str = "success",
    entity_id: str | None = None,
    latency_ms: float | None = None,
    **extra_context: Any,
) -> None:
    """Log an operation with standardized fields for observability.

    Args:
        logger: Structured logger instance
        operation: Operation name
        status: Operation status (success, error, warning)
        entity_id: Publisher/subscriber identifier
        latency_ms: Operation latency in milliseconds
        **extra_context: Additional context fields
    """
    log_data = {
        "operation": operation,
        "status": status,
        **extra_context,
    }

    if entity_id is not None:
        log_data["entity_id"] = entity_id
    if latency_ms is not None:
        log_data["latency_ms"] = latency_ms

    if status == "error":
        logger.error("Operation completed", **log_data)
    elif status == "warning":
        logger.warning("Operation completed", **log_data)
    else:
        logger.debug("Operation completed", **log_data)


class PerformanceTimer:
    """Context manager for measuring operation performance.

    Automatically records metrics, logs timing information, and creates tracing spans.
    """

    def __init__(
        self,
        operation: str,
        entity_id: str | None = None,
        logger: structlog.BoundLogger | None = None,
        record_metrics: bool = True,
        create_span: bool = True,
        tracer_name: str = "zonebus.performance",
    ):
        self.operation = operation
        self.entity_id = entity_id or "unknown"
        self.logger = logger or get_logger("zonebus.performance")
        self.record_metrics = record_metrics
        self.create_span = create_span
        self.tracer = get_tracer(tracer_name) if create_span else None
        self.span: trace.Span | None = None
        self.start_time: float | None = None
        self.end_time: float | None = None

    def __enter__(self) -> "PerformanceTimer":
        self.start_time = time.perf_counter()

        if self.create_span and self.tracer:
            self.span = self.tracer.start_span(self.operation)
            self.span.set_attribute("entity_id", self.entity_id)

        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.end_time = time.perf_counter()
        duration = self.end_time - (self.start_time or 0)

        status = "error" if exc_type else "success"
        self._finish(status, duration, exc_val)

    def _finish(self, status: str, duration: float, error: Any = None) -> None:
        if self.record_metrics:
            OPERATION_COUNTER.labels(
                operation=self.operation, status=status, entity_id=self.entity_id
            ).inc()

            OPERATION_LATENCY.labels(
                operation=self.operation, entity_id=self.entity_id
            ).observe(duration)

        if self.span:
            self.span.set_attribute("duration_seconds", duration)
            self.span.set_attribute("status", status)

            if error is not None:
                self.span.set_status(trace.Status(trace.StatusCode.ERROR, str(error)))
                self.span.record_exception(error)
            else:
                self.span.set_status(trace.Status(trace.StatusCode.OK))

            self.span.end()

        extra = {"error": str(error)} if error is not None else {}
        log_operation(
            self.logger,
            self.operation,
            status=status,
            entity_id=self.entity_id,
            latency_ms=duration * 1000,
            **extra,
        )

    @property
    def duration(self) -> float | None:
        """Get operation duration in seconds."""
        if self.start_time is not None and self.end_time is not None:
            return self.end_time - self.start_time
        return None


@asynccontextmanager
async def async_performance_timer(
    operation: str,
    entity_id: str | None = None,
    logger: structlog.BoundLogger | None = None,
    record_metrics: bool = True,
    create_span: bool = True,
    tracer_name: str = "zonebus.performance",
) -> AsyncGenerator[PerformanceTimer, None]:
    """Async context manager for measuring operation performance.

    Args:
        operation: Operation name for metrics/logging
        entity_id: Publisher/subscriber identifier (optional)
        logger: Logger instance (optional)
        record_metrics: Whether to record Prometheus metrics
        create_span: Whether to create tracing span
        tracer_name: Tracer name for spans

    Yields:
        PerformanceTimer instance
    """
    timer = PerformanceTimer(
        operation=operation,
        entity_id=entity_id,
        logger=logger,
        record_metrics=record_metrics,
        create_span=create_span,
        tracer_name=tracer_name,
    )
    timer.__enter__()

    try:
        yield timer
    except Exception as e:
        timer.end_time = time.perf_counter()
        timer._finish("error", timer.end_time - (timer.start_time or 0), e)
        raise
    else:
        timer.end_time = time.perf_counter()
        timer._finish("success", timer.end_time - (timer.start_time or 0))


def record_zone_connection(zone_id: str, status: str) -> None:
    """Record the outcome of one zone connection attempt.

    Args:
        zone_id: Zone identifier
        status: "connected" or "failed"
    """
    ZONE_CONNECTIONS.labels(zone_id=zone_id, status=status).inc()


def record_event_broadcast(entity_id: str, status: str) -> None:
    """Record one event read from a publisher's event stream.

    Args:
        entity_id: Publisher identifier
        status: "sent" or "failed"
    """
    EVENTS_BROADCAST.labels(entity_id=entity_id, status=status).inc()


def record_delivery_failure(entity_id: str, zone_id: str) -> None:
    """Record an outbound item that could not be delivered to a zone."""
    DELIVERY_FAILURES.labels(entity_id=entity_id, zone_id=zone_id).inc()


def record_query_response(entity_id: str, status: str) -> None:
    """Record one record written (or failed) in a query response."""
    RESPONSES_SENT.labels(entity_id=entity_id, status=status).inc()


def record_message_processed(entity_id: str, kind: str, status: str) -> None:
    """Record one inbound message handled by a consumer worker.

    Args:
        entity_id: Subscriber identifier
        kind: "event" or "query_result"
        status: "success" or "failed"
    """
    MESSAGES_PROCESSED.labels(entity_id=entity_id, kind=kind, status=status).inc()


def record_queue_depth(entity_id: str, depth: int) -> None:
    """Record queue depth metric for a subscriber.

    Args:
        entity_id: Subscriber identifier
        depth: Current queue depth
    """
    QUEUE_DEPTH.labels(entity_id=entity_id).observe(depth)


def record_backpressure_wait(entity_id: str) -> None:
    """Record a push that found the subscriber queue full."""
    BACKPRESSURE_WAITS.labels(entity_id=entity_id).inc()


def start_metrics_server(port: int = 8000) -> None:
    """Start Prometheus metrics HTTP server.

    Args:
        port: Port to serve metrics on
    """
    start_http_server(port)
    get_logger("zonebus.telemetry").info("Metrics server started", port=port)
