"""
OpenTelemetry wiring for the move-car service.

Nothing here is active until ``setup_observability`` runs; before that every
recorder is a no-op and ``trace_function`` calls straight through.
"""

from functools import wraps
from typing import Any, Callable, Dict, Optional

import structlog
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import ConsoleMetricExporter, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

logger = structlog.get_logger()

tracer: Optional[trace.Tracer] = None
meter: Optional[metrics.Meter] = None

request_counter: Optional[metrics.Counter] = None
request_duration: Optional[metrics.Histogram] = None
error_counter: Optional[metrics.Counter] = None
notification_counter: Optional[metrics.Counter] = None
notification_duration: Optional[metrics.Histogram] = None
transition_counter: Optional[metrics.Counter] = None

# attribute name -> (instrument kind, metric name, unit, description)
_INSTRUMENTS = {
    "request_counter": ("counter", "http_requests_total", "1", "HTTP requests served"),
    "request_duration": ("histogram", "http_request_duration_seconds", "s", "HTTP request latency"),
    "error_counter": ("counter", "http_errors_total", "1", "HTTP responses with status >= 400"),
    "notification_counter": ("counter", "push_notifications_total", "1", "Push dispatch attempts by channel and outcome"),
    "notification_duration": ("histogram", "push_notification_duration_seconds", "s", "Push dispatch latency"),
    "transition_counter": ("counter", "move_request_transitions_total", "1", "Move request transitions by target status"),
}


def setup_observability(
    service_name: str = "movecar",
    service_version: str = "1.0.0",
    otlp_endpoint: Optional[str] = None,
    enable_console_export: bool = False
) -> None:
    """
    Install tracer and meter providers and create the service's instruments.

    Spans and metrics go to ``otlp_endpoint`` when given and to stdout when
    ``enable_console_export`` is set. With neither, providers still exist so
    spans are recorded in-process but nothing is shipped.
    """
    global tracer, meter

    logger.info(
        "Setting up observability",
        service_name=service_name,
        service_version=service_version,
        otlp_endpoint=otlp_endpoint
    )

    resource = Resource.create({"service.name": service_name, "service.version": service_version})

    span_exporters = []
    metric_readers = []
    if otlp_endpoint:
        span_exporters.append(OTLPSpanExporter(endpoint=otlp_endpoint))
        metric_readers.append(PeriodicExportingMetricReader(
            exporter=OTLPMetricExporter(endpoint=otlp_endpoint),
            export_interval_millis=30000
        ))
    if enable_console_export:
        span_exporters.append(ConsoleSpanExporter())
        metric_readers.append(PeriodicExportingMetricReader(
            exporter=ConsoleMetricExporter(),
            export_interval_millis=60000
        ))

    trace_provider = TracerProvider(resource=resource)
    for exporter in span_exporters:
        trace_provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer(__name__)

    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=metric_readers))
    meter = metrics.get_meter(__name__)

    module_globals = globals()
    for attribute, (kind, name, unit, description) in _INSTRUMENTS.items():
        create = meter.create_counter if kind == "counter" else meter.create_histogram
        module_globals[attribute] = create(name=name, unit=unit, description=description)

    logger.info("Observability setup completed", instruments=len(_INSTRUMENTS))


def instrument_fastapi_app(app) -> None:
    """Attach FastAPI and outbound httpx instrumentation once tracing is configured."""
    if tracer is None:
        logger.warning("Tracer not initialized, call setup_observability() first")
        return

    FastAPIInstrumentor.instrument_app(app)
    HTTPXClientInstrumentor().instrument()
    logger.info("FastAPI application instrumented with OpenTelemetry")


def trace_function(operation_name: Optional[str] = None):
    """
    Wrap a coroutine function in a span named ``operation_name``.

    Domain errors raised inside the span are recorded on it and re-raised.
    """
    def decorator(func: Callable) -> Callable:
        span_name = operation_name or f"{func.__module__}.{func.__name__}"

        @wraps(func)
        async def wrapper(*args, **kwargs):
            if tracer is None:
                return await func(*args, **kwargs)

            with tracer.start_as_current_span(span_name) as span:
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    span.record_exception(e)
                    span.set_attribute("success", False)
                    span.set_attribute("error.type", type(e).__name__)
                    code = getattr(e, "code", None)
                    if code:
                        span.set_attribute("error.code", code)
                    raise
                span.set_attribute("success", True)
                return result

        return wrapper

    return decorator


def record_notification_metrics(channel: str, success: bool, processing_time: float) -> None:
    if notification_counter is None or notification_duration is None:
        return

    attributes = {"channel": channel, "success": str(success).lower()}
    notification_counter.add(1, attributes)
    notification_duration.record(processing_time, attributes)


def record_transition_metrics(status: str) -> None:
    if transition_counter is None:
        return
    transition_counter.add(1, {"status": status})


def record_http_metrics(method: str, path: str, status_code: int, processing_time: float) -> None:
    """Count a served request; 4xx and 5xx also land in ``http_errors_total``."""
    if request_counter is None or request_duration is None or error_counter is None:
        return

    attributes = {"method": method, "path": path, "status_code": str(status_code)}
    request_counter.add(1, attributes)
    request_duration.record(processing_time, attributes)

    if status_code >= 400:
        error_class = "client_error" if status_code < 500 else "server_error"
        error_counter.add(1, {**attributes, "error_type": error_class})


def get_trace_context() -> Dict[str, Any]:
    """Hex trace and span ids of the active span, or an empty dict."""
    span = trace.get_current_span()
    if not span.is_recording():
        return {}

    context = span.get_span_context()
    return {"trace_id": f"{context.trace_id:032x}", "span_id": f"{context.span_id:016x}"}


class TracingContextMiddleware:
    """ASGI middleware binding the current trace ids into structlog context vars."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        trace_context = get_trace_context()
        if trace_context:
            structlog.contextvars.bind_contextvars(**trace_context)

        await self.app(scope, receive, send)
