"""
Telemetry bootstrap for the sync service.

`setup_telemetry` installs JSON logging and, when `ENABLE_TELEMETRY` is set,
OpenTelemetry tracing with FastAPI and httpx instrumentation.

Two correlation IDs end up on every log record. `request_id` comes from the
inbound `x-request-id` header (or is generated) and is bound by the request
middleware. `sync_run_id` is bound by `sync_run()` around a background backup,
which has no inbound request; outbound Drive calls made inside a run reuse it
as their `x-request-id`.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from uuid import uuid4

from fastapi import FastAPI, Request
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span, SpanContext
from pythonjsonlogger import jsonlogger

CORRELATION_ID_HEADER = "x-request-id"
DEFAULT_OTLP_ENDPOINT = "http://localhost:4318/v1/traces"
LOG_FORMAT = (
    "%(asctime)s %(levelname)s %(name)s %(message)s "
    "%(service_name)s %(request_id)s %(sync_run_id)s %(trace_id)s %(span_id)s"
)

RequestContextToken = Token

_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)
_sync_run_id: ContextVar[str | None] = ContextVar("sync_run_id", default=None)
_configured: set[str] = set()


def setup_telemetry(app: FastAPI, service_name: str) -> None:
    """Configure logging for the process and, if enabled, tracing for `app`."""
    traces_enabled = _env_flag("ENABLE_TELEMETRY")
    service_label = os.getenv("OTEL_SERVICE_NAME", service_name)

    configure_logging(service_label, traces_enabled=traces_enabled)
    if not traces_enabled:
        return

    _configure_tracing(service_label, console_export=_env_flag("OTEL_CONSOLE_EXPORT"))
    FastAPIInstrumentor.instrument_app(app)
    if "httpx" not in _configured:
        HTTPXClientInstrumentor().instrument()
        _configured.add("httpx")
    LoggingInstrumentor().instrument(set_logging_format=False)


def configure_logging(service_name: str, *, traces_enabled: bool = False) -> None:
    """Install the JSON handler on the root logger once per process."""
    if "logging" in _configured:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(jsonlogger.JsonFormatter(LOG_FORMAT))
    handler.addFilter(_CorrelationFilter(service_name, traces_enabled))

    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    logging.basicConfig(level=level, handlers=[handler], force=True)
    _configured.add("logging")


def ensure_request_id(request: Request | None, header_name: str = CORRELATION_ID_HEADER) -> str:
    """
    Return the correlation ID for the current unit of work.

    For an inbound request this is its `x-request-id` header, or a new UUID4
    remembered on `request.state`. Outside a request the bound sync run ID wins
    over any bound request ID, and a fresh UUID4 is the last resort.
    """

    if request is None:
        return _sync_run_id.get() or _request_id.get() or str(uuid4())

    request_id = request.headers.get(header_name) or getattr(request.state, "request_id", None) or str(uuid4())
    request.state.request_id = request_id
    return request_id


def bind_request_context(request_id: str | None) -> RequestContextToken:
    return _request_id.set(request_id)


def reset_request_context(token: RequestContextToken | None) -> None:
    if token is not None:
        _request_id.reset(token)


@contextmanager
def sync_run(run_id: str | None = None) -> Iterator[str]:
    """Bind a sync run ID for the duration of the block and yield it."""
    resolved = run_id or f"sync-{uuid4()}"
    token = _sync_run_id.set(resolved)
    try:
        yield resolved
    finally:
        _sync_run_id.reset(token)


def _configure_tracing(service_name: str, *, console_export: bool) -> None:
    if isinstance(trace.get_tracer_provider(), TracerProvider):
        return

    provider = TracerProvider(resource=Resource.create({SERVICE_NAME: service_name}))
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", DEFAULT_OTLP_ENDPOINT)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    if console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)


def _env_flag(key: str) -> bool:
    return os.getenv(key, "false").strip().lower() in {"1", "true", "yes", "on"}


class _CorrelationFilter(logging.Filter):
    """Stamps service name, correlation IDs and, when tracing, span IDs on each record."""

    def __init__(self, service_name: str, traces_enabled: bool) -> None:
        super().__init__()
        self._service_name = service_name
        self._traces_enabled = traces_enabled

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = self._service_name
        record.request_id = _request_id.get()
        record.sync_run_id = _sync_run_id.get()
        record.trace_id = None
        record.span_id = None

        if self._traces_enabled:
            span = trace.get_current_span()
            context = span.get_span_context() if isinstance(span, Span) else None
            if isinstance(context, SpanContext) and context.is_valid:
                record.trace_id = format(context.trace_id, "032x")
                record.span_id = format(context.span_id, "016x")
        return True
