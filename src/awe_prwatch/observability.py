from __future__ import annotations

from contextlib import contextmanager
import json
import logging
import sys
from contextvars import ContextVar
from threading import Lock
from typing import Iterator

_watch_id_var: ContextVar[str | None] = ContextVar('watch_id', default=None)
_session_id_var: ContextVar[str | None] = ContextVar('session_id', default=None)


def set_watch_context(watch_id: str | None = None, session_id: str | None = None) -> None:
    """Set correlation context for structured log output."""
    _watch_id_var.set(watch_id)
    _session_id_var.set(session_id)


class _JsonFormatter(logging.Formatter):
    """Emit one JSON object per log line with correlation fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            'ts': self.formatTime(record, self.datefmt),
            'level': record.levelname,
            'logger': record.name,
            'msg': record.getMessage(),
        }
        watch_id = getattr(record, 'watch_id', None) or _watch_id_var.get(None)
        if watch_id:
            payload['watch_id'] = watch_id
        session_id = getattr(record, 'session_id', None) or _session_id_var.get(None)
        if session_id:
            payload['session_id'] = session_id
        if record.exc_info and record.exc_info[1] is not None:
            payload['exc'] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


_configured = False
_configured_otlp_endpoint: str | None = None
_configure_lock = Lock()


def get_logger(name: str) -> logging.Logger:
    """Return a logger. Safe to call before configure_observability."""
    return logging.getLogger(name)


def configure_observability(*, service_name: str, otlp_endpoint: str | None) -> None:
    global _configured
    global _configured_otlp_endpoint
    with _configure_lock:
        if not _configured:
            root = logging.getLogger('awe_prwatch')
            has_json_handler = any(
                isinstance(handler, logging.StreamHandler)
                and isinstance(getattr(handler, 'formatter', None), _JsonFormatter)
                for handler in root.handlers
            )
            if not has_json_handler:
                handler = logging.StreamHandler(sys.stderr)
                handler.setFormatter(_JsonFormatter())
                root.addHandler(handler)
            root.setLevel(logging.INFO)
            _configured = True

    endpoint = str(otlp_endpoint or '').strip()
    if not endpoint:
        return

    with _configure_lock:
        if _configured_otlp_endpoint == endpoint:
            return

    try:
        from opentelemetry import trace
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except Exception:
        logging.getLogger('awe_prwatch.observability').warning(
            'OpenTelemetry import failed; tracing disabled', exc_info=True,
        )
        return

    provider = TracerProvider(resource=Resource.create({'service.name': service_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
    with _configure_lock:
        _configured_otlp_endpoint = endpoint


@contextmanager
def poll_span(name: str, **attributes) -> Iterator[None]:
    """Wrap one poll pass in a span; a no-op tracer is used until a provider is set."""
    from opentelemetry import trace

    tracer = trace.get_tracer('awe_prwatch')
    with tracer.start_as_current_span(name) as span:
        for key, value in attributes.items():
            span.set_attribute(key, value)
        yield
