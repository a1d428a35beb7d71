"""Initialise logging and the trace-ID middleware."""

from __future__ import annotations

import contextvars
import logging
import uuid

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from keyceremony.obs.settings import ObservabilitySettings

_trace_id: contextvars.ContextVar[str] = contextvars.ContextVar("trace_id", default="-")


def current_trace_id() -> str:
    """Trace ID of the request being served, or ``-`` outside a request."""
    return _trace_id.get()


class _TraceIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = _trace_id.get()
        return True


class _TraceIdMiddleware(BaseHTTPMiddleware):
    """Attach a trace ID header to every response and to log records emitted meanwhile."""

    def __init__(self, app: ASGIApp, header: str = "X-Trace-Id") -> None:
        super().__init__(app)
        self.header = header

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        trace_id = request.headers.get(self.header.lower(), uuid.uuid4().hex)
        request.state.trace_id = trace_id
        token = _trace_id.set(trace_id)
        try:
            response = await call_next(request)
        finally:
            _trace_id.reset(token)
        response.headers[self.header] = trace_id
        return response


def configure_logging(settings: ObservabilitySettings | None = None) -> logging.Logger:
    """Configure the ``keyceremony`` logger once. Repeated calls only adjust the level."""
    if settings is None:
        settings = ObservabilitySettings()

    log = logging.getLogger("keyceremony")
    log.setLevel(settings.log_level)
    if not any(getattr(h, "_keyceremony", False) for h in log.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(settings.log_format))
        handler.addFilter(_TraceIdFilter())
        handler._keyceremony = True  # type: ignore[attr-defined]
        log.addHandler(handler)
        log.propagate = False
    return log


def init_observability(
    app: FastAPI,
    settings: ObservabilitySettings | None = None,
) -> None:
    """Wire up tracing middleware and configure package logging."""
    if settings is None:
        settings = ObservabilitySettings()

    configure_logging(settings)
    app.add_middleware(_TraceIdMiddleware, header=settings.trace_header)
