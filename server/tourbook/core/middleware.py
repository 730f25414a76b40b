"""Middleware for request correlation, trace propagation, and request logging."""

import logging
import re
import time
import uuid
from typing import Callable, Optional

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .config import settings
from .observability import REQUEST_COUNT, REQUEST_DURATION

logger = logging.getLogger(__name__)

TRACEPARENT_PATTERN = re.compile(r"^00-([0-9a-f]{32})-([0-9a-f]{16})-([0-9a-f]{2})$")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Attach a request ID to every request and response.

    The ID comes from the X-Request-ID header when the caller sends one and is
    bound into the structlog context so every log line of the request carries it.
    """

    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(self.header_name) or str(uuid.uuid4())
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers[self.header_name] = request_id
        return response


class TraceContextMiddleware(BaseHTTPMiddleware):
    """
    Propagate W3C Trace Context headers.

    https://www.w3.org/TR/trace-context/
    """

    @staticmethod
    def _parse_traceparent(traceparent: Optional[str]) -> Optional[tuple[str, str, str]]:
        if not traceparent:
            return None
        match = TRACEPARENT_PATTERN.match(traceparent)
        if not match:
            return None
        trace_id, parent_id, flags = match.groups()
        # All-zero identifiers are invalid
        if trace_id == "0" * 32 or parent_id == "0" * 16:
            return None
        return trace_id, parent_id, flags

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        tracestate = request.headers.get("tracestate")
        parsed = self._parse_traceparent(request.headers.get("traceparent"))

        if parsed:
            trace_id, parent_span_id, flags = parsed
        else:
            trace_id, parent_span_id, flags = uuid.uuid4().hex, None, "01"
        span_id = uuid.uuid4().hex[:16]

        request.state.trace_context = {
            "trace_id": trace_id,
            "span_id": span_id,
            "parent_span_id": parent_span_id,
            "flags": flags,
            "tracestate": tracestate,
        }

        response = await call_next(request)

        response.headers["traceparent"] = f"00-{trace_id}-{span_id}-{flags}"
        if tracestate:
            response.headers["tracestate"] = tracestate
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """Log each request with timing and record the HTTP Prometheus metrics."""

    def __init__(self, app: ASGIApp, skip_paths: Optional[list] = None):
        super().__init__(app)
        self.skip_paths = skip_paths or ["/health", "/metrics", "/favicon.ico"]

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in self.skip_paths:
            return await call_next(request)

        start_time = time.perf_counter()
        request_id = getattr(request.state, "request_id", "unknown")
        trace_context = getattr(request.state, "trace_context", {})

        log_data = {
            "request_id": request_id,
            "trace_id": trace_context.get("trace_id", "unknown"),
            "method": request.method,
            "path": path,
            "client_ip": request.client.host if request.client else "unknown",
        }

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error("Unhandled error while serving request", extra={**log_data, "error": str(e)}, exc_info=True)
            response = JSONResponse(
                status_code=500,
                content={"title": "Internal Server Error", "status": 500, "request_id": request_id},
            )

        duration = time.perf_counter() - start_time
        REQUEST_COUNT.labels(method=request.method, endpoint=path, status_code=str(response.status_code)).inc()
        REQUEST_DURATION.labels(method=request.method, endpoint=path).observe(duration)

        log_data.update({
            "status_code": response.status_code,
            "duration_ms": round(duration * 1000, 2),
        })

        if response.status_code >= 500:
            logger.error("HTTP request completed with server error", extra=log_data)
        elif response.status_code >= 400:
            logger.warning("HTTP request completed with client error", extra=log_data)
        else:
            logger.info("HTTP request completed", extra=log_data)

        return response


def setup_middleware(app, enable_logging: bool = True) -> None:
    """
    Register middleware on the FastAPI app.

    Last added runs first, so the request ID is assigned before anything logs.
    """
    if enable_logging:
        app.add_middleware(LoggingMiddleware)

    app.add_middleware(TraceContextMiddleware)
    app.add_middleware(RequestIDMiddleware)

    if settings.debug:
        logger.debug("Request middleware registered", extra={"logging": enable_logging})
