"""
W3C trace context for incoming HTTP requests

Continues the caller's trace when a valid `traceparent` header is present and
starts a new one otherwise. The context is stored in contextvars and bound to
structlog, so every log line of the request carries trace.id/span.id, outbox
rows written by the request record it, and outgoing gateway calls forward it.
"""

import uuid
from typing import Callable

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from settlement.core import tracing

logger = structlog.get_logger(__name__)


def context_for(request: Request) -> tracing.TraceContext:
    header = request.headers.get("traceparent")
    if not header:
        return tracing.create_trace_context()

    incoming = tracing.TraceContext.from_traceparent_header(header)
    if incoming is not None:
        return incoming

    fresh = tracing.create_trace_context()
    logger.warning("trace_context_invalid_header", traceparent=header, **{"trace.id": fresh.trace_id})
    return fresh


class TracingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        context = context_for(request)
        # A retried request keeps its trace id but gets a new request id
        request_id = uuid.uuid4().hex

        tracing.set_trace_context(context)
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            parent_span_id=context.parent_span_id,
            **{"trace.id": context.trace_id, "span.id": context.span_id},
        )
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.clear_contextvars()
            tracing.clear_trace_context()

        # Quoted by buyers and sellers when contacting support
        response.headers.update(
            {
                "X-Trace-Id": context.trace_id,
                "X-Request-Id": request_id,
                "traceparent": context.to_traceparent_header(),
            }
        )
        return response
