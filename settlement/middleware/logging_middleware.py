"""
HTTP access logging

One structured log line per request with ECS field names. Registered inside
TracingMiddleware so the line carries the request's trace id.
"""

import time
from typing import Any, Callable

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response

logger = structlog.get_logger(__name__)

SLOW_REQUEST_MS = 1000

# Presence is logged, values never are
SENSITIVE_HEADERS = ("x-tsara-signature", "authorization", "x-user-id")


def request_fields(request: Request) -> dict[str, Any]:
    return {
        "http.request.method": request.method,
        "url.path": request.url.path,
        "url.query": request.url.query or None,
        "client.ip": request.client.host if request.client else None,
        "user_agent.original": request.headers.get("user-agent"),
    }


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        fields = request_fields(request)
        logger.debug(
            "http_request_received",
            **fields,
            sensitive_headers=[h for h in SENSITIVE_HEADERS if h in request.headers],
        )

        started = time.perf_counter()
        failure: Exception | None = None
        try:
            response = await call_next(request)
        except Exception as e:
            failure = e
            response = PlainTextResponse("Internal Server Error", status_code=500)

        elapsed_ms = (time.perf_counter() - started) * 1000
        fields["http.response.status_code"] = response.status_code
        fields["event.duration"] = int(elapsed_ms * 1_000_000)  # ECS: nanoseconds
        fields["duration_ms"] = round(elapsed_ms, 2)

        if failure is not None:
            logger.error(
                "http_request_completed",
                **fields,
                error_type=type(failure).__name__,
                error_message=str(failure),
                exc_info=failure,
            )
            # The app's exception handlers render the error body
            raise failure

        if response.status_code >= 500:
            logger.error("http_request_completed", **fields)
        elif response.status_code < 400 and elapsed_ms > SLOW_REQUEST_MS:
            logger.warning("http_request_slow", **fields)
        else:
            logger.info("http_request_completed", **fields)
        return response
