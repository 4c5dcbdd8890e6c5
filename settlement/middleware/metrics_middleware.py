"""
HTTP request metrics: counts by status class, durations, in-flight requests
"""

import re
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from settlement.core.metrics import (
    http_request_duration_seconds,
    http_requests_in_progress,
    http_requests_total,
)

UUID_SEGMENT = re.compile(r"/[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}(?=/|$)")


def endpoint_label(path: str) -> str:
    """
    Collapse order, payment and notification ids so the endpoint label stays bounded

        /api/v1/seller/orders/123e4567-e89b-12d3-a456-426614174000/confirm
            -> /api/v1/seller/orders/{id}/confirm
    """
    return UUID_SEGMENT.sub("/{id}", path)


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        labels = {"method": request.method, "endpoint": endpoint_label(request.url.path)}
        in_progress = http_requests_in_progress.labels(**labels)
        in_progress.inc()
        started = time.perf_counter()
        status_class = "5xx"

        try:
            response = await call_next(request)
            status_class = f"{response.status_code // 100}xx"
            return response
        finally:
            http_requests_total.labels(status_code=status_class, **labels).inc()
            http_request_duration_seconds.labels(**labels).observe(time.perf_counter() - started)
            in_progress.dec()
