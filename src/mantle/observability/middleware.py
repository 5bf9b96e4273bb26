from __future__ import annotations

import time
from collections.abc import Callable
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from mantle.core.logging import correlation_id_ctx
from mantle.observability.metrics import observe_http_request


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        incoming = (
            request.headers.get("x-correlation-id")
            or request.headers.get("x-github-delivery")
            or request.headers.get("x-request-id")
        )
        value = (incoming or str(uuid4())).strip()
        token = correlation_id_ctx.set(value)
        try:
            response = await call_next(request)
            response.headers["X-Correlation-Id"] = value
            return response
        finally:
            correlation_id_ctx.reset(token)


class PrometheusMetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration = max(0.0, time.perf_counter() - started)
            route_obj = request.scope.get("route")
            route = getattr(route_obj, "path", None) or request.url.path
            observe_http_request(
                method=request.method,
                route=str(route),
                status=str(status_code),
                duration_seconds=duration,
            )
