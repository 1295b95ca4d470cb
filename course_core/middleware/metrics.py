"""Prometheus middleware: count and time every HTTP request.

The endpoint label is the matched route template
(/v1/progress/{course_id}), not the raw path.  Raw paths embed course
ids and would create one time series per course.  Requests that match
no route are labelled "unmatched".
"""

from __future__ import annotations

import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from course_core.core.metrics import ACTIVE_REQUESTS, REQUEST_COUNT, REQUEST_DURATION


def _endpoint_label(request: Request) -> str:
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    return path if path else "unmatched"


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Scrapes would otherwise inflate the request count.
        if request.url.path == "/metrics":
            return await call_next(request)

        ACTIVE_REQUESTS.inc()
        start = time.monotonic()
        status_code = "500"

        try:
            response = await call_next(request)
            status_code = str(response.status_code)
        finally:
            duration = time.monotonic() - start
            ACTIVE_REQUESTS.dec()
            endpoint = _endpoint_label(request)
            REQUEST_COUNT.labels(
                method=request.method,
                endpoint=endpoint,
                status_code=status_code,
            ).inc()
            REQUEST_DURATION.labels(
                method=request.method,
                endpoint=endpoint,
            ).observe(duration)

        return response
