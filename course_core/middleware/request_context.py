"""Request context middleware: a request ID plus the caller's tenant.

Concurrent requests interleave their log lines.  Every line emitted
while a request is in flight carries that request's ID, and the tenant
named in the gateway's X-Tenant-Id header, so

    request_id == "abc" OR tenant_id == "acme"

pulls one request or one tenant out of the stream.

contextvars rather than thread-locals: async requests share a thread,
but each task gets its own copy of a ContextVar.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")
tenant_id_var: ContextVar[str | None] = ContextVar("tenant_id", default=None)


class _RequestContextFilter(logging.Filter):
    """Attach request_id (and tenant_id, unless the caller set one) to records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("-")  # type: ignore[attr-defined]
        if getattr(record, "tenant_id", None) is None:
            record.tenant_id = tenant_id_var.get()  # type: ignore[attr-defined]
        return True


def install_request_context_filter() -> None:
    """Attach the filter to every root handler.

    Logger-level filters only see records logged on that logger, not
    ones propagated from children, so the handlers carry it.  Call after
    setup_logging(), which replaces the root handlers.
    """
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, _RequestContextFilter) for f in handler.filters):
            handler.addFilter(_RequestContextFilter())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign a request ID, bind the tenant, time the request, log a summary.

    The ID comes from the X-Request-ID header when the gateway set one,
    else a fresh UUID, and is echoed back on the response.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request_id_var.set(req_id)
        tenant_id_var.set(request.headers.get("x-tenant-id"))

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 1)

        logger.info(
            "%s %s → %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={
                "request_id": req_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )

        response.headers["X-Request-ID"] = req_id
        return response
