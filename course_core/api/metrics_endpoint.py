"""Prometheus scrape endpoint.

Exposes the HTTP middleware metrics plus the course and ledger counters
from course_core.core.metrics in text exposition format.  Restrict it to
the internal network in production; label values reveal route names and
error rates.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
