from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from course_core.api.certificates import router as certificates_router
from course_core.api.courses import router as courses_router
from course_core.api.health import router as health_router
from course_core.api.metrics_endpoint import router as metrics_router
from course_core.api.progress import router as progress_router
from course_core.core.config import SETTINGS
from course_core.core.logging import setup_logging
from course_core.db.engine import lifespan_db
from course_core.db.redis import lifespan_redis
from course_core.middleware.metrics import MetricsMiddleware
from course_core.middleware.request_context import (
    RequestContextMiddleware,
    install_request_context_filter,
)

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
install_request_context_filter()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Nested so teardown runs in reverse order.
    async with lifespan_db():
        async with lifespan_redis():
            yield


app = FastAPI(
    title="course-core",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

# Last added runs first: RequestContext → Metrics → route handler, so the
# request ID is bound before anything is recorded.
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(courses_router)
app.include_router(progress_router)
app.include_router(certificates_router)

logger.info(
    "course-core started  env=%s log_level=%s port=%d docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "on" if SETTINGS.is_dev else "off",
)
