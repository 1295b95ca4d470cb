"""Translate core errors into HTTP responses.

Routers catch CourseCoreError around each core call and re-raise the
result of to_http_exception(), so the mapping lives in one table.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from course_core.core.errors import (
    CompletionPolicyViolationError,
    ConcurrencyConflictError,
    CourseCoreError,
    InvalidStateTransitionError,
    NoActiveAttemptError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: dict[type[CourseCoreError], int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidStateTransitionError: status.HTTP_409_CONFLICT,
    PermissionDeniedError: status.HTTP_403_FORBIDDEN,
    ValidationError: 422,
    CompletionPolicyViolationError: 422,
    NoActiveAttemptError: status.HTTP_409_CONFLICT,
    ConcurrencyConflictError: status.HTTP_409_CONFLICT,
}


def to_http_exception(exc: CourseCoreError) -> HTTPException:
    code = next(
        (c for cls, c in _STATUS_BY_ERROR.items() if isinstance(exc, cls)),
        status.HTTP_400_BAD_REQUEST,
    )
    logger.warning("Request failed: %s (%s)", exc, type(exc).__name__)
    return HTTPException(status_code=code, detail=str(exc))
