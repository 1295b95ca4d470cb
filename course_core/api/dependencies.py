from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from course_core.db.engine import async_session_factory
from course_core.models.principal import Principal
from course_core.repos.course_repo import CourseRepo, InMemoryCourseRepo
from course_core.repos.pg_course_repo import PgCourseRepo
from course_core.repos.pg_progress_repo import PgProgressRepo
from course_core.repos.progress_repo import InMemoryProgressRepo, ProgressRepo
from course_core.services.achievements import QueuedAchievementChecker
from course_core.services.audit import InMemoryAuditLogger
from course_core.services.certificates import InMemoryCertificateIssuer
from course_core.services.ledger import ProgressLedger
from course_core.services.lifecycle import CourseLifecycleManager
from course_core.services.task_queue import task_queue

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Caller identity
# ---------------------------------------------------------------------------


def require_principal(
    x_user_id: Annotated[str | None, Header()] = None,
    x_tenant_id: Annotated[str | None, Header()] = None,
    x_user_role: Annotated[str | None, Header()] = None,
    x_user_name: Annotated[str | None, Header()] = None,
) -> Principal:
    """Build the Principal from the headers the gateway forwards.

    The gateway has already authenticated the caller; a request that
    reaches us without the identity headers did not come through it.
    """
    if not (x_user_id and x_tenant_id and x_user_role):
        logger.warning("Request without gateway identity headers rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing caller identity",
        )
    return Principal(
        user_id=x_user_id,
        tenant_id=x_tenant_id,
        role=x_user_role,
        full_name=x_user_name or None,
    )


def require_any_role(roles: set[str] | frozenset[str]):
    """Dependency factory: demand at least one of the given roles.

    Usage: Depends(require_any_role(AUTHOR_ROLES))
    """

    def _guard(
        principal: Annotated[Principal, Depends(require_principal)],
    ) -> Principal:
        if not principal.has_any_role(roles):
            logger.warning(
                "Access denied: user=%s role=%s required_any=%s",
                principal.user_id,
                principal.role,
                sorted(roles),
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return principal

    return _guard


# ---------------------------------------------------------------------------
# Stores and services
# ---------------------------------------------------------------------------
# In-memory instances back every request when DATABASE_URL is unset; the
# autouse fixture in tests/conftest.py clears them between tests.

course_repo = InMemoryCourseRepo()
progress_repo = InMemoryProgressRepo()
audit_logger = InMemoryAuditLogger()
certificate_issuer = InMemoryCertificateIssuer()
achievement_checker = QueuedAchievementChecker(task_queue)


async def get_course_repo() -> AsyncGenerator[CourseRepo, None]:
    if async_session_factory is None:
        yield course_repo
        return
    async with async_session_factory() as session:
        try:
            yield PgCourseRepo(session)
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_progress_repo() -> ProgressRepo:
    if async_session_factory is None:
        return progress_repo
    return PgProgressRepo(async_session_factory)


def get_lifecycle(
    courses: Annotated[CourseRepo, Depends(get_course_repo)],
) -> CourseLifecycleManager:
    return CourseLifecycleManager(courses, audit_logger)


def get_ledger(
    courses: Annotated[CourseRepo, Depends(get_course_repo)],
    progress: Annotated[ProgressRepo, Depends(get_progress_repo)],
) -> ProgressLedger:
    return ProgressLedger(
        courses,
        progress,
        certificate_issuer=certificate_issuer,
        achievement_checker=achievement_checker,
        audit_logger=audit_logger,
    )
