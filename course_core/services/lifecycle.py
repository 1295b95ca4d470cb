"""Course lifecycle: a closed set of statuses and a table of guarded moves.

    draft ──submit──▶ pending-review ──approve──▶ published ──archive──▶ archived
      ▲                 │      │                     ▲                     │
      └──reject/changes─┘      └───publish-directly──┤◀─────unarchive──────┘
      └──────────────publish-directly────────────────┘

    delete: any status ──▶ archived (soft delete)

Every operation follows the same shape:

  1. role check against the caller's pre-validated Principal
  2. load the course (NotFoundError)
  3. look the action up in TRANSITIONS (InvalidStateTransitionError)
  4. ownership checks that need the loaded course
  5. replace the document and commit it
  6. audit event through a SideEffectBatch, so an audit outage is
     logged and counted but never fails the transition

Steps 1-4 raise before anything is written.  The commit in step 5 comes
before the audit event, so a write that rolls back is never audited.
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any

from course_core.core.errors import (
    InvalidStateTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from course_core.core.metrics import COURSE_TRANSITIONS
from course_core.models.audit import AuditEvent
from course_core.models.course import (
    CompletionMode,
    Course,
    CourseModule,
    CourseStatus,
)
from course_core.models.principal import Principal
from course_core.repos.course_repo import CourseRepo
from course_core.services.audit import AuditLogger
from course_core.services.side_effects import SideEffectBatch

logger = logging.getLogger(__name__)


class CourseAction(StrEnum):
    SUBMIT_FOR_REVIEW = "submit-for-review"
    APPROVE = "approve"
    PUBLISH_DIRECTLY = "publish-directly"
    REJECT = "reject"
    REQUEST_CHANGES = "request-changes"
    ARCHIVE = "archive"
    UNARCHIVE = "unarchive"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class Transition:
    allowed_from: frozenset[CourseStatus]
    to: CourseStatus


_ANY_STATUS = frozenset(CourseStatus)

TRANSITIONS: dict[CourseAction, Transition] = {
    CourseAction.SUBMIT_FOR_REVIEW: Transition(
        frozenset({CourseStatus.DRAFT}), CourseStatus.PENDING_REVIEW
    ),
    CourseAction.APPROVE: Transition(
        frozenset({CourseStatus.PENDING_REVIEW}), CourseStatus.PUBLISHED
    ),
    CourseAction.PUBLISH_DIRECTLY: Transition(
        frozenset({CourseStatus.DRAFT, CourseStatus.PENDING_REVIEW}),
        CourseStatus.PUBLISHED,
    ),
    CourseAction.REJECT: Transition(
        frozenset({CourseStatus.PENDING_REVIEW}), CourseStatus.DRAFT
    ),
    CourseAction.REQUEST_CHANGES: Transition(
        frozenset({CourseStatus.PENDING_REVIEW}), CourseStatus.DRAFT
    ),
    CourseAction.ARCHIVE: Transition(
        frozenset({CourseStatus.PUBLISHED}), CourseStatus.ARCHIVED
    ),
    CourseAction.UNARCHIVE: Transition(
        frozenset({CourseStatus.ARCHIVED}), CourseStatus.PUBLISHED
    ),
    CourseAction.DELETE: Transition(_ANY_STATUS, CourseStatus.ARCHIVED),
}


def next_status(current: CourseStatus, action: CourseAction) -> CourseStatus:
    transition = TRANSITIONS[action]
    if current not in transition.allowed_from:
        raise InvalidStateTransitionError(current.value, action.value)
    return transition.to


# Fields `update` may change.  Status, review and identity fields move
# only through transitions.
EDITABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "category",
        "estimated_time",
        "modules",
        "completion_mode",
        "require_all_quizzes_passed",
        "minimum_score_for_completion",
        "certificate_enabled",
        "certificate_requires_passing_score",
        "minimum_score_for_certificate",
        "total_xp",
    }
)

_SCORE_FIELDS = ("minimum_score_for_completion", "minimum_score_for_certificate")

# Unset thresholds and pools are meaningful; every other field always
# holds a value.
_NULLABLE_FIELDS = frozenset({*_SCORE_FIELDS, "total_xp"})


def _validate_fields(values: dict[str, Any]) -> dict[str, Any]:
    unknown = set(values) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"fields not editable: {', '.join(sorted(unknown))}")

    missing = sorted(
        name
        for name, value in values.items()
        if value is None and name not in _NULLABLE_FIELDS
    )
    if missing:
        raise ValidationError(f"fields cannot be null: {', '.join(missing)}")

    cleaned = dict(values)
    for name in ("title", "category"):
        if name in cleaned:
            text = (cleaned[name] or "").strip()
            if not text:
                raise ValidationError(f"{name} must be non-empty")
            cleaned[name] = text

    for name in _SCORE_FIELDS:
        score = cleaned.get(name)
        if score is not None and not 0 <= score <= 100:
            raise ValidationError(f"{name} must be between 0 and 100")

    if cleaned.get("total_xp") is not None and cleaned["total_xp"] < 0:
        raise ValidationError("total_xp must be >= 0")
    if cleaned.get("estimated_time") is not None and cleaned["estimated_time"] < 0:
        raise ValidationError("estimated_time must be >= 0")

    if "completion_mode" in cleaned:
        try:
            cleaned["completion_mode"] = CompletionMode(cleaned["completion_mode"])
        except ValueError:
            raise ValidationError(
                f"unknown completion_mode {cleaned['completion_mode']!r}"
            ) from None

    if "modules" in cleaned:
        modules = tuple(cleaned["modules"])
        if not all(isinstance(m, CourseModule) for m in modules):
            raise ValidationError("modules must be CourseModule entries")
        cleaned["modules"] = modules

    return cleaned


def _utc_now() -> int:
    return int(datetime.datetime.now(datetime.UTC).timestamp())


class CourseLifecycleManager:
    def __init__(
        self,
        course_repo: CourseRepo,
        audit_logger: AuditLogger,
        *,
        clock: Callable[[], int] = _utc_now,
    ) -> None:
        self._courses = course_repo
        self._audit = audit_logger
        self._clock = clock

    # -- reads -------------------------------------------------------------

    async def get(self, course_id: str, tenant_id: str) -> Course:
        course = await self._courses.get(tenant_id, course_id)
        if course is None:
            raise NotFoundError("course", course_id)
        return course

    async def list(
        self,
        tenant_id: str,
        *,
        status: CourseStatus | None = None,
        created_by: str | None = None,
        reviewer_id: str | None = None,
    ) -> list[Course]:
        return await self._courses.list_by_tenant(
            tenant_id, status=status, created_by=created_by, reviewer_id=reviewer_id
        )

    # -- authoring ---------------------------------------------------------

    async def create(
        self,
        tenant_id: str,
        actor: Principal,
        *,
        title: str,
        category: str,
        **fields: Any,
    ) -> Course:
        if not actor.can_author():
            raise self._denied(actor, "create")

        values = _validate_fields({"title": title, "category": category, **fields})
        course = Course.new(
            tenant_id=tenant_id,
            created_by=actor.user_id,
            now=self._clock(),
            **values,
        )
        await self._courses.create(course)
        await self._courses.commit()
        logger.info(
            "Created course=%s title=%r",
            course.id,
            course.title,
            extra={"tenant_id": tenant_id, "course_id": course.id},
        )
        await self._emit(actor, "course.created", course, {"title": course.title})
        return course

    async def update(
        self, course_id: str, tenant_id: str, actor: Principal, **changes: Any
    ) -> Course:
        course = await self.get(course_id, tenant_id)
        if course.created_by != actor.user_id and not actor.is_privileged():
            raise self._denied(actor, "update", course)

        values = _validate_fields(changes)
        updated = replace(course, updated_at=self._clock(), **values)
        await self._courses.replace(course_id, tenant_id, updated)
        await self._courses.commit()
        await self._emit(
            actor, "course.updated", updated, {"changes": sorted(values)}
        )
        return updated

    # -- transitions -------------------------------------------------------

    async def submit_for_review(
        self, course_id: str, tenant_id: str, actor: Principal
    ) -> Course:
        def check_owner(course: Course) -> None:
            if course.created_by != actor.user_id:
                raise PermissionDeniedError(
                    "only the course creator can submit it for review"
                )

        return await self._transition(
            course_id,
            tenant_id,
            actor,
            CourseAction.SUBMIT_FOR_REVIEW,
            audit_action="course.submitted-for-review",
            check=check_owner,
            changes=lambda course, now: {"submitted_for_review_at": now},
        )

    async def approve(
        self,
        course_id: str,
        tenant_id: str,
        actor: Principal,
        comments: str | None = None,
    ) -> Course:
        self._require_privileged(actor, CourseAction.APPROVE)

        def changes(course: Course, now: int) -> dict[str, Any]:
            values: dict[str, Any] = {"reviewer_id": actor.user_id, "published_at": now}
            if comments is not None:
                values["review_comments"] = comments
            return values

        return await self._transition(
            course_id,
            tenant_id,
            actor,
            CourseAction.APPROVE,
            audit_action="course.approved",
            changes=changes,
            metadata={"comments": comments},
        )

    async def publish_directly(
        self, course_id: str, tenant_id: str, actor: Principal
    ) -> Course:
        self._require_privileged(actor, CourseAction.PUBLISH_DIRECTLY)
        return await self._transition(
            course_id,
            tenant_id,
            actor,
            CourseAction.PUBLISH_DIRECTLY,
            audit_action=lambda previous: (
                "course.published-directly"
                if previous is CourseStatus.DRAFT
                else "course.published"
            ),
            changes=lambda course, now: {
                "reviewer_id": actor.user_id,
                "published_at": now,
            },
            metadata_for=lambda previous: {
                "bypassedReview": previous is CourseStatus.DRAFT
            },
        )

    async def reject(
        self, course_id: str, tenant_id: str, actor: Principal, comments: str
    ) -> Course:
        self._require_privileged(actor, CourseAction.REJECT)
        if not (comments or "").strip():
            raise ValidationError("rejection comments must be non-empty")
        return await self._transition(
            course_id,
            tenant_id,
            actor,
            CourseAction.REJECT,
            audit_action="course.rejected",
            changes=lambda course, now: {
                "reviewer_id": actor.user_id,
                "review_comments": comments.strip(),
                "submitted_for_review_at": None,
            },
            metadata={"comments": comments.strip()},
        )

    async def request_changes(
        self,
        course_id: str,
        tenant_id: str,
        actor: Principal,
        requested_changes: str,
    ) -> Course:
        self._require_privileged(actor, CourseAction.REQUEST_CHANGES)
        if not (requested_changes or "").strip():
            raise ValidationError("requested changes must be non-empty")
        return await self._transition(
            course_id,
            tenant_id,
            actor,
            CourseAction.REQUEST_CHANGES,
            audit_action="course.changes-requested",
            changes=lambda course, now: {
                "reviewer_id": actor.user_id,
                "requested_changes": requested_changes.strip(),
                "submitted_for_review_at": None,
            },
            metadata={"requestedChanges": requested_changes.strip()},
        )

    async def archive(self, course_id: str, tenant_id: str, actor: Principal) -> Course:
        self._require_privileged(actor, CourseAction.ARCHIVE)
        return await self._transition(
            course_id,
            tenant_id,
            actor,
            CourseAction.ARCHIVE,
            audit_action="course.archived",
            changes=lambda course, now: {"archived_at": now},
        )

    async def unarchive(
        self, course_id: str, tenant_id: str, actor: Principal
    ) -> Course:
        self._require_privileged(actor, CourseAction.UNARCHIVE)
        return await self._transition(
            course_id,
            tenant_id,
            actor,
            CourseAction.UNARCHIVE,
            audit_action="course.unarchived",
            changes=lambda course, now: {"archived_at": None},
        )

    async def delete(self, course_id: str, tenant_id: str, actor: Principal) -> Course:
        """Soft delete: the course ends up archived, whatever it was before."""
        self._require_privileged(actor, CourseAction.DELETE)
        return await self._transition(
            course_id,
            tenant_id,
            actor,
            CourseAction.DELETE,
            audit_action="course.deleted",
            changes=lambda course, now: {
                "archived_at": course.archived_at if course.archived_at else now
            },
        )

    # -- internals ---------------------------------------------------------

    async def _transition(
        self,
        course_id: str,
        tenant_id: str,
        actor: Principal,
        action: CourseAction,
        *,
        audit_action: str | Callable[[CourseStatus], str],
        changes: Callable[[Course, int], dict[str, Any]],
        check: Callable[[Course], None] | None = None,
        metadata: dict[str, Any] | None = None,
        metadata_for: Callable[[CourseStatus], dict[str, Any]] | None = None,
    ) -> Course:
        course = await self.get(course_id, tenant_id)
        previous = course.status
        try:
            target = next_status(previous, action)
        except InvalidStateTransitionError:
            COURSE_TRANSITIONS.labels(action=action.value, result="rejected").inc()
            logger.warning(
                "Rejected %s on course=%s in status=%s",
                action.value,
                course_id,
                previous.value,
                extra={
                    "tenant_id": tenant_id,
                    "course_id": course_id,
                    "actor_id": actor.user_id,
                },
            )
            raise
        if check is not None:
            check(course)

        now = self._clock()
        updated = replace(
            course, status=target, updated_at=now, **changes(course, now)
        )
        await self._courses.replace(course_id, tenant_id, updated)
        await self._courses.commit()
        COURSE_TRANSITIONS.labels(action=action.value, result="ok").inc()
        logger.info(
            "Course %s: %s → %s",
            course_id,
            previous.value,
            target.value,
            extra={
                "tenant_id": tenant_id,
                "course_id": course_id,
                "actor_id": actor.user_id,
            },
        )

        event_metadata = {
            "title": course.title,
            "previousStatus": previous.value,
            "createdBy": course.created_by,
            **(metadata or {}),
            **(metadata_for(previous) if metadata_for else {}),
        }
        name = audit_action(previous) if callable(audit_action) else audit_action
        await self._emit(actor, name, updated, event_metadata)
        return updated

    async def _emit(
        self, actor: Principal, action: str, course: Course, metadata: dict[str, Any]
    ) -> None:
        event = AuditEvent.new(
            tenant_id=course.tenant_id,
            actor_id=actor.user_id,
            action=action,
            resource_id=course.id,
            occurred_at=self._clock(),
            metadata=metadata,
        )
        batch = SideEffectBatch(
            tenant_id=course.tenant_id, course_id=course.id, actor_id=actor.user_id
        )
        await batch.run("audit", lambda: self._audit.log(event))

    def _require_privileged(self, actor: Principal, action: CourseAction) -> None:
        if not actor.is_privileged():
            raise self._denied(actor, action.value)

    @staticmethod
    def _denied(
        actor: Principal, operation: str, course: Course | None = None
    ) -> PermissionDeniedError:
        logger.warning(
            "Access denied: user=%s role=%s operation=%s",
            actor.user_id,
            actor.role,
            operation,
            extra={
                "tenant_id": actor.tenant_id,
                "actor_id": actor.user_id,
                "course_id": course.id if course else None,
            },
        )
        return PermissionDeniedError(f"role {actor.role!r} may not {operation} course")
