from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from uuid import uuid4


class CourseStatus(StrEnum):
    DRAFT = "draft"
    PENDING_REVIEW = "pending-review"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class CompletionMode(StrEnum):
    MODULES_ONLY = "modules-only"
    MODULES_AND_QUIZZES = "modules-and-quizzes"
    EXAM_MODE = "exam-mode"
    STUDY_GUIDE = "study-guide"


@dataclass(frozen=True, slots=True)
class CourseModule:
    id: str
    title: str
    type: str  # text|video|quiz|interactive
    order: int


@dataclass(frozen=True, slots=True)
class Course:
    """Course document, keyed by (tenant_id, id).

    Timestamps are epoch seconds.  The completion-policy block at the
    bottom is read by the completion evaluator; the review block is
    written only by lifecycle transitions.
    """

    id: str
    tenant_id: str
    title: str
    created_by: str
    created_at: int
    updated_at: int
    description: str = ""
    category: str = ""
    estimated_time: int = 0  # minutes
    modules: tuple[CourseModule, ...] = ()
    status: CourseStatus = CourseStatus.DRAFT

    # Review workflow
    reviewer_id: str | None = None
    review_comments: str | None = None
    requested_changes: str | None = None
    submitted_for_review_at: int | None = None
    published_at: int | None = None
    archived_at: int | None = None

    # Completion policy
    completion_mode: CompletionMode = CompletionMode.MODULES_ONLY
    require_all_quizzes_passed: bool = False
    minimum_score_for_completion: float | None = None
    certificate_enabled: bool = False
    certificate_requires_passing_score: bool = False
    minimum_score_for_certificate: float | None = None
    total_xp: int | None = None  # None → Settings.course_xp_total

    @staticmethod
    def new(
        *,
        tenant_id: str,
        title: str,
        created_by: str,
        now: int,
        **fields,
    ) -> Course:
        return Course(
            id=f"course-{uuid4()}",
            tenant_id=tenant_id,
            title=title,
            created_by=created_by,
            created_at=now,
            updated_at=now,
            **fields,
        )
