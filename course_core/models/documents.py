"""Document shapes for courses and progress records.

The store holds JSON documents with the camelCase field names the rest
of the platform reads (the authoring UI, reporting jobs).  These helpers
are the only place that knows the mapping; repos and the cache call
them, domain code never sees a raw document.
"""

from __future__ import annotations

from typing import Any

from course_core.models.course import (
    CompletionMode,
    Course,
    CourseModule,
    CourseStatus,
)
from course_core.models.progress import (
    Attempt,
    AttemptState,
    ProgressRecord,
    ProgressStatus,
    QuizScore,
    QuizSubmission,
)

# (python attribute, document key) for the flat Course fields.
_COURSE_FIELDS: tuple[tuple[str, str], ...] = (
    ("id", "id"),
    ("tenant_id", "tenantId"),
    ("title", "title"),
    ("description", "description"),
    ("category", "category"),
    ("estimated_time", "estimatedTime"),
    ("created_by", "createdBy"),
    ("created_at", "createdAt"),
    ("updated_at", "updatedAt"),
    ("reviewer_id", "reviewerId"),
    ("review_comments", "reviewComments"),
    ("requested_changes", "requestedChanges"),
    ("submitted_for_review_at", "submittedForReviewAt"),
    ("published_at", "publishedAt"),
    ("archived_at", "archivedAt"),
    ("require_all_quizzes_passed", "requireAllQuizzesPassed"),
    ("minimum_score_for_completion", "minimumScoreForCompletion"),
    ("certificate_enabled", "certificateEnabled"),
    ("certificate_requires_passing_score", "certificateRequiresPassingScore"),
    ("minimum_score_for_certificate", "minimumScoreForCertificate"),
    ("total_xp", "totalXp"),
)


def course_to_document(course: Course) -> dict[str, Any]:
    doc: dict[str, Any] = {key: getattr(course, attr) for attr, key in _COURSE_FIELDS}
    doc["status"] = course.status.value
    doc["completionMode"] = course.completion_mode.value
    doc["modules"] = [
        {"id": m.id, "title": m.title, "type": m.type, "order": m.order}
        for m in course.modules
    ]
    return doc


def course_from_document(doc: dict[str, Any]) -> Course:
    fields: dict[str, Any] = {
        attr: doc[key] for attr, key in _COURSE_FIELDS if key in doc
    }
    fields["status"] = CourseStatus(doc.get("status", CourseStatus.DRAFT))
    fields["completion_mode"] = CompletionMode(
        doc.get("completionMode", CompletionMode.MODULES_ONLY)
    )
    fields["modules"] = tuple(
        CourseModule(
            id=m["id"],
            title=m.get("title", ""),
            type=m.get("type", "text"),
            order=m.get("order", i),
        )
        for i, m in enumerate(doc.get("modules") or [])
    )
    return Course(**fields)


def _attempt_to_document(attempt: Attempt) -> dict[str, Any]:
    return {
        "attemptNumber": attempt.attempt_number,
        "state": attempt.state.value,
        "startedAt": attempt.started_at,
        "completedAt": attempt.completed_at,
        "finalScore": attempt.final_score,
        "xpEarned": attempt.xp_earned,
        "completedLessons": sorted(attempt.completed_lessons),
        "quizScores": [
            {"quizId": q.quiz_id, "score": q.score, "completedAt": q.completed_at}
            for q in attempt.quiz_scores
        ],
    }


def _attempt_from_document(doc: dict[str, Any]) -> Attempt:
    return Attempt(
        attempt_number=doc["attemptNumber"],
        started_at=doc["startedAt"],
        state=AttemptState(doc.get("state", AttemptState.OPEN)),
        completed_at=doc.get("completedAt"),
        final_score=doc.get("finalScore", 0),
        xp_earned=doc.get("xpEarned", 0),
        completed_lessons=frozenset(doc.get("completedLessons") or ()),
        quiz_scores=tuple(
            QuizSubmission(
                quiz_id=q["quizId"], score=q["score"], completed_at=q["completedAt"]
            )
            for q in doc.get("quizScores") or ()
        ),
    )


def progress_to_document(record: ProgressRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "tenantId": record.tenant_id,
        "userId": record.user_id,
        "courseId": record.course_id,
        "status": record.status.value,
        "progress": record.progress,
        "bestScore": record.best_score,
        "totalXpEarned": record.total_xp_earned,
        "currentAttempt": record.current_attempt,
        "openAttempt": record.open_attempt,
        "attempts": [_attempt_to_document(a) for a in record.attempts],
        "completedLessons": sorted(record.completed_lessons),
        "quizScores": [
            {
                "quizId": q.quiz_id,
                "score": q.score,
                "attempts": q.attempts,
                "completedAt": q.completed_at,
            }
            for q in record.quiz_scores.values()
        ],
        "certificateEarned": record.certificate_earned,
        "certificateId": record.certificate_id,
        "assignedBy": record.assigned_by,
        "assignedAt": record.assigned_at,
        "lastAccessedAt": record.last_accessed_at,
        "version": record.version,
    }


def progress_from_document(doc: dict[str, Any]) -> ProgressRecord:
    quiz_scores = {
        q["quizId"]: QuizScore(
            quiz_id=q["quizId"],
            score=q["score"],
            attempts=q.get("attempts", 1),
            completed_at=q["completedAt"],
        )
        for q in doc.get("quizScores") or ()
    }
    return ProgressRecord(
        tenant_id=doc["tenantId"],
        user_id=doc["userId"],
        course_id=doc["courseId"],
        last_accessed_at=doc["lastAccessedAt"],
        status=ProgressStatus(doc.get("status", ProgressStatus.NOT_STARTED)),
        progress=doc.get("progress", 0),
        best_score=doc.get("bestScore", 0),
        total_xp_earned=doc.get("totalXpEarned", 0),
        current_attempt=doc.get("currentAttempt", 0),
        open_attempt=doc.get("openAttempt"),
        attempts=tuple(_attempt_from_document(a) for a in doc.get("attempts") or ()),
        completed_lessons=frozenset(doc.get("completedLessons") or ()),
        quiz_scores=quiz_scores,
        certificate_earned=doc.get("certificateEarned", False),
        certificate_id=doc.get("certificateId"),
        assigned_by=doc.get("assignedBy"),
        assigned_at=doc.get("assignedAt"),
        version=doc.get("version", 0),
    )
