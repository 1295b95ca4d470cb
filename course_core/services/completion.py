from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from course_core.core.errors import CompletionPolicyViolationError
from course_core.models.course import CompletionMode, Course
from course_core.models.progress import QuizSubmission

logger = logging.getLogger(__name__)

# Passing threshold used when the course does not configure one.
DEFAULT_PASSING_SCORE = 70


@dataclass(frozen=True, slots=True)
class CompletionDecision:
    accepted: bool
    reason: str | None = None


def evaluate_completion(
    course: Course,
    final_score: float,
    quiz_scores: Iterable[QuizSubmission],
) -> CompletionDecision:
    """Apply the course's completion policy to a submitted attempt.

    Checks run in order and the first failure wins:
      1. overall score against minimum_score_for_completion
      2. in modules-and-quizzes mode with require_all_quizzes_passed,
         every submitted quiz against the same minimum (or 70)

    The per-quiz passing score configured on the quiz itself is not
    consulted; the course-level threshold applies to every quiz.
    """
    minimum = course.minimum_score_for_completion
    if minimum is not None and final_score < minimum:
        return CompletionDecision(
            accepted=False,
            reason=f"score {final_score:g} is below the minimum of {minimum:g} "
            "required to complete this course",
        )

    if (
        course.completion_mode is CompletionMode.MODULES_AND_QUIZZES
        and course.require_all_quizzes_passed
    ):
        threshold = minimum if minimum is not None else DEFAULT_PASSING_SCORE
        failed = sorted(q.quiz_id for q in quiz_scores if q.score < threshold)
        if failed:
            return CompletionDecision(
                accepted=False,
                reason=f"all quizzes must be passed with at least {threshold:g}; "
                f"not passed: {', '.join(failed)}",
            )

    return CompletionDecision(accepted=True)


def ensure_completion_allowed(
    course: Course,
    final_score: float,
    quiz_scores: Iterable[QuizSubmission],
) -> None:
    decision = evaluate_completion(course, final_score, quiz_scores)
    if not decision.accepted:
        logger.warning(
            "Completion rejected course=%s reason=%s",
            course.id,
            decision.reason,
            extra={"tenant_id": course.tenant_id, "course_id": course.id},
        )
        raise CompletionPolicyViolationError(decision.reason or "completion rejected")


def is_certificate_eligible(course: Course, final_score: float) -> bool:
    """Certificate policy, evaluated only for accepted completions."""
    if not course.certificate_enabled:
        return False
    if course.certificate_requires_passing_score:
        threshold = course.minimum_score_for_certificate
        if threshold is None:
            threshold = DEFAULT_PASSING_SCORE
        return final_score >= threshold
    return True
