"""Progress ledger: one versioned record per (tenant, user, course).

Every mutation is a read → plan → compare-and-swap cycle:

    record = store.get(key)                 # version N
    updated = plan(record)                  # pure; may raise
    store.upsert(updated, expected=N)       # fails if someone else wrote N+1
        └─ conflict → reload and plan again (LEDGER_MAX_RETRIES times)

Plans are pure functions of the freshly loaded record, so a retry never
works from stale state.  Two learners' browser tabs completing the same
attempt end with one success; the loser reloads, finds the attempt
already closed and gets NoActiveAttemptError.

complete_attempt is two-phase.  Phase one commits the ledger record,
including certificate_earned.  Phase two runs the side effects in a
SideEffectBatch:

  certificate   issue, then attach certificate_id with another CAS write
  achievements  enqueue a stats delta for the achievement checker
  audit         progress.attempt-completed

A failing side effect is logged and counted; it never undoes phase one
or reaches the caller.
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from typing import Any, TypeVar

from course_core.core.config import SETTINGS, Settings
from course_core.core.errors import (
    CompletionPolicyViolationError,
    ConcurrencyConflictError,
    NoActiveAttemptError,
    NotFoundError,
    ValidationError,
)
from course_core.core.metrics import (
    ATTEMPTS_COMPLETED,
    ATTEMPTS_STARTED,
    LEDGER_CONFLICTS,
    XP_AWARDED,
)
from course_core.models.audit import AuditEvent
from course_core.models.course import Course
from course_core.models.progress import (
    Attempt,
    AttemptState,
    ProgressRecord,
    ProgressStatus,
    QuizScore,
    QuizSubmission,
)
from course_core.repos.course_repo import CourseRepo
from course_core.repos.progress_repo import ProgressRepo
from course_core.services.achievements import AchievementChecker, UserStats
from course_core.services.audit import AuditLogger
from course_core.services.certificates import CertificateIssuer
from course_core.services.completion import (
    DEFAULT_PASSING_SCORE,
    ensure_completion_allowed,
    is_certificate_eligible,
)
from course_core.services.side_effects import SideEffectBatch, SideEffectOutcome
from course_core.services.xp import PERFECT_SCORE, XpAward, calculate_differential_xp

logger = logging.getLogger(__name__)

T = TypeVar("T")

# A plan maps the current record (None if absent) to the record to write
# and a result for the caller.  Returning None as the record skips the write.
Plan = Callable[[ProgressRecord | None], tuple[ProgressRecord | None, T]]


@dataclass(frozen=True, slots=True)
class CompletionResult:
    progress: float
    xp_awarded: XpAward
    certificate_earned: bool
    certificate_id: str | None
    record: ProgressRecord
    side_effects: tuple[SideEffectOutcome, ...] = ()


@dataclass(frozen=True, slots=True)
class _CompletionPlan:
    attempt_number: int
    award: XpAward
    issue_certificate: bool
    stats_delta: UserStats


def _utc_now() -> int:
    return int(datetime.datetime.now(datetime.UTC).timestamp())


def _check_score(name: str, score: float) -> None:
    if not 0 <= score <= 100:
        raise ValidationError(f"{name} must be between 0 and 100 (got {score:g})")


def _merge_quiz_scores(
    existing: dict[str, QuizScore], submitted: Iterable[QuizSubmission]
) -> dict[str, QuizScore]:
    """Keep the best score per quiz and count submissions.

    Quizzes not submitted in this attempt keep their entry.
    """
    merged = dict(existing)
    for sub in submitted:
        prior = merged.get(sub.quiz_id)
        if prior is None:
            merged[sub.quiz_id] = QuizScore(
                quiz_id=sub.quiz_id,
                score=sub.score,
                attempts=1,
                completed_at=sub.completed_at,
            )
        else:
            merged[sub.quiz_id] = QuizScore(
                quiz_id=sub.quiz_id,
                score=max(prior.score, sub.score),
                attempts=prior.attempts + 1,
                completed_at=sub.completed_at,
            )
    return merged


class ProgressLedger:
    def __init__(
        self,
        course_repo: CourseRepo,
        progress_repo: ProgressRepo,
        *,
        certificate_issuer: CertificateIssuer,
        achievement_checker: AchievementChecker,
        audit_logger: AuditLogger,
        settings: Settings = SETTINGS,
        clock: Callable[[], int] = _utc_now,
    ) -> None:
        self._courses = course_repo
        self._progress = progress_repo
        self._issuer = certificate_issuer
        self._achievements = achievement_checker
        self._audit = audit_logger
        self._course_xp_total = settings.course_xp_total
        self._max_retries = settings.ledger_max_retries
        self._clock = clock

    # -- reads -------------------------------------------------------------

    async def get_progress(
        self, user_id: str, tenant_id: str, course_id: str
    ) -> ProgressRecord:
        record = await self._progress.get(tenant_id, user_id, course_id)
        if record is None:
            raise NotFoundError("progress", f"progress-{user_id}-{course_id}")
        return record

    async def get_library(self, user_id: str, tenant_id: str) -> list[ProgressRecord]:
        return await self._progress.list_for_user(tenant_id, user_id)

    async def get_attempts(
        self, user_id: str, tenant_id: str, course_id: str
    ) -> list[Attempt]:
        record = await self._progress.get(tenant_id, user_id, course_id)
        return list(record.attempts) if record is not None else []

    # -- writes ------------------------------------------------------------

    async def assign_course(
        self, user_id: str, tenant_id: str, course_id: str, assigned_by: str
    ) -> ProgressRecord:
        """Create a not-started record for the learner; no-op if one exists."""
        await self._load_course(tenant_id, course_id)
        now = self._clock()

        def plan(record: ProgressRecord | None) -> tuple[ProgressRecord | None, bool]:
            if record is not None:
                return None, False
            return (
                ProgressRecord.new(
                    tenant_id=tenant_id,
                    user_id=user_id,
                    course_id=course_id,
                    now=now,
                    assigned_by=assigned_by,
                ),
                True,
            )

        record, created = await self._commit(tenant_id, user_id, course_id, plan)
        if created:
            logger.info(
                "Assigned course to user by=%s",
                assigned_by,
                extra={"tenant_id": tenant_id, "user_id": user_id, "course_id": course_id},
            )
            await self._audit_event(
                tenant_id,
                assigned_by,
                "progress.course-assigned",
                course_id,
                {"userId": user_id},
                SideEffectBatch(tenant_id=tenant_id, user_id=user_id, course_id=course_id),
            )
        return record

    async def start_attempt(
        self, user_id: str, tenant_id: str, course_id: str
    ) -> ProgressRecord:
        """Open a new attempt, abandoning any attempt still open."""
        await self._load_course(tenant_id, course_id)
        now = self._clock()

        def plan(record: ProgressRecord | None) -> tuple[ProgressRecord, int | None]:
            if record is None:
                record = ProgressRecord.new(
                    tenant_id=tenant_id, user_id=user_id, course_id=course_id, now=now
                )
            attempts = list(record.attempts)
            abandoned = None
            active = record.active_attempt()
            if active is not None:
                attempts[active.attempt_number - 1] = replace(
                    active, state=AttemptState.ABANDONED, completed_at=now
                )
                abandoned = active.attempt_number

            number = record.current_attempt + 1
            attempts.append(Attempt(attempt_number=number, started_at=now))
            return (
                replace(
                    record,
                    status=ProgressStatus.IN_PROGRESS,
                    current_attempt=number,
                    open_attempt=number,
                    attempts=tuple(attempts),
                    last_accessed_at=now,
                ),
                abandoned,
            )

        record, abandoned = await self._commit(tenant_id, user_id, course_id, plan)
        ATTEMPTS_STARTED.inc()
        if abandoned is not None:
            logger.info(
                "Abandoned attempt=%d on restart",
                abandoned,
                extra={"tenant_id": tenant_id, "user_id": user_id, "course_id": course_id},
            )
        logger.info(
            "Started attempt=%d",
            record.current_attempt,
            extra={
                "tenant_id": tenant_id,
                "user_id": user_id,
                "course_id": course_id,
                "attempt_number": record.current_attempt,
            },
        )
        return record

    async def complete_attempt(
        self,
        user_id: str,
        tenant_id: str,
        course_id: str,
        final_score: float,
        completed_lessons: Iterable[str] = (),
        quiz_scores: Iterable[QuizSubmission] = (),
        *,
        user_full_name: str | None = None,
    ) -> CompletionResult:
        _check_score("final_score", final_score)
        submissions = tuple(quiz_scores)
        for sub in submissions:
            _check_score(f"quiz {sub.quiz_id} score", sub.score)
        lessons = frozenset(completed_lessons)

        course = await self._load_course(tenant_id, course_id)
        pool = course.total_xp if course.total_xp is not None else self._course_xp_total
        now = self._clock()

        def plan(record: ProgressRecord | None) -> tuple[ProgressRecord, _CompletionPlan]:
            if record is None:
                raise NotFoundError("progress", f"progress-{user_id}-{course_id}")
            active = record.active_attempt()
            if active is None:
                raise NoActiveAttemptError(
                    f"no open attempt for user {user_id} on course {course_id}"
                )
            ensure_completion_allowed(course, final_score, submissions)

            award = calculate_differential_xp(final_score, record.best_score, pool)
            attempts = list(record.attempts)
            attempts[active.attempt_number - 1] = replace(
                active,
                state=AttemptState.COMPLETED,
                completed_at=now,
                final_score=final_score,
                xp_earned=award.xp_earned,
                completed_lessons=lessons,
                quiz_scores=submissions,
            )

            improved = final_score > record.best_score
            eligible = is_certificate_eligible(course, final_score)
            first_completion = not any(
                a.state is AttemptState.COMPLETED for a in record.attempts
            )
            passing = (
                course.minimum_score_for_completion
                if course.minimum_score_for_completion is not None
                else DEFAULT_PASSING_SCORE
            )
            delta = UserStats(
                courses_completed=1 if first_completion else 0,
                assessments_passed=sum(1 for q in submissions if q.score >= passing),
                perfect_scores=(
                    1
                    if final_score >= PERFECT_SCORE and record.best_score < PERFECT_SCORE
                    else 0
                ),
                total_xp=award.xp_earned,
            )

            updated = replace(
                record,
                status=ProgressStatus.COMPLETED,
                attempts=tuple(attempts),
                open_attempt=None,
                best_score=max(record.best_score, final_score),
                progress=final_score if improved else record.progress,
                total_xp_earned=record.total_xp_earned + award.xp_earned,
                completed_lessons=record.completed_lessons | lessons,
                quiz_scores=_merge_quiz_scores(record.quiz_scores, submissions),
                certificate_earned=record.certificate_earned or eligible,
                last_accessed_at=now,
            )
            return updated, _CompletionPlan(
                attempt_number=active.attempt_number,
                award=award,
                issue_certificate=eligible and record.certificate_id is None,
                stats_delta=delta,
            )

        try:
            record, outcome = await self._commit(tenant_id, user_id, course_id, plan)
        except CompletionPolicyViolationError:
            ATTEMPTS_COMPLETED.labels(result="policy_violation").inc()
            raise
        except NoActiveAttemptError:
            ATTEMPTS_COMPLETED.labels(result="no_active_attempt").inc()
            raise

        ATTEMPTS_COMPLETED.labels(result="accepted").inc()
        XP_AWARDED.inc(outcome.award.xp_earned)
        log_context = {
            "tenant_id": tenant_id,
            "user_id": user_id,
            "course_id": course_id,
            "attempt_number": outcome.attempt_number,
        }
        logger.info(
            "Completed attempt=%d score=%g xp=%d best=%g",
            outcome.attempt_number,
            final_score,
            outcome.award.xp_earned,
            record.best_score,
            extra=log_context,
        )

        batch = SideEffectBatch(**log_context)
        if outcome.issue_certificate:
            issued = await batch.run(
                "certificate",
                lambda: self._issue_certificate(
                    course, user_id, user_full_name or user_id
                ),
            )
            if issued.ok:
                record = issued.value
        await batch.run(
            "achievements",
            lambda: self._achievements.check_and_unlock(
                tenant_id, user_id, outcome.stats_delta
            ),
        )
        await self._audit_event(
            tenant_id,
            user_id,
            "progress.attempt-completed",
            course_id,
            {
                "attemptNumber": outcome.attempt_number,
                "finalScore": final_score,
                "xpEarned": outcome.award.xp_earned,
                "certificateEarned": record.certificate_earned,
            },
            batch,
        )

        return CompletionResult(
            progress=record.progress,
            xp_awarded=outcome.award,
            certificate_earned=record.certificate_earned,
            certificate_id=record.certificate_id,
            record=record,
            side_effects=tuple(batch.outcomes),
        )

    # -- internals ---------------------------------------------------------

    async def _load_course(self, tenant_id: str, course_id: str) -> Course:
        course = await self._courses.get(tenant_id, course_id)
        if course is None:
            raise NotFoundError("course", course_id)
        return course

    async def _commit(
        self, tenant_id: str, user_id: str, course_id: str, plan: Plan[T]
    ) -> tuple[ProgressRecord, T]:
        expected = 0
        for attempt in range(1, self._max_retries + 1):
            current = await self._progress.get(tenant_id, user_id, course_id)
            updated, result = plan(current)
            if updated is None:
                # A plan may skip the write only for a record that exists.
                if current is None:
                    raise NotFoundError("progress", f"progress-{user_id}-{course_id}")
                return current, result

            expected = current.version if current is not None else 0
            try:
                stored = await self._progress.upsert(updated, expected_version=expected)
            except ConcurrencyConflictError:
                LEDGER_CONFLICTS.inc()
                logger.info(
                    "Version conflict at v%d, recomputing (try %d/%d)",
                    expected,
                    attempt,
                    self._max_retries,
                    extra={
                        "tenant_id": tenant_id,
                        "user_id": user_id,
                        "course_id": course_id,
                    },
                )
                continue
            return stored, result

        logger.warning(
            "Giving up after %d version conflicts",
            self._max_retries,
            extra={"tenant_id": tenant_id, "user_id": user_id, "course_id": course_id},
        )
        raise ConcurrencyConflictError(f"progress-{user_id}-{course_id}", expected)

    async def _issue_certificate(
        self, course: Course, user_id: str, user_full_name: str
    ) -> ProgressRecord:
        cert = await self._issuer.create_certificate(
            course.tenant_id, user_id, course.id, course.title, user_full_name
        )

        def attach(record: ProgressRecord | None) -> tuple[ProgressRecord | None, None]:
            if record is None:
                raise NotFoundError("progress", f"progress-{user_id}-{course.id}")
            if record.certificate_id == cert.id:
                return None, None
            return replace(record, certificate_earned=True, certificate_id=cert.id), None

        record, _ = await self._commit(course.tenant_id, user_id, course.id, attach)
        return record

    async def _audit_event(
        self,
        tenant_id: str,
        actor_id: str,
        action: str,
        resource_id: str,
        metadata: dict[str, Any],
        batch: SideEffectBatch,
    ) -> None:
        event = AuditEvent.new(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action=action,
            resource_id=resource_id,
            occurred_at=self._clock(),
            metadata=metadata,
        )
        await batch.run("audit", lambda: self._audit.log(event))
