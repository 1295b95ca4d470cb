"""Learner progress endpoints.

    POST /v1/progress/{course_id}/assign              assign a course to a learner
    GET  /v1/progress/library                         the caller's progress records
    GET  /v1/progress/{course_id}                     read-through cached
    GET  /v1/progress/{course_id}/attempts
    POST /v1/progress/{course_id}/attempts            start (or restart) an attempt
    POST /v1/progress/{course_id}/attempts/complete   submit the attempt's results

Every write invalidates the cached progress document for its key, so the
next GET reads the ledger again.  Invalidation is a best-effort side
effect: once the ledger has committed, a cache outage never turns the
response into an error.
"""

from __future__ import annotations

import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from course_core.api.dependencies import (
    get_ledger,
    require_any_role,
    require_principal,
)
from course_core.api.errors import to_http_exception
from course_core.core.errors import CourseCoreError
from course_core.models.documents import progress_from_document, progress_to_document
from course_core.models.principal import AUTHOR_ROLES, Principal
from course_core.models.progress import Attempt, ProgressRecord, QuizSubmission
from course_core.services.cache import (
    cache_service,
    progress_cache_key,
    read_through,
)
from course_core.services.ledger import ProgressLedger
from course_core.services.side_effects import SideEffectBatch

router = APIRouter(prefix="/v1/progress", tags=["progress"])

Ledger = Annotated[ProgressLedger, Depends(get_ledger)]
Caller = Annotated[Principal, Depends(require_principal)]


class QuizScoreOut(BaseModel):
    quiz_id: str
    score: float
    attempts: int
    completed_at: int


class ProgressOut(BaseModel):
    id: str
    tenant_id: str
    user_id: str
    course_id: str
    status: str
    progress: float
    best_score: float
    total_xp_earned: int
    current_attempt: int
    open_attempt: int | None
    completed_lessons: list[str]
    quiz_scores: list[QuizScoreOut]
    certificate_earned: bool
    certificate_id: str | None
    assigned_by: str | None
    assigned_at: int | None
    last_accessed_at: int


class QuizSubmissionIO(BaseModel):
    quiz_id: str
    score: float
    completed_at: int | None = None


class AttemptOut(BaseModel):
    attempt_number: int
    state: str
    started_at: int
    completed_at: int | None
    final_score: float
    xp_earned: int
    completed_lessons: list[str]
    quiz_scores: list[QuizSubmissionIO]


class AssignIn(BaseModel):
    user_id: str


class CompleteAttemptIn(BaseModel):
    final_score: float
    completed_lessons: list[str] = []
    quiz_scores: list[QuizSubmissionIO] = []


class XpBreakdownOut(BaseModel):
    improvement: float
    improvement_xp: int
    persistence_bonus: int
    total: int


class XpAwardOut(BaseModel):
    xp_earned: int
    breakdown: XpBreakdownOut


class CompletionOut(BaseModel):
    progress: float
    xp_awarded: XpAwardOut
    certificate_earned: bool
    certificate_id: str | None


def _progress_out(record: ProgressRecord) -> ProgressOut:
    return ProgressOut(
        id=record.id,
        tenant_id=record.tenant_id,
        user_id=record.user_id,
        course_id=record.course_id,
        status=record.status.value,
        progress=record.progress,
        best_score=record.best_score,
        total_xp_earned=record.total_xp_earned,
        current_attempt=record.current_attempt,
        open_attempt=record.open_attempt,
        completed_lessons=sorted(record.completed_lessons),
        quiz_scores=[
            QuizScoreOut(
                quiz_id=q.quiz_id,
                score=q.score,
                attempts=q.attempts,
                completed_at=q.completed_at,
            )
            for q in record.quiz_scores.values()
        ],
        certificate_earned=record.certificate_earned,
        certificate_id=record.certificate_id,
        assigned_by=record.assigned_by,
        assigned_at=record.assigned_at,
        last_accessed_at=record.last_accessed_at,
    )


def _attempt_out(attempt: Attempt) -> AttemptOut:
    return AttemptOut(
        attempt_number=attempt.attempt_number,
        state=attempt.state.value,
        started_at=attempt.started_at,
        completed_at=attempt.completed_at,
        final_score=attempt.final_score,
        xp_earned=attempt.xp_earned,
        completed_lessons=sorted(attempt.completed_lessons),
        quiz_scores=[
            QuizSubmissionIO(
                quiz_id=q.quiz_id, score=q.score, completed_at=q.completed_at
            )
            for q in attempt.quiz_scores
        ],
    )


async def _invalidate(tenant_id: str, user_id: str, course_id: str) -> None:
    # Runs after the ledger committed; the write stands whatever the cache does.
    key = progress_cache_key(tenant_id, user_id, course_id)
    batch = SideEffectBatch(tenant_id=tenant_id, user_id=user_id, course_id=course_id)
    await batch.run("cache", lambda: cache_service.delete(key))


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get("/library", response_model=list[ProgressOut])
async def get_library(principal: Caller, ledger: Ledger) -> list[ProgressOut]:
    records = await ledger.get_library(principal.user_id, principal.tenant_id)
    return [_progress_out(r) for r in records]


@router.get("/{course_id}", response_model=ProgressOut)
async def get_progress(
    course_id: str, principal: Caller, ledger: Ledger
) -> ProgressOut:
    """Read-through cached progress for the caller on one course."""

    async def load() -> dict:
        record = await ledger.get_progress(
            principal.user_id, principal.tenant_id, course_id
        )
        return progress_to_document(record)

    key = progress_cache_key(principal.tenant_id, principal.user_id, course_id)
    try:
        document = await read_through(cache_service, key, load)
    except CourseCoreError as e:
        raise to_http_exception(e) from None
    return _progress_out(progress_from_document(document))


@router.get("/{course_id}/attempts", response_model=list[AttemptOut])
async def get_attempts(
    course_id: str, principal: Caller, ledger: Ledger
) -> list[AttemptOut]:
    attempts = await ledger.get_attempts(
        principal.user_id, principal.tenant_id, course_id
    )
    return [_attempt_out(a) for a in attempts]


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


@router.post(
    "/{course_id}/assign",
    response_model=ProgressOut,
    status_code=status.HTTP_201_CREATED,
)
async def assign_course(
    course_id: str,
    body: AssignIn,
    principal: Annotated[Principal, Depends(require_any_role(AUTHOR_ROLES))],
    ledger: Ledger,
) -> ProgressOut:
    try:
        record = await ledger.assign_course(
            body.user_id, principal.tenant_id, course_id, principal.user_id
        )
    except CourseCoreError as e:
        raise to_http_exception(e) from None
    await _invalidate(principal.tenant_id, body.user_id, course_id)
    return _progress_out(record)


@router.post(
    "/{course_id}/attempts",
    response_model=ProgressOut,
    status_code=status.HTTP_201_CREATED,
)
async def start_attempt(
    course_id: str, principal: Caller, ledger: Ledger
) -> ProgressOut:
    try:
        record = await ledger.start_attempt(
            principal.user_id, principal.tenant_id, course_id
        )
    except CourseCoreError as e:
        raise to_http_exception(e) from None
    await _invalidate(principal.tenant_id, principal.user_id, course_id)
    return _progress_out(record)


@router.post("/{course_id}/attempts/complete", response_model=CompletionOut)
async def complete_attempt(
    course_id: str, body: CompleteAttemptIn, principal: Caller, ledger: Ledger
) -> CompletionOut:
    now = int(datetime.datetime.now(datetime.UTC).timestamp())
    submissions = [
        QuizSubmission(
            quiz_id=q.quiz_id,
            score=q.score,
            completed_at=q.completed_at if q.completed_at is not None else now,
        )
        for q in body.quiz_scores
    ]
    try:
        result = await ledger.complete_attempt(
            principal.user_id,
            principal.tenant_id,
            course_id,
            body.final_score,
            body.completed_lessons,
            submissions,
            user_full_name=principal.display_name,
        )
    except CourseCoreError as e:
        raise to_http_exception(e) from None
    await _invalidate(principal.tenant_id, principal.user_id, course_id)

    breakdown = result.xp_awarded.breakdown
    return CompletionOut(
        progress=result.progress,
        xp_awarded=XpAwardOut(
            xp_earned=result.xp_awarded.xp_earned,
            breakdown=XpBreakdownOut(
                improvement=breakdown.improvement,
                improvement_xp=breakdown.improvement_xp,
                persistence_bonus=breakdown.persistence_bonus,
                total=breakdown.total,
            ),
        ),
        certificate_earned=result.certificate_earned,
        certificate_id=result.certificate_id,
    )
