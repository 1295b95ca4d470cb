"""In-memory progress store: versioned compare-and-swap writes."""

from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from course_core.core.errors import ConcurrencyConflictError
from course_core.models.documents import progress_from_document, progress_to_document
from course_core.models.progress import (
    Attempt,
    AttemptState,
    ProgressRecord,
    ProgressStatus,
    QuizScore,
    QuizSubmission,
)
from course_core.repos.progress_repo import InMemoryProgressRepo
from tests.conftest import TENANT


def _record(course_id: str = "course-1", **overrides) -> ProgressRecord:
    record = ProgressRecord.new(
        tenant_id=TENANT, user_id="u1", course_id=course_id, now=100
    )
    return replace(record, **overrides)


def test_insert_requires_expected_version_zero() -> None:
    repo = InMemoryProgressRepo()
    stored = asyncio.run(repo.upsert(_record(), expected_version=0))
    assert stored.version == 1

    with pytest.raises(ConcurrencyConflictError):
        asyncio.run(repo.upsert(_record(), expected_version=0))


def test_update_bumps_version() -> None:
    repo = InMemoryProgressRepo()

    async def run():
        v1 = await repo.upsert(_record(), expected_version=0)
        v2 = await repo.upsert(replace(v1, best_score=80), expected_version=1)
        return v2, await repo.get(TENANT, "u1", "course-1")

    v2, loaded = asyncio.run(run())
    assert v2.version == 2
    assert loaded == v2


def test_stale_write_is_rejected_and_store_unchanged() -> None:
    repo = InMemoryProgressRepo()

    async def run():
        v1 = await repo.upsert(_record(), expected_version=0)
        await repo.upsert(replace(v1, best_score=80), expected_version=1)
        with pytest.raises(ConcurrencyConflictError) as exc:
            await repo.upsert(replace(v1, best_score=90), expected_version=1)
        return exc.value, await repo.get(TENANT, "u1", "course-1")

    err, loaded = asyncio.run(run())
    assert err.expected_version == 1
    assert loaded.best_score == 80
    assert loaded.version == 2


def test_list_for_user_orders_by_last_access_and_scopes_tenant() -> None:
    repo = InMemoryProgressRepo()

    async def run():
        await repo.upsert(_record("course-1", last_accessed_at=10), expected_version=0)
        await repo.upsert(_record("course-2", last_accessed_at=30), expected_version=0)
        await repo.upsert(
            replace(_record("course-3"), tenant_id="tenant-b"), expected_version=0
        )
        return await repo.list_for_user(TENANT, "u1")

    records = asyncio.run(run())
    assert [r.course_id for r in records] == ["course-2", "course-1"]


def test_progress_document_uses_platform_field_names() -> None:
    record = _record(
        status=ProgressStatus.COMPLETED,
        best_score=80,
        total_xp_earned=425,
        current_attempt=1,
        attempts=(
            Attempt(
                attempt_number=1,
                started_at=100,
                state=AttemptState.COMPLETED,
                completed_at=160,
                final_score=80,
                xp_earned=425,
                completed_lessons=frozenset({"l2", "l1"}),
                quiz_scores=(QuizSubmission("q1", 90, 150),),
            ),
        ),
        quiz_scores={"q1": QuizScore("q1", 90, 1, 150)},
        version=3,
    )

    doc = progress_to_document(record)

    assert doc["id"] == "progress-u1-course-1"
    assert doc["bestScore"] == 80
    assert doc["totalXpEarned"] == 425
    assert doc["attempts"][0]["completedLessons"] == ["l1", "l2"]
    assert doc["quizScores"] == [
        {"quizId": "q1", "score": 90, "attempts": 1, "completedAt": 150}
    ]
    assert progress_from_document(doc) == record


def test_progress_document_defaults_for_sparse_documents() -> None:
    record = progress_from_document(
        {
            "tenantId": TENANT,
            "userId": "u1",
            "courseId": "course-1",
            "lastAccessedAt": 5,
            "attempts": [{"attemptNumber": 1, "startedAt": 5}],
        }
    )

    assert record.status is ProgressStatus.NOT_STARTED
    assert record.best_score == 0
    assert record.attempts[0].state is AttemptState.OPEN
    assert record.quiz_scores == {}
    assert record.version == 0
