"""Course lifecycle manager tests.

Covers the full (status × action) grid: every allowed move lands in the
right status, every other pair raises InvalidStateTransitionError and
leaves the stored course untouched.  Role checks, ownership, audit
events and audit-failure tolerance follow.
"""

from __future__ import annotations

import asyncio
import itertools

import pytest
from prometheus_client import REGISTRY

from course_core.core.errors import (
    InvalidStateTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from course_core.models.audit import AuditEvent
from course_core.models.course import CompletionMode, Course, CourseStatus
from course_core.repos.course_repo import InMemoryCourseRepo
from course_core.services.audit import InMemoryAuditLogger
from course_core.services.lifecycle import CourseAction, CourseLifecycleManager
from tests.conftest import TENANT, FakeClock, make_course, principal

ADMIN = principal("admin-1", "tenant-admin")
AUTHOR = principal("author-1", "instructor")
OTHER_AUTHOR = principal("author-2", "instructor")
LEARNER = principal("learner-1", "student")

S = CourseStatus
A = CourseAction

EXPECTED: dict[tuple[CourseStatus, CourseAction], CourseStatus] = {
    (S.DRAFT, A.SUBMIT_FOR_REVIEW): S.PENDING_REVIEW,
    (S.PENDING_REVIEW, A.APPROVE): S.PUBLISHED,
    (S.DRAFT, A.PUBLISH_DIRECTLY): S.PUBLISHED,
    (S.PENDING_REVIEW, A.PUBLISH_DIRECTLY): S.PUBLISHED,
    (S.PENDING_REVIEW, A.REJECT): S.DRAFT,
    (S.PENDING_REVIEW, A.REQUEST_CHANGES): S.DRAFT,
    (S.PUBLISHED, A.ARCHIVE): S.ARCHIVED,
    (S.ARCHIVED, A.UNARCHIVE): S.PUBLISHED,
    **{(status, A.DELETE): S.ARCHIVED for status in S},
}


class FailingAuditLogger:
    async def log(self, event: AuditEvent) -> None:
        raise RuntimeError("audit sink unavailable")


def _manager(
    audit=None,
) -> tuple[CourseLifecycleManager, InMemoryCourseRepo, InMemoryAuditLogger]:
    repo = InMemoryCourseRepo()
    audit = audit if audit is not None else InMemoryAuditLogger()
    return CourseLifecycleManager(repo, audit, clock=FakeClock()), repo, audit


def _seed(repo: InMemoryCourseRepo, **fields) -> Course:
    course = make_course(**fields)
    asyncio.run(repo.create(course))
    return course


async def _apply(
    manager: CourseLifecycleManager, action: CourseAction, course_id: str
) -> Course:
    if action is A.SUBMIT_FOR_REVIEW:
        return await manager.submit_for_review(course_id, TENANT, AUTHOR)
    if action is A.APPROVE:
        return await manager.approve(course_id, TENANT, ADMIN, "looks good")
    if action is A.PUBLISH_DIRECTLY:
        return await manager.publish_directly(course_id, TENANT, ADMIN)
    if action is A.REJECT:
        return await manager.reject(course_id, TENANT, ADMIN, "not ready")
    if action is A.REQUEST_CHANGES:
        return await manager.request_changes(course_id, TENANT, ADMIN, "add a quiz")
    if action is A.ARCHIVE:
        return await manager.archive(course_id, TENANT, ADMIN)
    if action is A.UNARCHIVE:
        return await manager.unarchive(course_id, TENANT, ADMIN)
    return await manager.delete(course_id, TENANT, ADMIN)


def _metric(name: str, labels: dict) -> float:
    value = REGISTRY.get_sample_value(name, labels=labels)
    return value if value is not None else 0.0


# ---------------------------------------------------------------------------
# Transition grid
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(("status", "action"), list(itertools.product(S, A)))
def test_transition_grid(status: CourseStatus, action: CourseAction) -> None:
    manager, repo, _ = _manager()
    course = _seed(repo, status=status)

    expected = EXPECTED.get((status, action))
    if expected is None:
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            asyncio.run(_apply(manager, action, course.id))
        assert exc_info.value.from_status == status.value
        assert exc_info.value.attempted == action.value
        assert asyncio.run(repo.get(TENANT, course.id)) == course
    else:
        result = asyncio.run(_apply(manager, action, course.id))
        assert result.status is expected
        assert asyncio.run(repo.get(TENANT, course.id)).status is expected


def test_rejected_transition_is_counted() -> None:
    manager, repo, _ = _manager()
    course = _seed(repo)
    labels = {"action": "archive", "result": "rejected"}
    before = _metric("course_transitions_total", labels)

    with pytest.raises(InvalidStateTransitionError, match="cannot archive"):
        asyncio.run(manager.archive(course.id, TENANT, ADMIN))

    assert _metric("course_transitions_total", labels) - before == 1


def test_unknown_course_is_not_found() -> None:
    manager, _, _ = _manager()
    with pytest.raises(NotFoundError):
        asyncio.run(manager.approve("course-missing", TENANT, ADMIN))


def test_course_in_other_tenant_is_not_found() -> None:
    manager, repo, _ = _manager()
    course = _seed(repo, tenant_id="tenant-b")
    with pytest.raises(NotFoundError):
        asyncio.run(manager.get(course.id, TENANT))


# ---------------------------------------------------------------------------
# Authoring
# ---------------------------------------------------------------------------


def test_create_starts_in_draft_and_audits() -> None:
    manager, repo, audit = _manager()
    course = asyncio.run(
        manager.create(TENANT, AUTHOR, title="  Ladder Safety ", category="safety")
    )

    assert course.status is S.DRAFT
    assert course.title == "Ladder Safety"
    assert course.created_by == "author-1"
    assert asyncio.run(repo.get(TENANT, course.id)) == course
    assert [e.action for e in audit.for_resource(course.id)] == ["course.created"]


def test_create_requires_author_role() -> None:
    manager, _, _ = _manager()
    with pytest.raises(PermissionDeniedError):
        asyncio.run(manager.create(TENANT, LEARNER, title="x", category="y"))


@pytest.mark.parametrize("field", ["title", "category"])
def test_create_requires_title_and_category(field: str) -> None:
    manager, _, _ = _manager()
    values = {"title": "Course", "category": "safety", field: "   "}
    with pytest.raises(ValidationError, match=field):
        asyncio.run(manager.create(TENANT, AUTHOR, **values))


def test_create_rejects_unknown_completion_mode() -> None:
    manager, _, _ = _manager()
    with pytest.raises(ValidationError, match="completion_mode"):
        asyncio.run(
            manager.create(
                TENANT, AUTHOR, title="t", category="c", completion_mode="speedrun"
            )
        )


def test_update_by_creator() -> None:
    manager, repo, audit = _manager()
    course = _seed(repo)
    updated = asyncio.run(
        manager.update(
            course.id,
            TENANT,
            AUTHOR,
            description="New",
            completion_mode="modules-and-quizzes",
            minimum_score_for_completion=75,
        )
    )
    assert updated.description == "New"
    assert updated.completion_mode is CompletionMode.MODULES_AND_QUIZZES
    assert updated.minimum_score_for_completion == 75
    assert updated.status is S.DRAFT
    assert audit.events[-1].metadata["changes"] == [
        "completion_mode",
        "description",
        "minimum_score_for_completion",
    ]


def test_update_by_other_instructor_denied() -> None:
    manager, repo, _ = _manager()
    course = _seed(repo)
    with pytest.raises(PermissionDeniedError):
        asyncio.run(manager.update(course.id, TENANT, OTHER_AUTHOR, description="x"))


def test_update_by_privileged_role_allowed() -> None:
    manager, repo, _ = _manager()
    course = _seed(repo)
    updated = asyncio.run(manager.update(course.id, TENANT, ADMIN, total_xp=800))
    assert updated.total_xp == 800


@pytest.mark.parametrize("field", ["status", "reviewer_id", "created_by", "nonsense"])
def test_update_rejects_protected_or_unknown_fields(field: str) -> None:
    manager, repo, _ = _manager()
    course = _seed(repo)
    with pytest.raises(ValidationError, match=field):
        asyncio.run(manager.update(course.id, TENANT, AUTHOR, **{field: "x"}))
    assert asyncio.run(repo.get(TENANT, course.id)) == course


def test_update_rejects_out_of_range_score() -> None:
    manager, repo, _ = _manager()
    course = _seed(repo)
    with pytest.raises(ValidationError):
        asyncio.run(
            manager.update(course.id, TENANT, AUTHOR, minimum_score_for_certificate=120)
        )


@pytest.mark.parametrize(
    "field",
    [
        "description",
        "estimated_time",
        "modules",
        "completion_mode",
        "require_all_quizzes_passed",
        "certificate_enabled",
        "certificate_requires_passing_score",
    ],
)
def test_update_rejects_null_for_required_fields(field: str) -> None:
    manager, repo, audit = _manager()
    course = _seed(repo)
    with pytest.raises(ValidationError, match=field):
        asyncio.run(manager.update(course.id, TENANT, AUTHOR, **{field: None}))
    assert asyncio.run(repo.get(TENANT, course.id)) == course
    assert audit.events == []


def test_update_clears_optional_thresholds() -> None:
    manager, repo, _ = _manager()
    course = _seed(repo, minimum_score_for_completion=70, total_xp=800)
    updated = asyncio.run(
        manager.update(
            course.id,
            TENANT,
            AUTHOR,
            minimum_score_for_completion=None,
            minimum_score_for_certificate=None,
            total_xp=None,
        )
    )
    assert updated.minimum_score_for_completion is None
    assert updated.total_xp is None


class _OrderedCourseRepo(InMemoryCourseRepo):
    def __init__(self, calls: list[str]) -> None:
        super().__init__()
        self._calls = calls

    async def commit(self) -> None:
        self._calls.append("commit")


class _OrderedAuditLogger:
    def __init__(self, calls: list[str]) -> None:
        self._calls = calls

    async def log(self, event: AuditEvent) -> None:
        self._calls.append(event.action)


def test_writes_commit_before_audit() -> None:
    calls: list[str] = []
    repo = _OrderedCourseRepo(calls)
    manager = CourseLifecycleManager(
        repo, _OrderedAuditLogger(calls), clock=FakeClock()
    )

    async def run() -> None:
        course = await manager.create(TENANT, AUTHOR, title="t", category="c")
        await manager.update(course.id, TENANT, AUTHOR, description="d")
        await manager.submit_for_review(course.id, TENANT, AUTHOR)

    asyncio.run(run())
    assert calls == [
        "commit",
        "course.created",
        "commit",
        "course.updated",
        "commit",
        "course.submitted-for-review",
    ]


# ---------------------------------------------------------------------------
# Review workflow
# ---------------------------------------------------------------------------


def test_submit_requires_creator() -> None:
    manager, repo, _ = _manager()
    course = _seed(repo)
    with pytest.raises(PermissionDeniedError):
        asyncio.run(manager.submit_for_review(course.id, TENANT, OTHER_AUTHOR))
    assert asyncio.run(repo.get(TENANT, course.id)).status is S.DRAFT


def test_submit_stamps_submission_time() -> None:
    manager, repo, audit = _manager()
    course = _seed(repo)
    submitted = asyncio.run(manager.submit_for_review(course.id, TENANT, AUTHOR))
    assert submitted.submitted_for_review_at is not None
    assert audit.events[-1].action == "course.submitted-for-review"


@pytest.mark.parametrize(
    "call",
    [
        lambda m, cid: m.approve(cid, TENANT, AUTHOR),
        lambda m, cid: m.publish_directly(cid, TENANT, AUTHOR),
        lambda m, cid: m.reject(cid, TENANT, AUTHOR, "no"),
        lambda m, cid: m.request_changes(cid, TENANT, AUTHOR, "more"),
        lambda m, cid: m.archive(cid, TENANT, AUTHOR),
        lambda m, cid: m.unarchive(cid, TENANT, AUTHOR),
        lambda m, cid: m.delete(cid, TENANT, AUTHOR),
    ],
)
def test_review_actions_require_privileged_role(call) -> None:
    manager, repo, _ = _manager()
    course = _seed(repo, status=S.PENDING_REVIEW)
    with pytest.raises(PermissionDeniedError):
        asyncio.run(call(manager, course.id))
    assert asyncio.run(repo.get(TENANT, course.id)) == course


def test_approve_records_reviewer_and_publication() -> None:
    manager, repo, audit = _manager()
    course = _seed(repo, status=S.PENDING_REVIEW)
    approved = asyncio.run(manager.approve(course.id, TENANT, ADMIN, "great"))

    assert approved.reviewer_id == "admin-1"
    assert approved.review_comments == "great"
    assert approved.published_at is not None
    event = audit.events[-1]
    assert event.action == "course.approved"
    assert event.metadata["comments"] == "great"
    assert event.metadata["createdBy"] == "author-1"


def test_publish_directly_from_draft_bypasses_review() -> None:
    manager, repo, audit = _manager()
    course = _seed(repo)
    asyncio.run(manager.publish_directly(course.id, TENANT, ADMIN))

    event = audit.events[-1]
    assert event.action == "course.published-directly"
    assert event.metadata["bypassedReview"] is True
    assert event.metadata["previousStatus"] == "draft"


def test_publish_directly_from_pending_review() -> None:
    manager, repo, audit = _manager()
    course = _seed(repo, status=S.PENDING_REVIEW)
    asyncio.run(manager.publish_directly(course.id, TENANT, ADMIN))

    event = audit.events[-1]
    assert event.action == "course.published"
    assert event.metadata["bypassedReview"] is False


def test_reject_requires_comments() -> None:
    manager, repo, _ = _manager()
    course = _seed(repo, status=S.PENDING_REVIEW)
    with pytest.raises(ValidationError):
        asyncio.run(manager.reject(course.id, TENANT, ADMIN, "  "))
    assert asyncio.run(repo.get(TENANT, course.id)).status is S.PENDING_REVIEW


def test_reject_returns_to_draft_with_comments() -> None:
    manager, repo, audit = _manager()
    course = _seed(repo, status=S.PENDING_REVIEW, submitted_for_review_at=5)
    rejected = asyncio.run(manager.reject(course.id, TENANT, ADMIN, "too short"))

    assert rejected.status is S.DRAFT
    assert rejected.review_comments == "too short"
    assert rejected.submitted_for_review_at is None
    assert audit.events[-1].action == "course.rejected"


def test_request_changes_records_requested_changes() -> None:
    manager, repo, audit = _manager()
    course = _seed(repo, status=S.PENDING_REVIEW)
    result = asyncio.run(
        manager.request_changes(course.id, TENANT, ADMIN, "add a final quiz")
    )

    assert result.status is S.DRAFT
    assert result.requested_changes == "add a final quiz"
    assert audit.events[-1].metadata["requestedChanges"] == "add a final quiz"


def test_archive_then_unarchive() -> None:
    manager, repo, audit = _manager()
    course = _seed(repo, status=S.PUBLISHED)

    archived = asyncio.run(manager.archive(course.id, TENANT, ADMIN))
    assert archived.archived_at is not None

    restored = asyncio.run(manager.unarchive(course.id, TENANT, ADMIN))
    assert restored.status is S.PUBLISHED
    assert restored.archived_at is None
    assert [e.action for e in audit.events] == ["course.archived", "course.unarchived"]


def test_delete_from_draft_archives() -> None:
    manager, repo, audit = _manager()
    course = _seed(repo)
    deleted = asyncio.run(manager.delete(course.id, TENANT, ADMIN))

    assert deleted.status is S.ARCHIVED
    assert deleted.archived_at is not None
    event = audit.events[-1]
    assert event.action == "course.deleted"
    assert event.metadata["previousStatus"] == "draft"


def test_delete_of_archived_course_keeps_archive_time() -> None:
    manager, repo, _ = _manager()
    course = _seed(repo, status=S.ARCHIVED, archived_at=42)
    deleted = asyncio.run(manager.delete(course.id, TENANT, ADMIN))
    assert deleted.archived_at == 42


# ---------------------------------------------------------------------------
# Audit is best-effort
# ---------------------------------------------------------------------------


def test_audit_failure_does_not_fail_transition() -> None:
    manager, repo, _ = _manager(audit=FailingAuditLogger())
    course = _seed(repo, status=S.PENDING_REVIEW)
    before = _metric("side_effect_failures_total", {"effect": "audit"})

    approved = asyncio.run(manager.approve(course.id, TENANT, ADMIN))

    assert approved.status is S.PUBLISHED
    assert asyncio.run(repo.get(TENANT, course.id)).status is S.PUBLISHED
    assert _metric("side_effect_failures_total", {"effect": "audit"}) - before == 1


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


def test_list_filters_by_status_and_creator() -> None:
    manager, repo, _ = _manager()
    draft = _seed(repo, now=1)
    published = _seed(repo, status=S.PUBLISHED, now=2)
    _seed(repo, created_by="author-2", now=3)
    _seed(repo, tenant_id="tenant-b")

    everything = asyncio.run(manager.list(TENANT))
    assert len(everything) == 3

    only_published = asyncio.run(manager.list(TENANT, status=S.PUBLISHED))
    assert [c.id for c in only_published] == [published.id]

    mine = asyncio.run(manager.list(TENANT, created_by="author-1"))
    assert [c.id for c in mine] == [draft.id, published.id]
