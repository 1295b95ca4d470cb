"""Course authoring and review endpoints.

    POST   /v1/courses                         create (draft)
    GET    /v1/courses                         list, filtered by status/creator/reviewer
    GET    /v1/courses/{id}
    PATCH  /v1/courses/{id}                    edit content and completion policy
    DELETE /v1/courses/{id}                    soft delete (→ archived)
    POST   /v1/courses/{id}/submit             draft → pending-review
    POST   /v1/courses/{id}/approve            pending-review → published
    POST   /v1/courses/{id}/publish            draft|pending-review → published
    POST   /v1/courses/{id}/reject             pending-review → draft
    POST   /v1/courses/{id}/request-changes    pending-review → draft
    POST   /v1/courses/{id}/archive            published → archived
    POST   /v1/courses/{id}/unarchive          archived → published

Role and state checks live in CourseLifecycleManager; this module only
maps HTTP to it.  Every route is scoped to the caller's tenant.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict

from course_core.api.dependencies import get_lifecycle, require_principal
from course_core.api.errors import to_http_exception
from course_core.core.errors import CourseCoreError
from course_core.models.course import Course, CourseModule, CourseStatus
from course_core.models.principal import Principal
from course_core.services.lifecycle import CourseLifecycleManager

router = APIRouter(prefix="/v1/courses", tags=["courses"])

Lifecycle = Annotated[CourseLifecycleManager, Depends(get_lifecycle)]
Caller = Annotated[Principal, Depends(require_principal)]


class CourseModuleIO(BaseModel):
    id: str
    title: str
    type: str = "text"
    order: int = 0


class CourseCreateIn(BaseModel):
    title: str
    category: str
    description: str = ""
    estimated_time: int = 0
    modules: list[CourseModuleIO] = []
    completion_mode: str = "modules-only"
    require_all_quizzes_passed: bool = False
    minimum_score_for_completion: float | None = None
    certificate_enabled: bool = False
    certificate_requires_passing_score: bool = False
    minimum_score_for_certificate: float | None = None
    total_xp: int | None = None


class CourseUpdateIn(BaseModel):
    # Status and review fields are not accepted here; they change only
    # through the transition endpoints.
    model_config = ConfigDict(extra="forbid")

    title: str | None = None
    category: str | None = None
    description: str | None = None
    estimated_time: int | None = None
    modules: list[CourseModuleIO] | None = None
    completion_mode: str | None = None
    require_all_quizzes_passed: bool | None = None
    minimum_score_for_completion: float | None = None
    certificate_enabled: bool | None = None
    certificate_requires_passing_score: bool | None = None
    minimum_score_for_certificate: float | None = None
    total_xp: int | None = None


class CourseOut(BaseModel):
    id: str
    tenant_id: str
    title: str
    description: str
    category: str
    estimated_time: int
    modules: list[CourseModuleIO]
    status: str
    created_by: str
    created_at: int
    updated_at: int
    reviewer_id: str | None
    review_comments: str | None
    requested_changes: str | None
    submitted_for_review_at: int | None
    published_at: int | None
    archived_at: int | None
    completion_mode: str
    require_all_quizzes_passed: bool
    minimum_score_for_completion: float | None
    certificate_enabled: bool
    certificate_requires_passing_score: bool
    minimum_score_for_certificate: float | None
    total_xp: int | None


class ApproveIn(BaseModel):
    comments: str | None = None


class RejectIn(BaseModel):
    comments: str


class RequestChangesIn(BaseModel):
    requested_changes: str


def _to_out(course: Course) -> CourseOut:
    return CourseOut(
        id=course.id,
        tenant_id=course.tenant_id,
        title=course.title,
        description=course.description,
        category=course.category,
        estimated_time=course.estimated_time,
        modules=[
            CourseModuleIO(id=m.id, title=m.title, type=m.type, order=m.order)
            for m in course.modules
        ],
        status=course.status.value,
        created_by=course.created_by,
        created_at=course.created_at,
        updated_at=course.updated_at,
        reviewer_id=course.reviewer_id,
        review_comments=course.review_comments,
        requested_changes=course.requested_changes,
        submitted_for_review_at=course.submitted_for_review_at,
        published_at=course.published_at,
        archived_at=course.archived_at,
        completion_mode=course.completion_mode.value,
        require_all_quizzes_passed=course.require_all_quizzes_passed,
        minimum_score_for_completion=course.minimum_score_for_completion,
        certificate_enabled=course.certificate_enabled,
        certificate_requires_passing_score=course.certificate_requires_passing_score,
        minimum_score_for_certificate=course.minimum_score_for_certificate,
        total_xp=course.total_xp,
    )


def _modules(items: list[CourseModuleIO]) -> tuple[CourseModule, ...]:
    return tuple(
        CourseModule(id=m.id, title=m.title, type=m.type, order=m.order) for m in items
    )


# ---------------------------------------------------------------------------
# Authoring
# ---------------------------------------------------------------------------


@router.post("", response_model=CourseOut, status_code=status.HTTP_201_CREATED)
async def create_course(
    body: CourseCreateIn, principal: Caller, lifecycle: Lifecycle
) -> CourseOut:
    fields = body.model_dump(exclude={"title", "category", "modules"})
    try:
        course = await lifecycle.create(
            principal.tenant_id,
            principal,
            title=body.title,
            category=body.category,
            modules=_modules(body.modules),
            **fields,
        )
    except CourseCoreError as e:
        raise to_http_exception(e) from None
    return _to_out(course)


@router.get("", response_model=list[CourseOut])
async def list_courses(
    principal: Caller,
    lifecycle: Lifecycle,
    status_filter: Annotated[CourseStatus | None, Query(alias="status")] = None,
    created_by: str | None = None,
    reviewer_id: str | None = None,
) -> list[CourseOut]:
    courses = await lifecycle.list(
        principal.tenant_id,
        status=status_filter,
        created_by=created_by,
        reviewer_id=reviewer_id,
    )
    return [_to_out(c) for c in courses]


@router.get("/{course_id}", response_model=CourseOut)
async def get_course(
    course_id: str, principal: Caller, lifecycle: Lifecycle
) -> CourseOut:
    try:
        course = await lifecycle.get(course_id, principal.tenant_id)
    except CourseCoreError as e:
        raise to_http_exception(e) from None
    return _to_out(course)


@router.patch("/{course_id}", response_model=CourseOut)
async def update_course(
    course_id: str, body: CourseUpdateIn, principal: Caller, lifecycle: Lifecycle
) -> CourseOut:
    changes = body.model_dump(exclude_unset=True, exclude={"modules"})
    if "modules" in body.model_fields_set:
        changes["modules"] = (
            _modules(body.modules) if body.modules is not None else None
        )
    try:
        course = await lifecycle.update(
            course_id, principal.tenant_id, principal, **changes
        )
    except CourseCoreError as e:
        raise to_http_exception(e) from None
    return _to_out(course)


@router.delete("/{course_id}", response_model=CourseOut)
async def delete_course(
    course_id: str, principal: Caller, lifecycle: Lifecycle
) -> CourseOut:
    try:
        course = await lifecycle.delete(course_id, principal.tenant_id, principal)
    except CourseCoreError as e:
        raise to_http_exception(e) from None
    return _to_out(course)


# ---------------------------------------------------------------------------
# Review workflow
# ---------------------------------------------------------------------------


@router.post("/{course_id}/submit", response_model=CourseOut)
async def submit_for_review(
    course_id: str, principal: Caller, lifecycle: Lifecycle
) -> CourseOut:
    try:
        course = await lifecycle.submit_for_review(
            course_id, principal.tenant_id, principal
        )
    except CourseCoreError as e:
        raise to_http_exception(e) from None
    return _to_out(course)


@router.post("/{course_id}/approve", response_model=CourseOut)
async def approve_course(
    course_id: str,
    principal: Caller,
    lifecycle: Lifecycle,
    body: ApproveIn | None = None,
) -> CourseOut:
    try:
        course = await lifecycle.approve(
            course_id,
            principal.tenant_id,
            principal,
            comments=body.comments if body else None,
        )
    except CourseCoreError as e:
        raise to_http_exception(e) from None
    return _to_out(course)


@router.post("/{course_id}/publish", response_model=CourseOut)
async def publish_course(
    course_id: str, principal: Caller, lifecycle: Lifecycle
) -> CourseOut:
    try:
        course = await lifecycle.publish_directly(
            course_id, principal.tenant_id, principal
        )
    except CourseCoreError as e:
        raise to_http_exception(e) from None
    return _to_out(course)


@router.post("/{course_id}/reject", response_model=CourseOut)
async def reject_course(
    course_id: str, body: RejectIn, principal: Caller, lifecycle: Lifecycle
) -> CourseOut:
    try:
        course = await lifecycle.reject(
            course_id, principal.tenant_id, principal, body.comments
        )
    except CourseCoreError as e:
        raise to_http_exception(e) from None
    return _to_out(course)


@router.post("/{course_id}/request-changes", response_model=CourseOut)
async def request_changes(
    course_id: str, body: RequestChangesIn, principal: Caller, lifecycle: Lifecycle
) -> CourseOut:
    try:
        course = await lifecycle.request_changes(
            course_id, principal.tenant_id, principal, body.requested_changes
        )
    except CourseCoreError as e:
        raise to_http_exception(e) from None
    return _to_out(course)


@router.post("/{course_id}/archive", response_model=CourseOut)
async def archive_course(
    course_id: str, principal: Caller, lifecycle: Lifecycle
) -> CourseOut:
    try:
        course = await lifecycle.archive(course_id, principal.tenant_id, principal)
    except CourseCoreError as e:
        raise to_http_exception(e) from None
    return _to_out(course)


@router.post("/{course_id}/unarchive", response_model=CourseOut)
async def unarchive_course(
    course_id: str, principal: Caller, lifecycle: Lifecycle
) -> CourseOut:
    try:
        course = await lifecycle.unarchive(course_id, principal.tenant_id, principal)
    except CourseCoreError as e:
        raise to_http_exception(e) from None
    return _to_out(course)
