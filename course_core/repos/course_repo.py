from __future__ import annotations

import asyncio
from typing import Protocol

from course_core.models.course import Course, CourseStatus


class CourseRepo(Protocol):
    async def get(self, tenant_id: str, course_id: str) -> Course | None: ...
    async def create(self, course: Course) -> None: ...
    async def replace(self, course_id: str, tenant_id: str, course: Course) -> None: ...
    async def list_by_tenant(
        self,
        tenant_id: str,
        *,
        status: CourseStatus | None = None,
        created_by: str | None = None,
        reviewer_id: str | None = None,
    ) -> list[Course]: ...
    async def commit(self) -> None:
        """Make pending writes durable before anything downstream hears of them."""
        ...


class InMemoryCourseRepo:
    def __init__(self) -> None:
        self._store: dict[tuple[str, str], Course] = {}

    async def get(self, tenant_id: str, course_id: str) -> Course | None:
        course = self._store.get((tenant_id, course_id))
        # Yield like a network round-trip would, so interleavings under
        # asyncio.gather match what a real store produces.
        await asyncio.sleep(0)
        return course

    async def create(self, course: Course) -> None:
        key = (course.tenant_id, course.id)
        if key in self._store:
            raise ValueError("course already exists")
        self._store[key] = course

    async def replace(self, course_id: str, tenant_id: str, course: Course) -> None:
        key = (tenant_id, course_id)
        if key not in self._store:
            raise KeyError("course not found")
        self._store[key] = course

    async def commit(self) -> None:
        return None

    async def list_by_tenant(
        self,
        tenant_id: str,
        *,
        status: CourseStatus | None = None,
        created_by: str | None = None,
        reviewer_id: str | None = None,
    ) -> list[Course]:
        courses = [c for (t, _), c in self._store.items() if t == tenant_id]
        if status is not None:
            courses = [c for c in courses if c.status == status]
        if created_by is not None:
            courses = [c for c in courses if c.created_by == created_by]
        if reviewer_id is not None:
            courses = [c for c in courses if c.reviewer_id == reviewer_id]
        return sorted(courses, key=lambda c: c.created_at)
