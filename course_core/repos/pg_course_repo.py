"""PostgreSQL implementation of CourseRepo."""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from course_core.db.tables import CourseRow
from course_core.models.course import Course, CourseStatus
from course_core.models.documents import course_from_document, course_to_document


class PgCourseRepo:
    """Satisfies the CourseRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, tenant_id: str, course_id: str) -> Course | None:
        stmt = select(CourseRow.document).where(
            CourseRow.tenant_id == tenant_id, CourseRow.id == course_id
        )
        document = (await self._session.execute(stmt)).scalar_one_or_none()
        if document is None:
            return None
        return course_from_document(document)

    async def create(self, course: Course) -> None:
        self._session.add(_course_to_row(course))
        await self._session.flush()

    async def replace(self, course_id: str, tenant_id: str, course: Course) -> None:
        row = _course_to_row(course)
        stmt = (
            update(CourseRow)
            .where(CourseRow.tenant_id == tenant_id, CourseRow.id == course_id)
            .values(
                status=row.status,
                reviewer_id=row.reviewer_id,
                updated_at=row.updated_at,
                document=row.document,
            )
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise KeyError((tenant_id, course_id))

    async def commit(self) -> None:
        await self._session.commit()

    async def list_by_tenant(
        self,
        tenant_id: str,
        *,
        status: CourseStatus | None = None,
        created_by: str | None = None,
        reviewer_id: str | None = None,
    ) -> list[Course]:
        stmt = select(CourseRow.document).where(CourseRow.tenant_id == tenant_id)
        if status is not None:
            stmt = stmt.where(CourseRow.status == status.value)
        if created_by is not None:
            stmt = stmt.where(CourseRow.created_by == created_by)
        if reviewer_id is not None:
            stmt = stmt.where(CourseRow.reviewer_id == reviewer_id)
        stmt = stmt.order_by(CourseRow.created_at)
        documents = (await self._session.execute(stmt)).scalars().all()
        return [course_from_document(d) for d in documents]


def _course_to_row(course: Course) -> CourseRow:
    return CourseRow(
        tenant_id=course.tenant_id,
        id=course.id,
        status=course.status.value,
        created_by=course.created_by,
        reviewer_id=course.reviewer_id,
        created_at=course.created_at,
        updated_at=course.updated_at,
        document=course_to_document(course),
    )
