"""SQLAlchemy table definitions.

Courses and progress records are stored as JSONB documents (the shapes
in course_core/models/documents.py).  The columns next to the document
are the ones we filter or lock on: tenant scoping, status, creator,
reviewer, and the optimistic-concurrency version.
"""

from __future__ import annotations

from sqlalchemy import Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from course_core.db.engine import Base


class CourseRow(Base):
    __tablename__ = "courses"

    tenant_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="draft"
    )  # draft|pending-review|published|archived
    created_by: Mapped[str] = mapped_column(String(128), nullable=False)
    reviewer_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[int] = mapped_column(Integer, nullable=False)
    document: Mapped[dict] = mapped_column(JSONB, nullable=False)

    __table_args__ = (Index("ix_courses_tenant_status", "tenant_id", "status"),)


class ProgressRow(Base):
    __tablename__ = "progress_records"

    tenant_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    course_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    last_accessed_at: Mapped[int] = mapped_column(Integer, nullable=False)
    document: Mapped[dict] = mapped_column(JSONB, nullable=False)

    __table_args__ = (
        Index("ix_progress_records_tenant_course", "tenant_id", "course_id"),
    )
