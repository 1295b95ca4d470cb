"""PostgreSQL implementation of ProgressRepo.

The compare-and-swap is a single conditional statement:

    UPDATE progress_records SET ..., version = N + 1
     WHERE tenant_id = ? AND user_id = ? AND course_id = ? AND version = N

rowcount 0 means another writer moved the version first.  A first write
(expected version 0) is an INSERT; losing that race surfaces as a
primary-key IntegrityError, which is the same conflict.

Each write runs in its own short transaction from the session factory,
so a committed ledger write is durable before the ledger moves on to
its side effects, whatever happens to the surrounding request.
"""

from __future__ import annotations

from dataclasses import replace

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from course_core.core.errors import ConcurrencyConflictError
from course_core.db.tables import ProgressRow
from course_core.models.documents import progress_from_document, progress_to_document
from course_core.models.progress import ProgressRecord


class PgProgressRepo:
    """Satisfies the ProgressRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(
        self, tenant_id: str, user_id: str, course_id: str
    ) -> ProgressRecord | None:
        stmt = select(ProgressRow.document, ProgressRow.version).where(
            ProgressRow.tenant_id == tenant_id,
            ProgressRow.user_id == user_id,
            ProgressRow.course_id == course_id,
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).one_or_none()
        if row is None:
            return None
        return _row_to_record(row.document, row.version)

    async def upsert(
        self, record: ProgressRecord, expected_version: int
    ) -> ProgressRecord:
        stored = replace(record, version=expected_version + 1)
        document = progress_to_document(stored)

        async with self._session_factory() as session:
            try:
                async with session.begin():
                    if expected_version == 0:
                        await session.execute(
                            insert(ProgressRow).values(
                                tenant_id=record.tenant_id,
                                user_id=record.user_id,
                                course_id=record.course_id,
                                version=stored.version,
                                last_accessed_at=record.last_accessed_at,
                                document=document,
                            )
                        )
                    else:
                        result = await session.execute(
                            update(ProgressRow)
                            .where(
                                ProgressRow.tenant_id == record.tenant_id,
                                ProgressRow.user_id == record.user_id,
                                ProgressRow.course_id == record.course_id,
                                ProgressRow.version == expected_version,
                            )
                            .values(
                                version=stored.version,
                                last_accessed_at=record.last_accessed_at,
                                document=document,
                            )
                        )
                        if result.rowcount == 0:
                            raise ConcurrencyConflictError(record.id, expected_version)
            except IntegrityError:
                raise ConcurrencyConflictError(record.id, expected_version) from None
        return stored

    async def list_for_user(self, tenant_id: str, user_id: str) -> list[ProgressRecord]:
        stmt = (
            select(ProgressRow.document, ProgressRow.version)
            .where(ProgressRow.tenant_id == tenant_id, ProgressRow.user_id == user_id)
            .order_by(ProgressRow.last_accessed_at.desc())
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return [_row_to_record(r.document, r.version) for r in rows]


def _row_to_record(document: dict, version: int) -> ProgressRecord:
    # The column is authoritative for the version.
    return replace(progress_from_document(document), version=version)
