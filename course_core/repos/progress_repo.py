from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Protocol

from course_core.core.errors import ConcurrencyConflictError
from course_core.models.progress import ProgressRecord


class ProgressRepo(Protocol):
    async def get(
        self, tenant_id: str, user_id: str, course_id: str
    ) -> ProgressRecord | None: ...

    async def upsert(
        self, record: ProgressRecord, expected_version: int
    ) -> ProgressRecord:
        """Write `record` if the stored version still equals `expected_version`.

        expected_version == 0 means "must not exist yet".  Returns the
        stored record with its version bumped; raises
        ConcurrencyConflictError when another writer got there first.
        """
        ...

    async def list_for_user(self, tenant_id: str, user_id: str) -> list[ProgressRecord]: ...


class InMemoryProgressRepo:
    def __init__(self) -> None:
        self._store: dict[tuple[str, str, str], ProgressRecord] = {}

    async def get(
        self, tenant_id: str, user_id: str, course_id: str
    ) -> ProgressRecord | None:
        record = self._store.get((tenant_id, user_id, course_id))
        await asyncio.sleep(0)
        return record

    async def upsert(
        self, record: ProgressRecord, expected_version: int
    ) -> ProgressRecord:
        # No await between the check and the write: on a single event
        # loop this is the atomic compare-and-swap.
        current = self._store.get(record.key)
        current_version = current.version if current is not None else 0
        if current_version != expected_version:
            raise ConcurrencyConflictError(record.id, expected_version)
        stored = replace(record, version=expected_version + 1)
        self._store[record.key] = stored
        return stored

    async def list_for_user(self, tenant_id: str, user_id: str) -> list[ProgressRecord]:
        records = [
            r
            for (t, u, _), r in self._store.items()
            if t == tenant_id and u == user_id
        ]
        return sorted(records, key=lambda r: r.last_accessed_at, reverse=True)
