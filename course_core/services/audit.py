from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from course_core.models.audit import AuditEvent

logger = logging.getLogger(__name__)


@runtime_checkable
class AuditLogger(Protocol):
    async def log(self, event: AuditEvent) -> None: ...


class InMemoryAuditLogger:
    """Keeps audit events in process and mirrors them to the `audit` logger.

    Stands in for the platform's audit store; the events list is what
    tests assert against.
    """

    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    async def log(self, event: AuditEvent) -> None:
        self.events.append(event)
        logger.info(
            "audit action=%s resource=%s actor=%s",
            event.action,
            event.resource_id,
            event.actor_id,
            extra={"tenant_id": event.tenant_id, "actor_id": event.actor_id},
        )

    def for_resource(self, resource_id: str) -> list[AuditEvent]:
        return [e for e in self.events if e.resource_id == resource_id]
