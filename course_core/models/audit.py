from __future__ import annotations

from dataclasses import dataclass, field
from uuid import uuid4


@dataclass(frozen=True, slots=True)
class AuditEvent:
    id: str
    tenant_id: str
    actor_id: str
    action: str  # course.created|course.approved|progress.attempt-completed|...
    resource_id: str
    occurred_at: int
    metadata: dict = field(default_factory=dict)

    @staticmethod
    def new(
        *,
        tenant_id: str,
        actor_id: str,
        action: str,
        resource_id: str,
        occurred_at: int,
        metadata: dict | None = None,
    ) -> AuditEvent:
        return AuditEvent(
            id=str(uuid4()),
            tenant_id=tenant_id,
            actor_id=actor_id,
            action=action,
            resource_id=resource_id,
            occurred_at=occurred_at,
            metadata=dict(metadata or {}),
        )
