from __future__ import annotations

from dataclasses import dataclass

# Roles that may review, publish, archive and delete any course in their tenant.
PRIVILEGED_ROLES = frozenset({"super-admin", "tenant-admin", "content-manager"})

# Roles that may author courses.
AUTHOR_ROLES = PRIVILEGED_ROLES | {"instructor"}


@dataclass(frozen=True, slots=True)
class Principal:
    """Pre-validated caller identity.

    The gateway in front of this service authenticates the user and
    forwards who they are; the core trusts these fields and uses them
    for ownership and role checks only.

        user_id:   the acting user
        tenant_id: tenant the request is scoped to
        role:      platform role (super-admin, tenant-admin,
                   content-manager, instructor, student, ...)
        full_name: display name, printed on certificates
    """

    user_id: str
    tenant_id: str
    role: str
    full_name: str | None = None

    def has_any_role(self, roles: set[str] | frozenset[str]) -> bool:
        return self.role in roles

    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES

    def can_author(self) -> bool:
        return self.role in AUTHOR_ROLES

    @property
    def display_name(self) -> str:
        return self.full_name or self.user_id
