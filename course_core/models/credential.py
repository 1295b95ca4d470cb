from __future__ import annotations

import secrets
from dataclasses import dataclass
from uuid import uuid4

# Unambiguous alphabet for printed verification codes (no 0/O, 1/I/L).
_CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"


def generate_certificate_code(length: int = 12) -> str:
    raw = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(length))
    return "-".join(raw[i : i + 4] for i in range(0, length, 4))


@dataclass(frozen=True, slots=True)
class Certificate:
    """Course-completion certificate issued to a learner."""

    id: str
    tenant_id: str
    user_id: str
    course_id: str
    course_title: str
    user_full_name: str
    certificate_code: str
    completion_date: int
    issued_by: str | None = None

    @staticmethod
    def new(
        *,
        tenant_id: str,
        user_id: str,
        course_id: str,
        course_title: str,
        user_full_name: str,
        completion_date: int,
        issued_by: str | None = None,
    ) -> Certificate:
        return Certificate(
            id=f"cert-{uuid4()}",
            tenant_id=tenant_id,
            user_id=user_id,
            course_id=course_id,
            course_title=course_title,
            user_full_name=user_full_name,
            certificate_code=generate_certificate_code(),
            completion_date=completion_date,
            issued_by=issued_by,
        )
