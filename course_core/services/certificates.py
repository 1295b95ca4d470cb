from __future__ import annotations

import datetime
import logging
from typing import Protocol, runtime_checkable

from course_core.models.credential import Certificate

logger = logging.getLogger(__name__)


@runtime_checkable
class CertificateIssuer(Protocol):
    async def create_certificate(
        self,
        tenant_id: str,
        user_id: str,
        course_id: str,
        course_title: str,
        user_full_name: str,
    ) -> Certificate: ...


class InMemoryCertificateIssuer:
    """Issues certificates into an in-process store.

    Issuance is idempotent per (tenant, user, course): asking twice
    returns the certificate issued the first time.
    """

    def __init__(self) -> None:
        self._by_id: dict[str, Certificate] = {}
        self._by_owner: dict[tuple[str, str, str], Certificate] = {}

    async def create_certificate(
        self,
        tenant_id: str,
        user_id: str,
        course_id: str,
        course_title: str,
        user_full_name: str,
    ) -> Certificate:
        key = (tenant_id, user_id, course_id)
        existing = self._by_owner.get(key)
        if existing is not None:
            return existing

        cert = Certificate.new(
            tenant_id=tenant_id,
            user_id=user_id,
            course_id=course_id,
            course_title=course_title,
            user_full_name=user_full_name,
            completion_date=int(datetime.datetime.now(datetime.UTC).timestamp()),
        )
        self._by_id[cert.id] = cert
        self._by_owner[key] = cert
        logger.info(
            "Issued certificate=%s code=%s",
            cert.id,
            cert.certificate_code,
            extra={"tenant_id": tenant_id, "user_id": user_id, "course_id": course_id},
        )
        return cert

    def get(self, certificate_id: str) -> Certificate | None:
        return self._by_id.get(certificate_id)

    def get_by_code(self, code: str) -> Certificate | None:
        return next(
            (c for c in self._by_id.values() if c.certificate_code == code), None
        )
