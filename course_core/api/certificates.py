"""Public certificate verification.

    GET /v1/certificates/{code}/verify

The verification code printed on a certificate is the lookup key.  No
identity headers are required: anyone holding a certificate can check
that it is genuine.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from course_core.api.dependencies import certificate_issuer

router = APIRouter(prefix="/v1/certificates", tags=["certificates"])


class CertificateVerifyOut(BaseModel):
    certificate_code: str
    course_id: str
    course_title: str
    user_full_name: str
    completion_date: int
    valid: bool


@router.get("/{code}/verify", response_model=CertificateVerifyOut)
def verify_certificate(code: str) -> CertificateVerifyOut:
    cert = certificate_issuer.get_by_code(code.upper())
    if cert is None:
        raise HTTPException(status_code=404, detail="certificate not found")
    return CertificateVerifyOut(
        certificate_code=cert.certificate_code,
        course_id=cert.course_id,
        course_title=cert.course_title,
        user_full_name=cert.user_full_name,
        completion_date=cert.completion_date,
        valid=True,
    )
