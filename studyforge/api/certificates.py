"""Course completion certificates.

  POST /v1/courses/{course_id}/certificate   202: queued, or the existing one
  GET  /v1/courses/{course_id}/certificate   own certificate for the course
  GET  /v1/certificates                      own certificates
  GET  /v1/certificates/{certificate_id}     public verification

An ineligible request answers 422 naming the first unmet requirement.
"""

from __future__ import annotations

import datetime
from typing import Literal

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict

from studyforge.api.dependencies import CurrentUser, PipelineDep
from studyforge.api.errors import http_errors
from studyforge.api.ratelimit import require_rate_limit

router = APIRouter(tags=["certificates"])


class CertificateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    certificate_id: str
    course_id: str
    student_name: str
    course_name: str
    final_score: int
    issued_at: datetime.datetime


class CertificateRequestOut(BaseModel):
    status: Literal["issued", "queued"]
    certificate: CertificateOut | None = None


@router.post(
    "/v1/courses/{course_id}/certificate",
    response_model=CertificateRequestOut,
    status_code=status.HTTP_202_ACCEPTED,
)
async def request_certificate(
    course_id: str, principal: CurrentUser, pipeline: PipelineDep
) -> CertificateRequestOut:
    with http_errors():
        cert = await pipeline.certificates.request(
            course_id, principal.user_id, principal.name
        )
    if cert is None:
        return CertificateRequestOut(status="queued")
    return CertificateRequestOut(
        status="issued", certificate=CertificateOut.model_validate(cert)
    )


@router.get("/v1/courses/{course_id}/certificate", response_model=CertificateOut)
async def get_my_certificate(
    course_id: str, principal: CurrentUser, pipeline: PipelineDep
) -> CertificateOut:
    with http_errors():
        cert = await pipeline.certificates.get_for(course_id, principal.user_id)
    return CertificateOut.model_validate(cert)


@router.get("/v1/certificates", response_model=list[CertificateOut])
async def list_my_certificates(
    principal: CurrentUser, pipeline: PipelineDep
) -> list[CertificateOut]:
    with http_errors():
        certs = await pipeline.certificates.list_for_student(principal.user_id)
    return [CertificateOut.model_validate(c) for c in certs]


@router.get(
    "/v1/certificates/{certificate_id}",
    response_model=CertificateOut,
    dependencies=[Depends(require_rate_limit())],
)
async def verify_certificate(certificate_id: str, pipeline: PipelineDep) -> CertificateOut:
    with http_errors():
        cert = await pipeline.certificates.verify(certificate_id)
    return CertificateOut.model_validate(cert)
