"""User provisioning.

  POST /v1/users      202: queue user.create for the caller's identity
  GET  /v1/users/me   the provisioned user (404 until the job has run)

Sign-in happens at the identity provider.  The first authenticated call
from the frontend posts here; the job creates the row with the welcome
credits.  Repeating the call is harmless, provisioning is idempotent.
"""

from __future__ import annotations

import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict

from studyforge.api.dependencies import CurrentUser, PipelineDep
from studyforge.api.errors import http_errors
from studyforge.api.ratelimit import require_rate_limit

router = APIRouter(prefix="/v1/users", tags=["users"])


class ProvisionIn(BaseModel):
    name: str = ""


class AcceptedOut(BaseModel):
    task_id: str


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    email: str
    name: str
    credits: int
    total_credits_used: int
    is_member: bool
    created_at: datetime.datetime


@router.post(
    "",
    response_model=AcceptedOut,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_rate_limit())],
)
async def provision_user(
    body: ProvisionIn, principal: CurrentUser, pipeline: PipelineDep
) -> AcceptedOut:
    with http_errors():
        task_id = await pipeline.users.request_provisioning(
            principal.user_id, body.name or principal.name
        )
    return AcceptedOut(task_id=task_id)


@router.get("/me", response_model=UserOut)
async def get_me(principal: CurrentUser, pipeline: PipelineDep) -> UserOut:
    with http_errors():
        user = await pipeline.ledger.get_user(principal.user_id)
    return UserOut.model_validate(user)
