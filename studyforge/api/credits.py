"""Credit balance, history and admin adjustments.

  GET  /v1/credits                          own balance (cached, SHORT TTL)
  GET  /v1/credits/history?limit=50         own transactions, newest first
  POST /v1/admin/credits/grant              admin grant (purchase, bonus, ...)
  GET  /v1/admin/credits/{email}/reconcile  replay the log against the balance
  PUT  /v1/admin/users/{email}/membership   toggle membership
"""

from __future__ import annotations

import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from studyforge.api.dependencies import AdminUser, CurrentUser, PipelineDep
from studyforge.api.errors import http_errors
from studyforge.api.ratelimit import require_rate_limit
from studyforge.models.ledger import CreditCategory, TransactionType

router = APIRouter(tags=["credits"])


class BalanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_email: str
    credits: int
    total_credits_used: int
    is_member: bool


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    amount: int
    type: TransactionType
    category: CreditCategory
    reason: str
    balance_before: int
    balance_after: int
    course_id: str | None
    created_by: str | None
    created_at: datetime.datetime


class GrantIn(BaseModel):
    email: str
    amount: int = Field(gt=0)
    reason: str = Field(min_length=1, max_length=500)
    category: CreditCategory = CreditCategory.ADMIN_ADJUSTMENT


class ReconciliationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_email: str
    stored_balance: int
    replayed_balance: int
    transaction_count: int
    chain_breaks: list[str]
    consistent: bool


class MembershipIn(BaseModel):
    is_member: bool


@router.get(
    "/v1/credits",
    response_model=BalanceOut,
    dependencies=[Depends(require_rate_limit())],
)
async def get_balance(principal: CurrentUser, pipeline: PipelineDep) -> BalanceOut:
    with http_errors():
        balance = await pipeline.ledger.get_balance(principal.user_id)
    return BalanceOut.model_validate(balance)


@router.get(
    "/v1/credits/history",
    response_model=list[TransactionOut],
    dependencies=[Depends(require_rate_limit())],
)
async def get_history(
    principal: CurrentUser,
    pipeline: PipelineDep,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
) -> list[TransactionOut]:
    with http_errors():
        txns = await pipeline.ledger.get_history(principal.user_id, limit=limit)
    return [TransactionOut.model_validate(t) for t in txns]


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.post("/v1/admin/credits/grant", response_model=TransactionOut)
async def grant_credits(
    body: GrantIn, admin: AdminUser, pipeline: PipelineDep
) -> TransactionOut:
    with http_errors():
        txn = await pipeline.ledger.grant(
            body.email,
            body.amount,
            body.reason,
            category=body.category,
            created_by=admin.user_id,
        )
    return TransactionOut.model_validate(txn)


@router.get("/v1/admin/credits/{email}/reconcile", response_model=ReconciliationOut)
async def reconcile(email: str, _admin: AdminUser, pipeline: PipelineDep) -> ReconciliationOut:
    with http_errors():
        report = await pipeline.ledger.reconcile(email)
    return ReconciliationOut.model_validate(report)


@router.put("/v1/admin/users/{email}/membership", response_model=BalanceOut)
async def set_membership(
    email: str, body: MembershipIn, _admin: AdminUser, pipeline: PipelineDep
) -> BalanceOut:
    with http_errors():
        await pipeline.ledger.set_membership(email, body.is_member)
        balance = await pipeline.ledger.get_balance(email)
    return BalanceOut.model_validate(balance)
