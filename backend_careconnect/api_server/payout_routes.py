"""
FastAPI routers: caregiver withdrawals and job disputes.

POST/GET /wallets/withdrawals, POST /wallets/withdrawals/{id}/cancel
GET /admin/withdrawals, POST /admin/withdrawals/{id}/review|approve|reject|mark-paid
POST /disputes, GET /disputes?job_id=, GET /disputes/{id}
POST /admin/disputes/{id}/review|settle
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from backend_careconnect.api_server.deps import require_admin, require_policy
from backend_careconnect.database.models import User
from backend_careconnect.disputes import service as disputes
from backend_careconnect.wallet import withdrawals

withdrawal_router = APIRouter(prefix="/wallets/withdrawals", tags=["withdrawals"])
admin_withdrawal_router = APIRouter(prefix="/admin/withdrawals", tags=["withdrawals"])
dispute_router = APIRouter(prefix="/disputes", tags=["disputes"])
admin_dispute_router = APIRouter(prefix="/admin/disputes", tags=["disputes"])


def _ok(data: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": True, "data": data})


class WithdrawalRequestBody(BaseModel):
    amount: int = Field(..., gt=0)
    bank_account_id: int


class RejectWithdrawalBody(BaseModel):
    reason: str | None = Field(None, max_length=1000)


class MarkPaidBody(BaseModel):
    payout_reference: str | None = Field(None, max_length=128)


class OpenDisputeBody(BaseModel):
    job_id: str
    reason: str = Field(..., min_length=1, max_length=2000)


class SettleDisputeBody(BaseModel):
    refund_amount: int = Field(0, ge=0)
    payout_amount: int = Field(0, ge=0)
    resolution: str | None = Field(None, max_length=2000)
    idempotency_key: str | None = Field(None, max_length=128)


@withdrawal_router.post("")
def request_withdrawal(body: WithdrawalRequestBody, user: User = Depends(require_policy("wallet:withdraw"))):
    return _ok(withdrawals.request_withdrawal(user.id, body.amount, body.bank_account_id), status_code=201)


@withdrawal_router.get("")
def my_withdrawals(
    status: str | None = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: User = Depends(require_policy("wallet:withdrawals")),
):
    return _ok(withdrawals.list_withdrawals(user.id, status, limit=limit, offset=offset))


@withdrawal_router.post("/{withdrawal_id}/cancel")
def cancel_withdrawal(withdrawal_id: str, user: User = Depends(require_policy("wallet:withdraw:cancel"))):
    return _ok(withdrawals.cancel_withdrawal(withdrawal_id, user.id))


@admin_withdrawal_router.get("")
def all_withdrawals(
    status: str | None = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: User = Depends(require_admin),
):
    return _ok(withdrawals.list_withdrawals(None, status, limit=limit, offset=offset))


@admin_withdrawal_router.post("/{withdrawal_id}/review")
def review_withdrawal(withdrawal_id: str, user: User = Depends(require_admin)):
    return _ok(withdrawals.review_withdrawal(withdrawal_id, user.id))


@admin_withdrawal_router.post("/{withdrawal_id}/approve")
def approve_withdrawal(withdrawal_id: str, user: User = Depends(require_admin)):
    return _ok(withdrawals.approve_withdrawal(withdrawal_id, user.id))


@admin_withdrawal_router.post("/{withdrawal_id}/reject")
def reject_withdrawal(withdrawal_id: str, body: RejectWithdrawalBody | None = None, user: User = Depends(require_admin)):
    reason = body.reason if body else None
    return _ok(withdrawals.reject_withdrawal(withdrawal_id, user.id, reason))


@admin_withdrawal_router.post("/{withdrawal_id}/mark-paid")
def mark_withdrawal_paid(withdrawal_id: str, body: MarkPaidBody | None = None, user: User = Depends(require_admin)):
    reference = body.payout_reference if body else None
    return _ok(withdrawals.mark_withdrawal_paid(withdrawal_id, user.id, reference))


@dispute_router.post("")
def open_dispute(body: OpenDisputeBody, user: User = Depends(require_policy("dispute:access"))):
    dispute = disputes.open_dispute(body.job_id, user.id, body.reason)
    return _ok(dispute, status_code=200 if dispute["already_open"] else 201)


@dispute_router.get("")
def job_disputes(job_id: str, user: User = Depends(require_policy("dispute:access"))):
    return _ok(disputes.list_job_disputes(job_id, user.id))


@dispute_router.get("/{dispute_id}")
def get_dispute(dispute_id: str, user: User = Depends(require_policy("dispute:access"))):
    return _ok(disputes.get_dispute(dispute_id, user.id))


@admin_dispute_router.post("/{dispute_id}/review")
def review_dispute(dispute_id: str, user: User = Depends(require_admin)):
    return _ok(disputes.review_dispute(dispute_id, user.id))


@admin_dispute_router.post("/{dispute_id}/settle")
def settle_dispute(dispute_id: str, body: SettleDisputeBody, user: User = Depends(require_admin)):
    result = disputes.settle_dispute(
        dispute_id,
        user.id,
        refund_amount=body.refund_amount,
        payout_amount=body.payout_amount,
        resolution=body.resolution,
        idempotency_key=body.idempotency_key,
    )
    return _ok(result)
