"""
FastAPI router: trust worker entry points (admin only) and wallet ledger reads.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from backend_careconnect.api_server.deps import require_admin, require_policy
from backend_careconnect.core.exceptions import AuthorizationError, NotFoundError
from backend_careconnect.database import session_scope
from backend_careconnect.database.models import ROLE_ADMIN, WALLET_ESCROW, Job, User, Wallet
from backend_careconnect.trust.worker import run_trust_level_worker, trigger_user_trust_update
from backend_careconnect.wallet.ledger import get_wallet_ledger

admin_router = APIRouter(prefix="/admin/trust", tags=["trust"])
wallet_router = APIRouter(prefix="/wallets", tags=["wallets"])


@admin_router.post("/run")
def run_trust_batch(user: User = Depends(require_admin)):
    return JSONResponse(content={"success": True, "data": run_trust_level_worker()})


@admin_router.post("/users/{user_id}")
def recompute_user_trust(user_id: str, user: User = Depends(require_admin)):
    result = trigger_user_trust_update(user_id, source="admin")
    return JSONResponse(content={"success": True, "data": result})


def _can_view_wallet(user: User, wallet: Wallet, job: Job | None) -> bool:
    if user.role == ROLE_ADMIN:
        return True
    if wallet.user_id is not None:
        return wallet.user_id == user.id
    if wallet.wallet_type == WALLET_ESCROW and job is not None:
        return user.id in (job.hirer_id, job.caregiver_id)
    return False


@wallet_router.get("/{wallet_id}/ledger")
def wallet_ledger(
    wallet_id: str,
    limit: int = Query(100, ge=1, le=1000),
    user: User = Depends(require_policy("wallet:transactions")),
):
    with session_scope() as session:
        wallet = session.get(Wallet, wallet_id)
        if wallet is None:
            raise NotFoundError(f"Wallet {wallet_id} not found")
        job = session.get(Job, wallet.job_id) if wallet.job_id else None
        allowed = _can_view_wallet(user, wallet, job)
        summary = wallet.to_dict()
    if not allowed:
        raise AuthorizationError("Not authorized to view this wallet")
    return JSONResponse(
        content={"success": True, "data": {"wallet": summary, "transactions": get_wallet_ledger(wallet_id, limit)}}
    )
