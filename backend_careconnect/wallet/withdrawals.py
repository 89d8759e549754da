"""
Caregiver withdrawals.

    request     available -= amount, held += amount     (hold)
    cancel      held -= amount, available += amount     (release)   queued only
    review      queued -> review                        (admin)
    approve     review -> approved                      (admin)
    reject      held -= amount, available += amount     (reversal)  queued / review / approved
    mark paid   held -= amount                          (debit)     approved only

Status changes lock the request row and are written with
UPDATE ... WHERE status = <from>, like job transitions.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from backend_careconnect.care_logging import get_logger
from backend_careconnect.config import get_settings
from backend_careconnect.core.clock import now_ts
from backend_careconnect.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from backend_careconnect.database import session_scope
from backend_careconnect.database.models import (
    BALANCE_AVAILABLE,
    BALANCE_HELD,
    ROLE_ADMIN,
    USER_ACTIVE,
    WALLET_CAREGIVER,
    WITHDRAWAL_APPROVED,
    WITHDRAWAL_CANCELLED,
    WITHDRAWAL_PAID,
    WITHDRAWAL_QUEUED,
    WITHDRAWAL_REJECTED,
    WITHDRAWAL_REVIEW,
    AuditEvent,
    BankAccount,
    Wallet,
    WithdrawalRequest,
)
from backend_careconnect.database.repositories import get_user, get_user_wallet
from backend_careconnect.policy.gate import ensure_allowed
from backend_careconnect.wallet.ledger import TX_DEBIT, TX_HOLD, TX_RELEASE, TX_REVERSAL, post_entry

logger = get_logger(__name__)

REFERENCE_WITHDRAWAL = "withdrawal"
EVENT_WITHDRAWAL_STATUS = "withdrawal_status_change"

WITHDRAWAL_STATUSES = (
    WITHDRAWAL_QUEUED,
    WITHDRAWAL_REVIEW,
    WITHDRAWAL_APPROVED,
    WITHDRAWAL_REJECTED,
    WITHDRAWAL_PAID,
    WITHDRAWAL_CANCELLED,
)

WITHDRAWAL_TRANSITIONS: dict[str, frozenset[str]] = {
    WITHDRAWAL_QUEUED: frozenset({WITHDRAWAL_REVIEW, WITHDRAWAL_REJECTED, WITHDRAWAL_CANCELLED}),
    WITHDRAWAL_REVIEW: frozenset({WITHDRAWAL_APPROVED, WITHDRAWAL_REJECTED}),
    WITHDRAWAL_APPROVED: frozenset({WITHDRAWAL_PAID, WITHDRAWAL_REJECTED}),
    WITHDRAWAL_REJECTED: frozenset(),
    WITHDRAWAL_PAID: frozenset(),
    WITHDRAWAL_CANCELLED: frozenset(),
}

_VERBS = {
    WITHDRAWAL_REVIEW: "review",
    WITHDRAWAL_APPROVED: "approve",
    WITHDRAWAL_REJECTED: "reject",
    WITHDRAWAL_PAID: "mark paid",
    WITHDRAWAL_CANCELLED: "cancel",
}

_TIMESTAMP_COLUMN = {
    WITHDRAWAL_REVIEW: "reviewed_at",
    WITHDRAWAL_APPROVED: "approved_at",
    WITHDRAWAL_REJECTED: "rejected_at",
    WITHDRAWAL_PAID: "paid_at",
    WITHDRAWAL_CANCELLED: "cancelled_at",
}


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in WITHDRAWAL_TRANSITIONS.get(from_status, frozenset())


def _lock_withdrawal(session: Session, withdrawal_id: str) -> WithdrawalRequest:
    withdrawal = (
        session.query(WithdrawalRequest)
        .filter(WithdrawalRequest.id == withdrawal_id)
        .with_for_update()
        .populate_existing()
        .one_or_none()
    )
    if withdrawal is None:
        raise NotFoundError("Withdrawal request not found", details={"withdrawal_id": withdrawal_id})
    return withdrawal


def _lock_wallet(session: Session, withdrawal: WithdrawalRequest) -> Wallet:
    wallet = (
        session.query(Wallet)
        .filter(Wallet.id == withdrawal.wallet_id)
        .with_for_update()
        .populate_existing()
        .one_or_none()
    )
    if wallet is None:
        raise NotFoundError("Wallet not found", details={"wallet_id": withdrawal.wallet_id})
    return wallet


def _move_status(
    session: Session,
    withdrawal: WithdrawalRequest,
    to_status: str,
    acting_user_id: str,
    **values: Any,
) -> None:
    """Guarded status write plus an audit row; the caller holds the row lock."""
    from_status = withdrawal.status
    if not can_transition(from_status, to_status):
        raise ValidationError(
            f"Cannot {_VERBS[to_status]} withdrawal with status: {from_status}",
            code="INVALID_STATUS_TRANSITION",
            details={"withdrawal_id": withdrawal.id, "from_status": from_status, "to_status": to_status},
        )
    now = now_ts()
    values.update({"status": to_status, "updated_at": now, _TIMESTAMP_COLUMN[to_status]: now})
    updated = (
        session.query(WithdrawalRequest)
        .filter(WithdrawalRequest.id == withdrawal.id, WithdrawalRequest.status == from_status)
        .update(values, synchronize_session=False)
    )
    if updated == 0:
        raise ConflictError(
            "Withdrawal request was modified concurrently",
            details={"withdrawal_id": withdrawal.id, "expected_status": from_status},
        )
    session.add(
        AuditEvent(
            user_id=withdrawal.user_id,
            event_type=EVENT_WITHDRAWAL_STATUS,
            action=to_status,
            details={
                "withdrawal_id": withdrawal.id,
                "from_status": from_status,
                "to_status": to_status,
                "acting_user_id": acting_user_id,
            },
        )
    )
    session.flush()
    session.refresh(withdrawal)
    logger.info(
        "withdrawal_status_changed",
        withdrawal_id=withdrawal.id,
        user_id=withdrawal.user_id,
        from_status=from_status,
        to_status=to_status,
        acting_user_id=acting_user_id,
    )


def _release_hold(session: Session, withdrawal: WithdrawalRequest, transaction_type: str, description: str) -> None:
    wallet = _lock_wallet(session, withdrawal)
    post_entry(
        session,
        wallet,
        -withdrawal.amount,
        balance_type=BALANCE_HELD,
        transaction_type=transaction_type,
        reference_type=REFERENCE_WITHDRAWAL,
        reference_id=withdrawal.id,
        description=description,
    )
    post_entry(
        session,
        wallet,
        withdrawal.amount,
        balance_type=BALANCE_AVAILABLE,
        transaction_type=transaction_type,
        reference_type=REFERENCE_WITHDRAWAL,
        reference_id=withdrawal.id,
        description=description,
    )


def request_withdrawal(user_id: str, amount: int, bank_account_id: int) -> dict[str, Any]:
    """
    Queue a payout of amount to one of the caregiver's verified bank accounts
    and move amount from available to held.
    """
    settings = get_settings()
    amount = int(amount)
    with session_scope() as session:
        user = get_user(session, user_id)
        if user.status != USER_ACTIVE:
            raise AuthorizationError("Account is not active")
        ensure_allowed(user, "wallet:withdraw")
        if amount < settings.min_withdrawal_amount:
            raise ValidationError(
                f"Minimum withdrawal amount is {settings.min_withdrawal_amount} {settings.currency}",
                details={"field": "amount", "minimum": settings.min_withdrawal_amount},
            )
        bank = session.get(BankAccount, bank_account_id)
        if bank is None or bank.user_id != user_id or not bank.is_verified:
            raise ValidationError("Verified bank account not found", details={"field": "bank_account_id"})

        wallet = get_user_wallet(session, user_id, WALLET_CAREGIVER, lock=True)
        if wallet is None:
            raise NotFoundError(f"Wallet for user {user_id} not found")
        withdrawal = WithdrawalRequest(
            user_id=user_id,
            wallet_id=wallet.id,
            bank_account_id=bank.id,
            amount=amount,
            currency=wallet.currency,
            status=WITHDRAWAL_QUEUED,
        )
        session.add(withdrawal)
        session.flush()
        post_entry(
            session,
            wallet,
            -amount,
            balance_type=BALANCE_AVAILABLE,
            transaction_type=TX_HOLD,
            reference_type=REFERENCE_WITHDRAWAL,
            reference_id=withdrawal.id,
            description="Withdrawal hold",
            insufficient_message=f"Insufficient balance. Available: {wallet.available_balance} {wallet.currency}",
        )
        post_entry(
            session,
            wallet,
            amount,
            balance_type=BALANCE_HELD,
            transaction_type=TX_HOLD,
            reference_type=REFERENCE_WITHDRAWAL,
            reference_id=withdrawal.id,
            description="Withdrawal hold",
        )
        snapshot = withdrawal.to_dict()
    logger.info("withdrawal_requested", withdrawal_id=snapshot["id"], user_id=user_id, amount=amount)
    return snapshot


def cancel_withdrawal(withdrawal_id: str, user_id: str) -> dict[str, Any]:
    """Owner cancels a queued request; the hold returns to available."""
    with session_scope() as session:
        user = get_user(session, user_id)
        ensure_allowed(user, "wallet:withdraw:cancel")
        withdrawal = _lock_withdrawal(session, withdrawal_id)
        if withdrawal.user_id != user_id:
            raise NotFoundError("Withdrawal request not found", details={"withdrawal_id": withdrawal_id})
        _move_status(session, withdrawal, WITHDRAWAL_CANCELLED, user_id)
        _release_hold(session, withdrawal, TX_RELEASE, "Withdrawal cancelled - funds released")
        return withdrawal.to_dict()


def _require_admin(session: Session, admin_id: str) -> None:
    if get_user(session, admin_id).role != ROLE_ADMIN:
        raise AuthorizationError("Admin role required")


def review_withdrawal(withdrawal_id: str, admin_id: str) -> dict[str, Any]:
    with session_scope() as session:
        _require_admin(session, admin_id)
        withdrawal = _lock_withdrawal(session, withdrawal_id)
        _move_status(session, withdrawal, WITHDRAWAL_REVIEW, admin_id, reviewed_by=admin_id)
        return withdrawal.to_dict()


def approve_withdrawal(withdrawal_id: str, admin_id: str) -> dict[str, Any]:
    with session_scope() as session:
        _require_admin(session, admin_id)
        withdrawal = _lock_withdrawal(session, withdrawal_id)
        _move_status(session, withdrawal, WITHDRAWAL_APPROVED, admin_id, reviewed_by=admin_id)
        return withdrawal.to_dict()


def reject_withdrawal(withdrawal_id: str, admin_id: str, reason: str | None = None) -> dict[str, Any]:
    """Reject at any point before payout; the hold returns to available."""
    with session_scope() as session:
        _require_admin(session, admin_id)
        withdrawal = _lock_withdrawal(session, withdrawal_id)
        _move_status(
            session,
            withdrawal,
            WITHDRAWAL_REJECTED,
            admin_id,
            reviewed_by=admin_id,
            rejection_reason=(reason or "").strip() or "Rejected",
        )
        _release_hold(session, withdrawal, TX_REVERSAL, "Withdrawal rejected - funds released")
        return withdrawal.to_dict()


def mark_withdrawal_paid(withdrawal_id: str, admin_id: str, payout_reference: str | None = None) -> dict[str, Any]:
    """Record the bank transfer; the held amount leaves the wallet."""
    with session_scope() as session:
        _require_admin(session, admin_id)
        withdrawal = _lock_withdrawal(session, withdrawal_id)
        _move_status(session, withdrawal, WITHDRAWAL_PAID, admin_id, payout_reference=payout_reference)
        post_entry(
            session,
            _lock_wallet(session, withdrawal),
            -withdrawal.amount,
            balance_type=BALANCE_HELD,
            transaction_type=TX_DEBIT,
            reference_type=REFERENCE_WITHDRAWAL,
            reference_id=withdrawal.id,
            description="Withdrawal payout",
        )
        return withdrawal.to_dict()


def list_withdrawals(
    user_id: str | None = None,
    status: str | None = None,
    *,
    limit: int = 20,
    offset: int = 0,
) -> list[dict[str, Any]]:
    """Newest first. user_id=None lists every user's requests (admin view)."""
    if status is not None and status not in WITHDRAWAL_STATUSES:
        raise ValidationError(f"Invalid withdrawal status: {status}", details={"field": "status"})
    limit = max(1, min(limit, 100))
    with session_scope() as session:
        query = session.query(WithdrawalRequest)
        if user_id is not None:
            query = query.filter(WithdrawalRequest.user_id == user_id)
        if status is not None:
            query = query.filter(WithdrawalRequest.status == status)
        rows = (
            query.order_by(WithdrawalRequest.created_at.desc(), WithdrawalRequest.id)
            .offset(max(0, offset))
            .limit(limit)
            .all()
        )
        return [r.to_dict() for r in rows]
