"""
Disputes over assigned jobs.

A party to a job (hirer or assigned caregiver) opens a dispute; at most one
is open or in review per job. An admin settles it by splitting the job's
escrow held balance:

    refund   escrow.held -= refund, hirer.available += refund       (reversal)
    payout   escrow.held -= payout, caregiver.available += payout   (release / credit)

refund + payout may not exceed the escrow held balance; whatever is left stays
in escrow for the normal check-out or cancel path. Settling again with the
same idempotency_key returns the recorded settlement without moving money.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from backend_careconnect.care_logging import get_logger, job_context
from backend_careconnect.config import get_settings
from backend_careconnect.core.clock import now_ts
from backend_careconnect.core.exceptions import (
    AuthorizationError,
    ConflictError,
    InsufficientFundsError,
    NotFoundError,
    ValidationError,
)
from backend_careconnect.database import session_scope
from backend_careconnect.database.models import (
    BALANCE_AVAILABLE,
    BALANCE_HELD,
    DISPUTE_IN_REVIEW,
    DISPUTE_OPEN,
    DISPUTE_RESOLVED,
    ROLE_ADMIN,
    WALLET_CAREGIVER,
    WALLET_HIRER,
    AuditEvent,
    Dispute,
    Job,
    User,
)
from backend_careconnect.database.repositories import get_escrow_wallet, get_job, get_user, get_user_wallet
from backend_careconnect.policy.gate import ensure_allowed
from backend_careconnect.wallet.ledger import (
    TX_CREDIT,
    TX_RELEASE,
    TX_REVERSAL,
    get_or_create_user_wallet,
    post_entry,
)

logger = get_logger(__name__)

REFERENCE_DISPUTE = "dispute"
EVENT_DISPUTE_STATUS = "dispute_status_change"
ACTIVE_DISPUTE_STATUSES = (DISPUTE_OPEN, DISPUTE_IN_REVIEW)


def _parse_amount(value: Any, field: str) -> int:
    if value is None or value == "":
        return 0
    try:
        amount = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid {field}", details={"field": field}) from exc
    if amount < 0:
        raise ValidationError(f"{field} must not be negative", details={"field": field})
    return amount


def _audit(session: Session, dispute: Dispute, actor_id: str, from_status: str | None, to_status: str) -> None:
    session.add(
        AuditEvent(
            user_id=actor_id,
            event_type=EVENT_DISPUTE_STATUS,
            action=to_status,
            details={
                "dispute_id": dispute.id,
                "job_id": dispute.job_id,
                "from_status": from_status,
                "to_status": to_status,
            },
        )
    )


def _is_party(user: User, job: Job) -> bool:
    return user.id in (job.hirer_id, job.caregiver_id)


def _lock_dispute(session: Session, dispute_id: str) -> Dispute:
    dispute = (
        session.query(Dispute)
        .filter(Dispute.id == dispute_id)
        .with_for_update()
        .populate_existing()
        .one_or_none()
    )
    if dispute is None:
        raise NotFoundError("Dispute not found", details={"dispute_id": dispute_id})
    return dispute


def _require_admin(session: Session, admin_id: str) -> User:
    admin = get_user(session, admin_id)
    if admin.role != ROLE_ADMIN:
        raise AuthorizationError("Admin role required")
    return admin


def _active_dispute(session: Session, job_id: str) -> Dispute | None:
    return (
        session.query(Dispute)
        .filter(Dispute.job_id == job_id, Dispute.status.in_(ACTIVE_DISPUTE_STATUSES))
        .order_by(Dispute.created_at.desc(), Dispute.id)
        .first()
    )


def open_dispute(job_id: str, user_id: str, reason: str) -> dict[str, Any]:
    """
    Open a dispute on a job the user is party to. Returns the existing dispute
    (with already_open=True) when one is still open or in review.
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("reason is required", details={"field": "reason"})
    with session_scope() as session:
        user = get_user(session, user_id)
        ensure_allowed(user, "dispute:access")
        job = get_job(session, job_id)
        if job.caregiver_id is None:
            raise ValidationError("Cannot open dispute before a caregiver accepts the job")
        if not _is_party(user, job):
            raise AuthorizationError("Not authorized to open dispute for this job")

        existing = _active_dispute(session, job_id)
        if existing is not None:
            return {**existing.to_dict(), "already_open": True}

        dispute = Dispute(
            job_id=job_id,
            opened_by=user_id,
            opened_by_role=user.role,
            reason=reason,
            status=DISPUTE_OPEN,
        )
        session.add(dispute)
        session.flush()
        _audit(session, dispute, user_id, None, DISPUTE_OPEN)
        snapshot = dispute.to_dict()
    logger.info("dispute_opened", dispute_id=snapshot["id"], job_id=job_id, opened_by=user_id)
    return {**snapshot, "already_open": False}


def get_dispute(dispute_id: str, user_id: str) -> dict[str, Any]:
    with session_scope() as session:
        user = get_user(session, user_id)
        dispute = session.get(Dispute, dispute_id)
        if dispute is None:
            raise NotFoundError("Dispute not found", details={"dispute_id": dispute_id})
        if user.role != ROLE_ADMIN and not _is_party(user, get_job(session, dispute.job_id)):
            raise AuthorizationError("Not authorized")
        return dispute.to_dict()


def list_job_disputes(job_id: str, user_id: str) -> list[dict[str, Any]]:
    """Disputes of a job, active ones first, then newest first."""
    with session_scope() as session:
        user = get_user(session, user_id)
        job = get_job(session, job_id)
        if user.role != ROLE_ADMIN and not _is_party(user, job):
            raise AuthorizationError("Not authorized")
        rows = session.query(Dispute).filter(Dispute.job_id == job_id).all()
        rows.sort(key=lambda d: (d.status not in ACTIVE_DISPUTE_STATUSES, -d.created_at, d.id))
        return [d.to_dict() for d in rows]


def review_dispute(dispute_id: str, admin_id: str) -> dict[str, Any]:
    """open → in_review, assigning the admin."""
    with session_scope() as session:
        _require_admin(session, admin_id)
        dispute = _lock_dispute(session, dispute_id)
        if dispute.status != DISPUTE_OPEN:
            raise ValidationError(
                f"Cannot review dispute in status: {dispute.status}",
                code="INVALID_STATUS_TRANSITION",
                details={"dispute_id": dispute_id, "status": dispute.status},
            )
        dispute.status = DISPUTE_IN_REVIEW
        dispute.assigned_admin_id = dispute.assigned_admin_id or admin_id
        dispute.updated_at = now_ts()
        _audit(session, dispute, admin_id, DISPUTE_OPEN, DISPUTE_IN_REVIEW)
        session.flush()
        return dispute.to_dict()


def _settlement_result(dispute: Dispute, *, replayed: bool) -> dict[str, Any]:
    return {
        "dispute": dispute.to_dict(),
        "settlement": {
            "refund_amount": int(dispute.settlement_refund_amount or 0),
            "payout_amount": int(dispute.settlement_payout_amount or 0),
        },
        "replayed": replayed,
    }


def settle_dispute(
    dispute_id: str,
    admin_id: str,
    *,
    refund_amount: Any = None,
    payout_amount: Any = None,
    resolution: str | None = None,
    idempotency_key: str | None = None,
) -> dict[str, Any]:
    """
    Split the job's escrow between hirer refund and caregiver payout and mark
    the dispute resolved. All balance changes go through post_entry in one
    transaction.
    """
    refund = _parse_amount(refund_amount, "refund_amount")
    payout = _parse_amount(payout_amount, "payout_amount")
    resolution = (resolution or "").strip() or None
    idempotency_key = (idempotency_key or "").strip() or None
    if refund == 0 and payout == 0 and resolution is None:
        raise ValidationError("No settlement actions provided")

    currency = get_settings().currency
    with session_scope() as session:
        _require_admin(session, admin_id)
        dispute = _lock_dispute(session, dispute_id)

        if dispute.status not in ACTIVE_DISPUTE_STATUSES:
            if idempotency_key is not None and dispute.settlement_idempotency_key == idempotency_key:
                return _settlement_result(dispute, replayed=True)
            raise ValidationError(
                f"Cannot settle dispute in status: {dispute.status}",
                code="INVALID_STATUS_TRANSITION",
                details={"dispute_id": dispute_id, "status": dispute.status},
            )
        if idempotency_key is not None:
            clash = (
                session.query(Dispute.id)
                .filter(Dispute.settlement_idempotency_key == idempotency_key, Dispute.id != dispute_id)
                .first()
            )
            if clash is not None:
                raise ConflictError("Idempotency key already used for another dispute")

        job = get_job(session, dispute.job_id)
        with job_context(job.id, dispute_id=dispute.id):
            total = refund + payout
            if total > 0:
                escrow = get_escrow_wallet(session, job.id, lock=True)
                if escrow is None:
                    raise NotFoundError("Escrow wallet not found", details={"job_id": job.id})
                if total > escrow.held_balance:
                    raise InsufficientFundsError(
                        "Insufficient escrow balance for settlement",
                        details={"job_id": job.id, "balance": escrow.held_balance, "required": total},
                    )
                if refund > 0:
                    hirer_wallet = get_user_wallet(session, job.hirer_id, WALLET_HIRER, lock=True)
                    if hirer_wallet is None:
                        raise NotFoundError(f"Wallet for hirer {job.hirer_id} not found")
                    post_entry(
                        session,
                        escrow,
                        -refund,
                        balance_type=BALANCE_HELD,
                        transaction_type=TX_REVERSAL,
                        reference_type=REFERENCE_DISPUTE,
                        reference_id=dispute.id,
                        description="Refund from escrow (dispute settlement)",
                    )
                    post_entry(
                        session,
                        hirer_wallet,
                        refund,
                        balance_type=BALANCE_AVAILABLE,
                        transaction_type=TX_REVERSAL,
                        reference_type=REFERENCE_DISPUTE,
                        reference_id=dispute.id,
                        description="Refund from escrow (dispute settlement)",
                    )
                if payout > 0:
                    if job.caregiver_id is None:
                        raise ValidationError("No caregiver assigned")
                    caregiver_wallet = get_or_create_user_wallet(session, job.caregiver_id, WALLET_CAREGIVER, currency)
                    post_entry(
                        session,
                        escrow,
                        -payout,
                        balance_type=BALANCE_HELD,
                        transaction_type=TX_RELEASE,
                        reference_type=REFERENCE_DISPUTE,
                        reference_id=dispute.id,
                        description="Payout from escrow (dispute settlement)",
                    )
                    post_entry(
                        session,
                        caregiver_wallet,
                        payout,
                        balance_type=BALANCE_AVAILABLE,
                        transaction_type=TX_CREDIT,
                        reference_type=REFERENCE_DISPUTE,
                        reference_id=dispute.id,
                        description="Payout from escrow (dispute settlement)",
                    )

            from_status = dispute.status
            now = now_ts()
            dispute.assigned_admin_id = dispute.assigned_admin_id or admin_id
            dispute.settlement_refund_amount = refund
            dispute.settlement_payout_amount = payout
            dispute.settlement_idempotency_key = idempotency_key
            if resolution is not None:
                dispute.resolution = resolution
            dispute.status = DISPUTE_RESOLVED
            dispute.resolved_at = now
            dispute.updated_at = now
            _audit(session, dispute, admin_id, from_status, DISPUTE_RESOLVED)
            session.flush()
            logger.info(
                "dispute_settled",
                admin_id=admin_id,
                refund_amount=refund,
                payout_amount=payout,
            )
            return _settlement_result(dispute, replayed=False)
