"""
Escrow settlement protocol: money movement at each job transition.

    publish   hirer.available -= total                      (hold)
    accept    escrow(job).held = total                      (escrow_fund)
    checkout  escrow.held -= total                          (release)
              caregiver.available += total - fee            (credit)
              platform.available += fee                     (fee)
    cancel    posted: hirer.available += total              (refund)
              assigned / in_progress: escrow.held -> hirer  (release + refund)

Amounts are fixed on the job at creation. All functions run inside the
caller's transaction and never commit.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from backend_careconnect.care_logging import get_logger
from backend_careconnect.core.clock import round_half_up
from backend_careconnect.core.exceptions import (
    ConflictError,
    InsufficientFundsError,
    NotFoundError,
    ValidationError,
)
from backend_careconnect.database.models import (
    BALANCE_AVAILABLE,
    BALANCE_HELD,
    WALLET_CAREGIVER,
    WALLET_ESCROW,
    WALLET_HIRER,
    Job,
    Wallet,
)
from backend_careconnect.database.repositories import (
    get_escrow_wallet,
    get_or_create_platform_wallet,
    get_user_wallet,
)
from backend_careconnect.wallet.ledger import (
    TX_CREDIT,
    TX_ESCROW_FUND,
    TX_FEE,
    TX_HOLD,
    TX_REFUND,
    TX_RELEASE,
    get_or_create_user_wallet,
    post_entry,
)

logger = get_logger(__name__)

REFERENCE_JOB = "job"


@dataclass(frozen=True)
class JobAmounts:
    total_amount: int
    platform_fee_amount: int

    @property
    def caregiver_payment(self) -> int:
        return self.total_amount - self.platform_fee_amount


@dataclass(frozen=True)
class Settlement:
    caregiver_payment: int
    platform_fee: int
    escrow_wallet_id: str


def compute_job_amounts(hourly_rate: int, total_hours: float, fee_percent: int) -> JobAmounts:
    """total = round_half_up(rate * hours); fee = round_half_up(total * percent / 100)."""
    if hourly_rate <= 0:
        raise ValidationError("hourly_rate must be positive")
    if total_hours <= 0:
        raise ValidationError("total_hours must be positive")
    if not 0 <= fee_percent <= 100:
        raise ValidationError("platform fee percent must be between 0 and 100")
    total = round_half_up(hourly_rate * total_hours)
    if total < 1:
        raise ValidationError(
            "Job total must be at least 1 after rounding; increase hourly_rate or total_hours",
            details={"hourly_rate": hourly_rate, "total_hours": total_hours, "total_amount": total},
        )
    fee = round_half_up(total * fee_percent / 100)
    return JobAmounts(total_amount=total, platform_fee_amount=fee)


def _hirer_wallet(session: Session, job: Job) -> Wallet:
    wallet = get_user_wallet(session, job.hirer_id, WALLET_HIRER, lock=True)
    if wallet is None:
        raise NotFoundError(f"Wallet for hirer {job.hirer_id} not found")
    return wallet


def hold_for_publish(session: Session, job: Job) -> Wallet:
    """Debit the hirer's available balance by the job total."""
    wallet = _hirer_wallet(session, job)
    post_entry(
        session,
        wallet,
        -job.total_amount,
        balance_type=BALANCE_AVAILABLE,
        transaction_type=TX_HOLD,
        reference_type=REFERENCE_JOB,
        reference_id=job.id,
        description="Job publish hold",
        insufficient_message="Insufficient balance to publish job",
    )
    logger.info("escrow_publish_hold", job_id=job.id, hirer_id=job.hirer_id, amount=job.total_amount)
    return wallet


def fund_escrow(session: Session, job: Job, currency: str) -> Wallet:
    """Create the job's escrow wallet holding the job total."""
    if get_escrow_wallet(session, job.id) is not None:
        raise ConflictError(f"Escrow wallet already exists for job {job.id}")
    escrow = Wallet(job_id=job.id, wallet_type=WALLET_ESCROW, currency=currency)
    session.add(escrow)
    session.flush()
    post_entry(
        session,
        escrow,
        job.total_amount,
        balance_type=BALANCE_HELD,
        transaction_type=TX_ESCROW_FUND,
        reference_type=REFERENCE_JOB,
        reference_id=job.id,
        description="Escrow funded on assignment",
    )
    logger.info("escrow_funded", job_id=job.id, escrow_wallet_id=escrow.id, amount=job.total_amount)
    return escrow


def settle_escrow(session: Session, job: Job, currency: str) -> Settlement:
    """Release the escrow to the caregiver and the platform fee to the platform wallet."""
    escrow = get_escrow_wallet(session, job.id, lock=True)
    if escrow is None or escrow.held_balance < job.total_amount:
        raise InsufficientFundsError(
            "Insufficient escrow balance for settlement",
            details={"job_id": job.id, "required": job.total_amount},
        )
    payment = job.total_amount - job.platform_fee_amount
    fee = job.platform_fee_amount

    post_entry(
        session,
        escrow,
        -job.total_amount,
        balance_type=BALANCE_HELD,
        transaction_type=TX_RELEASE,
        reference_type=REFERENCE_JOB,
        reference_id=job.id,
        description="Escrow released on completion",
    )
    if payment > 0:
        caregiver_wallet = get_or_create_user_wallet(session, job.caregiver_id, WALLET_CAREGIVER, currency)
        post_entry(
            session,
            caregiver_wallet,
            payment,
            balance_type=BALANCE_AVAILABLE,
            transaction_type=TX_CREDIT,
            reference_type=REFERENCE_JOB,
            reference_id=job.id,
            description="Payment for completed job",
        )
    if fee > 0:
        platform_wallet = get_or_create_platform_wallet(session, currency)
        post_entry(
            session,
            platform_wallet,
            fee,
            balance_type=BALANCE_AVAILABLE,
            transaction_type=TX_FEE,
            reference_type=REFERENCE_JOB,
            reference_id=job.id,
            description="Platform fee",
        )
    logger.info(
        "escrow_settled",
        job_id=job.id,
        caregiver_id=job.caregiver_id,
        caregiver_payment=payment,
        platform_fee=fee,
    )
    return Settlement(caregiver_payment=payment, platform_fee=fee, escrow_wallet_id=escrow.id)


def refund_publish_hold(session: Session, job: Job) -> int:
    """Return the publish hold to the hirer (cancel or expiry of a posted job)."""
    wallet = _hirer_wallet(session, job)
    post_entry(
        session,
        wallet,
        job.total_amount,
        balance_type=BALANCE_AVAILABLE,
        transaction_type=TX_REFUND,
        reference_type=REFERENCE_JOB,
        reference_id=job.id,
        description="Job publish hold returned",
    )
    logger.info("escrow_publish_hold_refunded", job_id=job.id, hirer_id=job.hirer_id, amount=job.total_amount)
    return job.total_amount


def refund_escrow(session: Session, job: Job) -> int:
    """Drain the job's escrow held balance back to the hirer's available balance."""
    escrow = get_escrow_wallet(session, job.id, lock=True)
    if escrow is None:
        raise NotFoundError(f"Escrow wallet for job {job.id} not found")
    amount = int(escrow.held_balance)
    if amount == 0:
        return 0
    post_entry(
        session,
        escrow,
        -amount,
        balance_type=BALANCE_HELD,
        transaction_type=TX_RELEASE,
        reference_type=REFERENCE_JOB,
        reference_id=job.id,
        description="Escrow released on cancellation",
    )
    post_entry(
        session,
        _hirer_wallet(session, job),
        amount,
        balance_type=BALANCE_AVAILABLE,
        transaction_type=TX_REFUND,
        reference_type=REFERENCE_JOB,
        reference_id=job.id,
        description="Escrow refunded on cancellation",
    )
    logger.info("escrow_refunded", job_id=job.id, hirer_id=job.hirer_id, amount=amount)
    return amount
