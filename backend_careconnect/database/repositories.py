"""
Query helpers shared by the job, wallet and trust services.

All functions take an open Session (from session_scope) and never commit.
Row locks use SELECT ... FOR UPDATE; SQLite ignores the clause and relies on
the guarded status UPDATE in the state machine instead.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend_careconnect.core.clock import windows_overlap
from backend_careconnect.core.exceptions import ConflictError, NotFoundError
from backend_careconnect.database.models import (
    WALLET_ESCROW,
    WALLET_PLATFORM,
    Job,
    User,
    Wallet,
)

ACTIVE_ASSIGNMENT_STATUSES = ("assigned", "in_progress")


def get_user(session: Session, user_id: str) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    return user


def get_job(session: Session, job_id: str) -> Job:
    job = session.get(Job, job_id)
    if job is None:
        raise NotFoundError(f"Job {job_id} not found")
    return job


def lock_job(session: Session, job_id: str) -> Job:
    """Load the job with a row lock, refreshing any stale copy in the session."""
    job = (
        session.query(Job)
        .filter(Job.id == job_id)
        .with_for_update()
        .populate_existing()
        .one_or_none()
    )
    if job is None:
        raise NotFoundError(f"Job {job_id} not found")
    return job


def get_user_wallet(session: Session, user_id: str, wallet_type: str, *, lock: bool = False) -> Wallet | None:
    query = session.query(Wallet).filter(Wallet.user_id == user_id, Wallet.wallet_type == wallet_type)
    if lock:
        query = query.with_for_update().populate_existing()
    return query.one_or_none()


def get_escrow_wallet(session: Session, job_id: str, *, lock: bool = False) -> Wallet | None:
    query = session.query(Wallet).filter(Wallet.job_id == job_id, Wallet.wallet_type == WALLET_ESCROW)
    if lock:
        query = query.with_for_update().populate_existing()
    return query.one_or_none()


def get_platform_wallet(session: Session, currency: str, *, lock: bool = False) -> Wallet | None:
    query = session.query(Wallet).filter(
        Wallet.wallet_type == WALLET_PLATFORM,
        Wallet.currency == currency,
        Wallet.user_id.is_(None),
        Wallet.job_id.is_(None),
    )
    if lock:
        query = query.with_for_update().populate_existing()
    return query.order_by(Wallet.created_at, Wallet.id).first()


def get_or_create_platform_wallet(session: Session, currency: str) -> Wallet:
    """
    Platform wallet for the currency (no user, no job). init_db seeds it, so the
    insert here only runs against a database created some other way.
    uq_wallets_platform_currency rejects a second row when two first-time
    callers race; the loser gets a ConflictError and its transaction rolls back.
    """
    wallet = get_platform_wallet(session, currency, lock=True)
    if wallet is None:
        wallet = Wallet(wallet_type=WALLET_PLATFORM, currency=currency)
        session.add(wallet)
        try:
            session.flush()
        except IntegrityError as exc:
            raise ConflictError(
                "Platform wallet was created concurrently; retry",
                details={"currency": currency},
            ) from exc
    return wallet


def find_overlapping_assignment(
    session: Session,
    caregiver_id: str,
    start_at: int,
    end_at: int,
    *,
    exclude_job_id: str | None = None,
) -> Job | None:
    """
    Return one assigned / in_progress job of the caregiver whose schedule
    overlaps [start_at, end_at), or None. Touching windows do not overlap.
    """
    query = session.query(Job).filter(
        Job.caregiver_id == caregiver_id,
        Job.status.in_(ACTIVE_ASSIGNMENT_STATUSES),
        Job.scheduled_start_at < end_at,
    )
    if exclude_job_id is not None:
        query = query.filter(Job.id != exclude_job_id)
    for job in query.order_by(Job.scheduled_start_at):
        if windows_overlap(job.scheduled_start_at, job.scheduled_end_at, start_at, end_at):
            return job
    return None
