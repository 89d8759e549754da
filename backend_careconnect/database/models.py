"""
SQLAlchemy models for the marketplace core.

Users and their verification records, jobs, wallets with their append-only
ledger, withdrawal requests, disputes, trust score history, audit events and
job transition logs. All time columns are Unix seconds; money columns are
integer currency units.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import declarative_base

from backend_careconnect.core.clock import now_ts

Base = declarative_base()

ROLE_HIRER = "hirer"
ROLE_CAREGIVER = "caregiver"
ROLE_ADMIN = "admin"

USER_ACTIVE = "active"
USER_SUSPENDED = "suspended"

WALLET_HIRER = "hirer"
WALLET_CAREGIVER = "caregiver"
WALLET_ESCROW = "escrow"
WALLET_PLATFORM = "platform"

BALANCE_AVAILABLE = "available"
BALANCE_HELD = "held"

KYC_PENDING = "pending"
KYC_APPROVED = "approved"
KYC_REJECTED = "rejected"

GPS_CHECK_IN = "check_in"
GPS_CHECK_OUT = "check_out"

WITHDRAWAL_QUEUED = "queued"
WITHDRAWAL_REVIEW = "review"
WITHDRAWAL_APPROVED = "approved"
WITHDRAWAL_REJECTED = "rejected"
WITHDRAWAL_PAID = "paid"
WITHDRAWAL_CANCELLED = "cancelled"

DISPUTE_OPEN = "open"
DISPUTE_IN_REVIEW = "in_review"
DISPUTE_RESOLVED = "resolved"


def new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """Marketplace user; trust_score / trust_level hold the current trust snapshot."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    role = Column(String(16), nullable=False, index=True)
    status = Column(String(16), nullable=False, default=USER_ACTIVE, index=True)
    display_name = Column(String(128), nullable=True)
    is_phone_verified = Column(Boolean, nullable=False, default=False)
    is_email_verified = Column(Boolean, nullable=False, default=False)
    trust_score = Column(Integer, nullable=False, default=0)
    trust_level = Column(String(2), nullable=False, default="L0")
    created_at = Column(Integer, nullable=False, default=now_ts)
    updated_at = Column(Integer, nullable=False, default=now_ts, onupdate=now_ts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "status": self.status,
            "display_name": self.display_name,
            "is_phone_verified": self.is_phone_verified,
            "is_email_verified": self.is_email_verified,
            "trust_score": self.trust_score,
            "trust_level": self.trust_level,
        }


class CaregiverProfile(Base):
    __tablename__ = "caregiver_profiles"

    user_id = Column(String(36), ForeignKey("users.id"), primary_key=True)
    display_name = Column(String(128), nullable=True)
    bio = Column(Text, nullable=True)
    experience_years = Column(Integer, nullable=True)
    certifications = Column(JSON, nullable=False, default=list)


class KycRecord(Base):
    """KYC submissions; the most recent row decides the user's KYC status."""

    __tablename__ = "kyc_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(16), nullable=False, default=KYC_PENDING)
    created_at = Column(Integer, nullable=False, default=now_ts)


class BankAccount(Base):
    __tablename__ = "bank_accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    bank_name = Column(String(64), nullable=True)
    account_number_last4 = Column(String(4), nullable=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(Integer, nullable=False, default=now_ts)


class Job(Base):
    """
    A scheduled care engagement. status follows the job state machine;
    total_amount and platform_fee_amount are fixed at creation.
    """

    __tablename__ = "jobs"
    __table_args__ = (
        CheckConstraint("scheduled_end_at > scheduled_start_at", name="ck_jobs_schedule"),
        CheckConstraint("total_amount >= 0 AND platform_fee_amount >= 0", name="ck_jobs_amounts"),
        CheckConstraint("platform_fee_amount <= total_amount", name="ck_jobs_fee_le_total"),
        Index("ix_jobs_caregiver_status", "caregiver_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    hirer_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    caregiver_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    title = Column(String(200), nullable=False)
    status = Column(String(16), nullable=False, default="draft", index=True)
    scheduled_start_at = Column(Integer, nullable=False, index=True)
    scheduled_end_at = Column(Integer, nullable=False)
    hourly_rate = Column(Integer, nullable=False)
    total_hours = Column(Float, nullable=False)
    total_amount = Column(Integer, nullable=False)
    platform_fee_percent = Column(Integer, nullable=False)
    platform_fee_amount = Column(Integer, nullable=False)
    min_trust_level = Column(String(2), nullable=False, default="L1")
    preferred_caregiver_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    required_certifications = Column(JSON, nullable=False, default=list)
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    geofence_radius_m = Column(Float, nullable=False, default=1000.0)
    cancelled_by = Column(String(36), nullable=True)
    cancel_reason = Column(Text, nullable=True)
    posted_at = Column(Integer, nullable=True)
    assigned_at = Column(Integer, nullable=True)
    started_at = Column(Integer, nullable=True)
    completed_at = Column(Integer, nullable=True)
    cancelled_at = Column(Integer, nullable=True)
    expired_at = Column(Integer, nullable=True)
    created_at = Column(Integer, nullable=False, default=now_ts)
    updated_at = Column(Integer, nullable=False, default=now_ts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "hirer_id": self.hirer_id,
            "caregiver_id": self.caregiver_id,
            "title": self.title,
            "status": self.status,
            "scheduled_start_at": self.scheduled_start_at,
            "scheduled_end_at": self.scheduled_end_at,
            "hourly_rate": self.hourly_rate,
            "total_hours": self.total_hours,
            "total_amount": self.total_amount,
            "platform_fee_percent": self.platform_fee_percent,
            "platform_fee_amount": self.platform_fee_amount,
            "min_trust_level": self.min_trust_level,
            "preferred_caregiver_id": self.preferred_caregiver_id,
            "required_certifications": list(self.required_certifications or []),
            "cancelled_by": self.cancelled_by,
            "cancel_reason": self.cancel_reason,
            "posted_at": self.posted_at,
            "assigned_at": self.assigned_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "cancelled_at": self.cancelled_at,
            "expired_at": self.expired_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class Wallet(Base):
    """
    Balance bucket. hirer/caregiver wallets are keyed by user_id, escrow wallets
    by job_id, and there is one platform wallet per currency with neither.
    """

    __tablename__ = "wallets"
    __table_args__ = (
        CheckConstraint("available_balance >= 0", name="ck_wallets_available_nonneg"),
        CheckConstraint("held_balance >= 0", name="ck_wallets_held_nonneg"),
        UniqueConstraint("user_id", "wallet_type", name="uq_wallets_user_type"),
        # NULL user_id is not covered by the constraint above
        Index(
            "uq_wallets_platform_currency",
            "wallet_type",
            "currency",
            unique=True,
            sqlite_where=text("user_id IS NULL AND job_id IS NULL"),
            postgresql_where=text("user_id IS NULL AND job_id IS NULL"),
        ),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    job_id = Column(String(36), ForeignKey("jobs.id"), nullable=True, unique=True)
    wallet_type = Column(String(16), nullable=False, index=True)
    available_balance = Column(Integer, nullable=False, default=0)
    held_balance = Column(Integer, nullable=False, default=0)
    currency = Column(String(8), nullable=False, default="THB")
    created_at = Column(Integer, nullable=False, default=now_ts)
    updated_at = Column(Integer, nullable=False, default=now_ts, onupdate=now_ts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "job_id": self.job_id,
            "wallet_type": self.wallet_type,
            "available_balance": self.available_balance,
            "held_balance": self.held_balance,
            "currency": self.currency,
        }


class LedgerTransaction(Base):
    """
    Append-only record of one balance mutation. amount is signed; balance_type
    says which balance (available or held) the amount applies to.
    """

    __tablename__ = "ledger_transactions"

    id = Column(String(36), primary_key=True, default=new_id)
    wallet_id = Column(String(36), ForeignKey("wallets.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    balance_type = Column(String(16), nullable=False)
    transaction_type = Column(String(16), nullable=False)
    reference_type = Column(String(32), nullable=False)
    reference_id = Column(String(36), nullable=True, index=True)
    description = Column(String(256), nullable=True)
    created_at = Column(Integer, nullable=False, default=now_ts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "wallet_id": self.wallet_id,
            "amount": self.amount,
            "balance_type": self.balance_type,
            "transaction_type": self.transaction_type,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "description": self.description,
            "created_at": self.created_at,
        }


class JobTransitionLog(Base):
    """Append-only audit trail of job status changes."""

    __tablename__ = "job_transition_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String(36), ForeignKey("jobs.id"), nullable=False, index=True)
    from_status = Column(String(16), nullable=False)
    to_status = Column(String(16), nullable=False)
    acting_user_id = Column(String(36), nullable=True)
    context = Column(JSON, nullable=True)
    created_at = Column(Integer, nullable=False, default=now_ts)


class GpsEvent(Base):
    __tablename__ = "job_gps_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String(36), ForeignKey("jobs.id"), nullable=False, index=True)
    caregiver_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    event_type = Column(String(16), nullable=False)
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    accuracy_m = Column(Float, nullable=True)
    fraud_indicators = Column(JSON, nullable=False, default=list)
    created_at = Column(Integer, nullable=False, default=now_ts)


class Review(Base):
    __tablename__ = "caregiver_reviews"
    __table_args__ = (CheckConstraint("rating BETWEEN 1 AND 5", name="ck_reviews_rating"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String(36), ForeignKey("jobs.id"), nullable=True)
    caregiver_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    reviewer_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(Integer, nullable=False, default=now_ts)


class TrustScoreHistory(Base):
    """Append-only; one row per change of a user's trust score or level."""

    __tablename__ = "trust_score_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    delta = Column(Integer, nullable=False)
    score_before = Column(Integer, nullable=False)
    score_after = Column(Integer, nullable=False)
    trust_level_before = Column(String(2), nullable=False)
    trust_level_after = Column(String(2), nullable=False)
    reason_code = Column(String(64), nullable=False)
    reason_detail = Column(JSON, nullable=True)
    created_at = Column(Integer, nullable=False, default=now_ts)


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), nullable=True, index=True)
    event_type = Column(String(64), nullable=False, index=True)
    action = Column(String(64), nullable=True)
    old_level = Column(String(2), nullable=True)
    new_level = Column(String(2), nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(Integer, nullable=False, default=now_ts)


class WithdrawalRequest(Base):
    """
    Caregiver payout request. The amount sits in the wallet's held balance
    from request until it is paid out, cancelled or rejected.
    """

    __tablename__ = "withdrawal_requests"
    __table_args__ = (CheckConstraint("amount > 0", name="ck_withdrawals_amount_positive"),)

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    wallet_id = Column(String(36), ForeignKey("wallets.id"), nullable=False)
    bank_account_id = Column(Integer, ForeignKey("bank_accounts.id"), nullable=False)
    amount = Column(Integer, nullable=False)
    currency = Column(String(8), nullable=False, default="THB")
    status = Column(String(16), nullable=False, default=WITHDRAWAL_QUEUED, index=True)
    reviewed_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    payout_reference = Column(String(128), nullable=True)
    reviewed_at = Column(Integer, nullable=True)
    approved_at = Column(Integer, nullable=True)
    rejected_at = Column(Integer, nullable=True)
    paid_at = Column(Integer, nullable=True)
    cancelled_at = Column(Integer, nullable=True)
    created_at = Column(Integer, nullable=False, default=now_ts)
    updated_at = Column(Integer, nullable=False, default=now_ts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "wallet_id": self.wallet_id,
            "bank_account_id": self.bank_account_id,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status,
            "reviewed_by": self.reviewed_by,
            "rejection_reason": self.rejection_reason,
            "payout_reference": self.payout_reference,
            "reviewed_at": self.reviewed_at,
            "approved_at": self.approved_at,
            "rejected_at": self.rejected_at,
            "paid_at": self.paid_at,
            "cancelled_at": self.cancelled_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class Dispute(Base):
    """
    A hirer or caregiver complaint about a job. Settlement moves part or all of
    the job's escrow to the hirer (refund) and / or the caregiver (payout).
    """

    __tablename__ = "disputes"
    __table_args__ = (
        CheckConstraint(
            "settlement_refund_amount >= 0 AND settlement_payout_amount >= 0",
            name="ck_disputes_settlement_nonneg",
        ),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    job_id = Column(String(36), ForeignKey("jobs.id"), nullable=False, index=True)
    opened_by = Column(String(36), ForeignKey("users.id"), nullable=False)
    opened_by_role = Column(String(16), nullable=False)
    reason = Column(Text, nullable=False)
    status = Column(String(16), nullable=False, default=DISPUTE_OPEN, index=True)
    assigned_admin_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    settlement_refund_amount = Column(Integer, nullable=False, default=0)
    settlement_payout_amount = Column(Integer, nullable=False, default=0)
    settlement_idempotency_key = Column(String(128), nullable=True, unique=True)
    resolution = Column(Text, nullable=True)
    resolved_at = Column(Integer, nullable=True)
    created_at = Column(Integer, nullable=False, default=now_ts)
    updated_at = Column(Integer, nullable=False, default=now_ts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "opened_by": self.opened_by,
            "opened_by_role": self.opened_by_role,
            "reason": self.reason,
            "status": self.status,
            "assigned_admin_id": self.assigned_admin_id,
            "settlement_refund_amount": self.settlement_refund_amount,
            "settlement_payout_amount": self.settlement_payout_amount,
            "resolution": self.resolution,
            "resolved_at": self.resolved_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


APPEND_ONLY_MODELS = (LedgerTransaction, TrustScoreHistory, JobTransitionLog, AuditEvent)
