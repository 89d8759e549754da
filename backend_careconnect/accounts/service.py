"""
Accounts: registration with the personal wallet, top-ups, and the
verification / profile / review records the trust worker reads.
"""

from __future__ import annotations

from typing import Any

from backend_careconnect.care_logging import get_logger
from backend_careconnect.config import get_settings
from backend_careconnect.core.exceptions import NotFoundError, ValidationError
from backend_careconnect.database import session_scope
from backend_careconnect.database.models import (
    BALANCE_AVAILABLE,
    KYC_APPROVED,
    KYC_PENDING,
    KYC_REJECTED,
    ROLE_ADMIN,
    ROLE_CAREGIVER,
    ROLE_HIRER,
    USER_ACTIVE,
    USER_SUSPENDED,
    BankAccount,
    CaregiverProfile,
    KycRecord,
    Review,
    User,
    Wallet,
)
from backend_careconnect.database.repositories import get_user, get_user_wallet
from backend_careconnect.wallet.ledger import TX_TOPUP, post_entry

logger = get_logger(__name__)

ROLES = (ROLE_HIRER, ROLE_CAREGIVER, ROLE_ADMIN)
KYC_STATUSES = (KYC_PENDING, KYC_APPROVED, KYC_REJECTED)
REFERENCE_TOPUP = "topup"


def register_user(
    role: str,
    display_name: str | None = None,
    *,
    is_phone_verified: bool = False,
    is_email_verified: bool = False,
) -> dict[str, Any]:
    """Create a user at L0; hirers and caregivers get their wallet at the same time."""
    if role not in ROLES:
        raise ValidationError(f"Invalid role: {role}", details={"field": "role"})
    currency = get_settings().currency
    with session_scope() as session:
        user = User(
            role=role,
            status=USER_ACTIVE,
            display_name=(display_name or "").strip() or None,
            is_phone_verified=is_phone_verified,
            is_email_verified=is_email_verified,
            trust_score=0,
            trust_level="L0",
        )
        session.add(user)
        session.flush()
        if role in (ROLE_HIRER, ROLE_CAREGIVER):
            session.add(Wallet(user_id=user.id, wallet_type=role, currency=currency))
        snapshot = user.to_dict()
    logger.info("user_registered", user_id=snapshot["id"], role=role)
    return snapshot


def get_user_profile(user_id: str) -> dict[str, Any]:
    with session_scope() as session:
        return get_user(session, user_id).to_dict()


def set_user_status(user_id: str, status: str) -> dict[str, Any]:
    if status not in (USER_ACTIVE, USER_SUSPENDED):
        raise ValidationError(f"Invalid user status: {status}")
    with session_scope() as session:
        user = get_user(session, user_id)
        user.status = status
        session.flush()
        return user.to_dict()


def verify_phone(user_id: str) -> None:
    with session_scope() as session:
        get_user(session, user_id).is_phone_verified = True
    logger.info("user_phone_verified", user_id=user_id)


def verify_email(user_id: str) -> None:
    with session_scope() as session:
        get_user(session, user_id).is_email_verified = True
    logger.info("user_email_verified", user_id=user_id)


def record_kyc(user_id: str, status: str) -> None:
    """Append a KYC record; the latest one decides the user's KYC status."""
    if status not in KYC_STATUSES:
        raise ValidationError(f"Invalid KYC status: {status}")
    with session_scope() as session:
        get_user(session, user_id)
        session.add(KycRecord(user_id=user_id, status=status))
    logger.info("user_kyc_recorded", user_id=user_id, status=status)


def add_bank_account(
    user_id: str,
    bank_name: str | None = None,
    account_number_last4: str | None = None,
    *,
    is_verified: bool = False,
) -> int:
    with session_scope() as session:
        get_user(session, user_id)
        account = BankAccount(
            user_id=user_id,
            bank_name=bank_name,
            account_number_last4=account_number_last4,
            is_verified=is_verified,
        )
        session.add(account)
        session.flush()
        return account.id


def upsert_caregiver_profile(
    user_id: str,
    *,
    display_name: str | None = None,
    bio: str | None = None,
    experience_years: int | None = None,
    certifications: list[str] | None = None,
) -> None:
    with session_scope() as session:
        user = get_user(session, user_id)
        if user.role != ROLE_CAREGIVER:
            raise ValidationError("Only caregivers have a caregiver profile")
        profile = session.get(CaregiverProfile, user_id)
        if profile is None:
            profile = CaregiverProfile(user_id=user_id, certifications=[])
            session.add(profile)
        if display_name is not None:
            profile.display_name = display_name
        if bio is not None:
            profile.bio = bio
        if experience_years is not None:
            profile.experience_years = experience_years
        if certifications is not None:
            profile.certifications = list(certifications)


def add_review(
    caregiver_id: str,
    rating: int,
    *,
    job_id: str | None = None,
    reviewer_id: str | None = None,
    comment: str | None = None,
) -> int:
    if not 1 <= int(rating) <= 5:
        raise ValidationError("Rating must be between 1 and 5", details={"field": "rating"})
    with session_scope() as session:
        get_user(session, caregiver_id)
        review = Review(
            job_id=job_id,
            caregiver_id=caregiver_id,
            reviewer_id=reviewer_id,
            rating=int(rating),
            comment=comment,
        )
        session.add(review)
        session.flush()
        return review.id


def top_up(user_id: str, amount: int, *, reference_id: str | None = None) -> dict[str, Any]:
    """Credit a user's available balance (payment-provider confirmation is out of scope)."""
    if int(amount) <= 0:
        raise ValidationError("Top-up amount must be positive", details={"field": "amount"})
    with session_scope() as session:
        user = get_user(session, user_id)
        wallet = get_user_wallet(session, user_id, user.role, lock=True)
        if wallet is None:
            raise NotFoundError(f"Wallet for user {user_id} not found")
        post_entry(
            session,
            wallet,
            int(amount),
            balance_type=BALANCE_AVAILABLE,
            transaction_type=TX_TOPUP,
            reference_type=REFERENCE_TOPUP,
            reference_id=reference_id,
            description="Wallet top-up",
        )
        snapshot = wallet.to_dict()
    logger.info("wallet_topped_up", user_id=user_id, wallet_id=snapshot["id"], amount=int(amount))
    return snapshot


def get_wallet(user_id: str) -> dict[str, Any]:
    with session_scope() as session:
        user = get_user(session, user_id)
        wallet = get_user_wallet(session, user_id, user.role)
        if wallet is None:
            raise NotFoundError(f"Wallet for user {user_id} not found")
        return wallet.to_dict()
