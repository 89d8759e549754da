"""
Trust signals: behavioral history and verification prerequisites of a user.

Scoring reads signals only through a TrustSignalSource, so the worker can run
against the database (SqlTrustSignalSource) or against fixed values in tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from sqlalchemy import func

from backend_careconnect.database import session_scope
from backend_careconnect.database.models import (
    GPS_CHECK_IN,
    KYC_APPROVED,
    BankAccount,
    CaregiverProfile,
    GpsEvent,
    Job,
    KycRecord,
    Review,
    User,
)


@dataclass
class TrustSignals:
    completed_jobs: int = 0
    review_ratings: list[int] = field(default_factory=list)
    caregiver_cancellations: int = 0
    gps_flagged_events: int = 0
    on_time_checkins: int = 0
    profile_complete: bool = False


@dataclass(frozen=True)
class TrustPrerequisites:
    phone_verified: bool = False
    email_verified: bool = False
    kyc_approved: bool = False
    bank_verified: bool = False

    @property
    def l2(self) -> bool:
        return self.phone_verified and self.kyc_approved

    @property
    def l3(self) -> bool:
        return self.l2 and self.bank_verified


class TrustSignalSource(ABC):
    """Gateway for everything the trust worker reads about a user."""

    @abstractmethod
    def get_signals(self, user_id: str) -> TrustSignals:
        raise NotImplementedError

    @abstractmethod
    def get_prerequisites(self, user_id: str) -> TrustPrerequisites:
        raise NotImplementedError


class SqlTrustSignalSource(TrustSignalSource):
    """Reads signals from jobs, reviews, GPS events, profiles, KYC and bank records."""

    def __init__(self, on_time_grace_sec: int = 15 * 60) -> None:
        self.on_time_grace_sec = on_time_grace_sec

    def get_signals(self, user_id: str) -> TrustSignals:
        with session_scope() as session:
            completed = (
                session.query(func.count(Job.id))
                .filter(Job.caregiver_id == user_id, Job.status == "completed")
                .scalar()
            )
            ratings = [
                int(r.rating)
                for r in session.query(Review.rating).filter(Review.caregiver_id == user_id).all()
            ]
            cancellations = (
                session.query(func.count(Job.id))
                .filter(
                    Job.caregiver_id == user_id,
                    Job.status == "cancelled",
                    Job.cancelled_by == user_id,
                )
                .scalar()
            )
            indicator_lists = session.query(GpsEvent.fraud_indicators).filter(GpsEvent.caregiver_id == user_id).all()
            flagged = sum(1 for (indicators,) in indicator_lists if indicators)
            on_time = (
                session.query(func.count(GpsEvent.id))
                .join(Job, Job.id == GpsEvent.job_id)
                .filter(
                    GpsEvent.caregiver_id == user_id,
                    GpsEvent.event_type == GPS_CHECK_IN,
                    GpsEvent.created_at <= Job.scheduled_start_at + self.on_time_grace_sec,
                )
                .scalar()
            )
            profile = session.get(CaregiverProfile, user_id)
            profile_complete = bool(
                profile is not None and profile.display_name and profile.bio and profile.experience_years
            )
            return TrustSignals(
                completed_jobs=int(completed or 0),
                review_ratings=ratings,
                caregiver_cancellations=int(cancellations or 0),
                gps_flagged_events=flagged,
                on_time_checkins=int(on_time or 0),
                profile_complete=profile_complete,
            )

    def get_prerequisites(self, user_id: str) -> TrustPrerequisites:
        with session_scope() as session:
            user = session.get(User, user_id)
            if user is None:
                return TrustPrerequisites()
            latest_kyc = (
                session.query(KycRecord.status)
                .filter(KycRecord.user_id == user_id)
                .order_by(KycRecord.created_at.desc(), KycRecord.id.desc())
                .first()
            )
            bank = (
                session.query(BankAccount.id)
                .filter(BankAccount.user_id == user_id, BankAccount.is_verified.is_(True))
                .first()
            )
            return TrustPrerequisites(
                phone_verified=bool(user.is_phone_verified),
                email_verified=bool(user.is_email_verified),
                kyc_approved=latest_kyc is not None and latest_kyc[0] == KYC_APPROVED,
                bank_verified=bank is not None,
            )
