"""
Job actions: create, publish, accept, check-in, check-out, cancel, expire.

Each action that changes status goes through execute_transition(), passing an
authorize callback (ownership / policy / trust checks against the locked row)
and a transition callback (escrow moves and field updates).
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from backend_careconnect.care_logging import get_logger
from backend_careconnect.config import get_settings
from backend_careconnect.core.clock import now_ts, to_unix
from backend_careconnect.core.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from backend_careconnect.database import session_scope
from backend_careconnect.database.models import (
    GPS_CHECK_IN,
    GPS_CHECK_OUT,
    ROLE_ADMIN,
    ROLE_CAREGIVER,
    ROLE_HIRER,
    USER_ACTIVE,
    CaregiverProfile,
    GpsEvent,
    Job,
    User,
)
from backend_careconnect.database.repositories import (
    find_overlapping_assignment,
    get_job,
    get_user,
)
from backend_careconnect.jobs.geo import GeoPoint, check_geofence, parse_geo
from backend_careconnect.jobs.state_machine import JobStatus, TransitionResult, execute_transition
from backend_careconnect.policy.gate import TRUST_LEVELS, ensure_allowed, meets_level
from backend_careconnect.wallet import escrow

logger = get_logger(__name__)

DEFAULT_MIN_TRUST_LEVEL = "L1"


def _load_user(user_id: str) -> User:
    with session_scope() as session:
        return get_user(session, user_id)


def _require_active(user: User) -> None:
    if user.status != USER_ACTIVE:
        raise AuthorizationError("Account is not active")


def _result(result: TransitionResult) -> dict[str, Any]:
    out = dict(result.job)
    out.update(result.details)
    return out


def get_job_detail(job_id: str) -> dict[str, Any]:
    with session_scope() as session:
        return get_job(session, job_id).to_dict()


def create_job_post(
    hirer_id: str,
    title: str,
    scheduled_start_at: Any,
    scheduled_end_at: Any,
    hourly_rate: int,
    total_hours: float | None = None,
    *,
    min_trust_level: str = DEFAULT_MIN_TRUST_LEVEL,
    preferred_caregiver_id: str | None = None,
    required_certifications: list[str] | None = None,
    lat: float | None = None,
    lng: float | None = None,
    geofence_radius_m: float | None = None,
) -> dict[str, Any]:
    """
    Create a job in draft. Amounts are computed once here and never change:
    total = round_half_up(rate * hours), fee = round_half_up(total * fee% / 100).
    total_hours defaults to the scheduled window length.
    """
    settings = get_settings()
    hirer = _load_user(hirer_id)
    if hirer.role != ROLE_HIRER:
        raise AuthorizationError("Only hirers can create jobs")
    _require_active(hirer)
    ensure_allowed(hirer, "job:create")

    title = (title or "").strip()
    if not title:
        raise ValidationError("Missing required field: title", details={"field": "title"})
    start = to_unix(scheduled_start_at)
    end = to_unix(scheduled_end_at)
    if end <= start:
        raise ValidationError("End date must be after start date", details={"field": "scheduled_end_at"})
    if total_hours is None:
        total_hours = (end - start) / 3600
    if min_trust_level not in TRUST_LEVELS:
        raise ValidationError(f"Invalid min_trust_level: {min_trust_level}", details={"field": "min_trust_level"})

    amounts = escrow.compute_job_amounts(int(hourly_rate), float(total_hours), settings.platform_fee_percent)

    with session_scope() as session:
        if preferred_caregiver_id:
            preferred = session.get(User, preferred_caregiver_id)
            if preferred is None or preferred.role != ROLE_CAREGIVER or preferred.status != USER_ACTIVE:
                raise ValidationError(
                    "Preferred caregiver is invalid or inactive",
                    details={"field": "preferred_caregiver_id"},
                )
        job = Job(
            hirer_id=hirer_id,
            title=title,
            status=JobStatus.DRAFT.value,
            scheduled_start_at=start,
            scheduled_end_at=end,
            hourly_rate=int(hourly_rate),
            total_hours=float(total_hours),
            total_amount=amounts.total_amount,
            platform_fee_percent=settings.platform_fee_percent,
            platform_fee_amount=amounts.platform_fee_amount,
            min_trust_level=min_trust_level,
            preferred_caregiver_id=preferred_caregiver_id,
            required_certifications=list(required_certifications or []),
            lat=lat,
            lng=lng,
            geofence_radius_m=geofence_radius_m if geofence_radius_m is not None else settings.geofence_max_radius_m,
        )
        session.add(job)
        session.flush()
        snapshot = job.to_dict()

    logger.info(
        "job_created",
        job_id=snapshot["id"],
        hirer_id=hirer_id,
        total_amount=snapshot["total_amount"],
        platform_fee_amount=snapshot["platform_fee_amount"],
    )
    return snapshot


def publish_job_post(job_id: str, hirer_id: str) -> dict[str, Any]:
    """draft → posted. Debits the hirer's available balance by the job total."""
    hirer = _load_user(hirer_id)

    def authorize(job: Job) -> None:
        if job.hirer_id != hirer_id:
            raise AuthorizationError("Not authorized to publish this job")
        _require_active(hirer)
        ensure_allowed(hirer, "job:publish")

    def publish(session: Session, job: Job) -> dict[str, Any]:
        escrow.hold_for_publish(session, job)
        return {"held_amount": job.total_amount}

    result = execute_transition(
        job_id, JobStatus.POSTED, hirer_id, {"action": "publish"}, publish, authorize=authorize
    )
    return _result(result)


def _caregiver_certifications(session: Session, caregiver_id: str) -> set[str]:
    profile = session.get(CaregiverProfile, caregiver_id)
    if profile is None:
        return set()
    return {str(c).strip().lower() for c in (profile.certifications or []) if str(c).strip()}


def accept_job(job_id: str, caregiver_id: str) -> dict[str, Any]:
    """
    posted → assigned. Checks trust level, reservation, certifications and
    schedule overlap, then funds the job's escrow wallet.
    """
    caregiver = _load_user(caregiver_id)
    if caregiver.role != ROLE_CAREGIVER:
        raise AuthorizationError("Only caregivers can accept jobs")
    _require_active(caregiver)
    currency = get_settings().currency

    def authorize(job: Job) -> None:
        ensure_allowed(caregiver, "job:accept")
        if not meets_level(caregiver.trust_level, job.min_trust_level):
            raise AuthorizationError(
                f"Insufficient trust level. Required: {job.min_trust_level}, "
                f"Your level: {caregiver.trust_level}"
            )
        if job.preferred_caregiver_id and job.preferred_caregiver_id != caregiver_id:
            raise ValidationError("This job is reserved for another caregiver")

    def accept(session: Session, job: Job) -> dict[str, Any]:
        required = {str(c).strip().lower() for c in (job.required_certifications or []) if str(c).strip()}
        if required:
            missing = sorted(required - _caregiver_certifications(session, caregiver_id))
            if missing:
                raise ValidationError(
                    "Missing required certifications for this job",
                    details={"missing_certifications": missing},
                )
        # serialize assignments per caregiver so two overlapping accepts cannot both pass
        session.query(User).filter(User.id == caregiver_id).with_for_update().one()
        overlapping = find_overlapping_assignment(
            session,
            caregiver_id,
            job.scheduled_start_at,
            job.scheduled_end_at,
            exclude_job_id=job.id,
        )
        if overlapping is not None:
            raise ConflictError(
                "Job schedule overlaps with an active assignment",
                details={"conflicting_job_id": overlapping.id},
            )
        job.caregiver_id = caregiver_id
        wallet = escrow.fund_escrow(session, job, currency)
        return {"escrow_wallet_id": wallet.id}

    result = execute_transition(
        job_id, JobStatus.ASSIGNED, caregiver_id, {"action": "accept"}, accept, authorize=authorize
    )
    return _result(result)


def _record_gps(session: Session, job: Job, caregiver_id: str, event_type: str, point: GeoPoint) -> None:
    session.add(
        GpsEvent(
            job_id=job.id,
            caregiver_id=caregiver_id,
            event_type=event_type,
            lat=point.lat,
            lng=point.lng,
            accuracy_m=point.accuracy_m,
            fraud_indicators=list(point.fraud_indicators),
        )
    )


def _as_geo(geo: GeoPoint | dict[str, Any] | None) -> GeoPoint | None:
    if geo is None or isinstance(geo, GeoPoint):
        return geo
    return parse_geo(geo)


def check_in(job_id: str, caregiver_id: str, geo: GeoPoint | dict[str, Any] | None = None) -> dict[str, Any]:
    """assigned → in_progress. Assignee only; GPS, when given, must be inside the geofence."""
    caregiver = _load_user(caregiver_id)
    point = _as_geo(geo)
    max_radius = get_settings().geofence_max_radius_m

    def authorize(job: Job) -> None:
        ensure_allowed(caregiver, "job:checkin")
        if job.caregiver_id != caregiver_id:
            raise AuthorizationError("Not authorized to check in to this job")

    def start(session: Session, job: Job) -> dict[str, Any]:
        if point is None:
            return {}
        check_geofence(point, job.lat, job.lng, job.geofence_radius_m, max_radius)
        _record_gps(session, job, caregiver_id, GPS_CHECK_IN, point)
        return {"gps": point.to_dict()}

    context = {"action": "check_in", "gps": point.to_dict() if point else None}
    result = execute_transition(job_id, JobStatus.IN_PROGRESS, caregiver_id, context, start, authorize=authorize)
    return _result(result)


def _already_completed(job_id: str) -> dict[str, Any]:
    return {"job_id": job_id, "status": JobStatus.COMPLETED.value, "already_completed": True}


def check_out(job_id: str, caregiver_id: str, geo: GeoPoint | dict[str, Any] | None = None) -> dict[str, Any]:
    """
    in_progress → completed with escrow settlement. Idempotent: a completed
    job (including one completed by a concurrent call) returns
    already_completed without touching any wallet.
    """
    caregiver = _load_user(caregiver_id)
    point = _as_geo(geo)
    settings = get_settings()
    currency = settings.currency

    with session_scope() as session:
        current = get_job(session, job_id)
        status, assignee = current.status, current.caregiver_id
    if status == JobStatus.COMPLETED.value:
        if assignee != caregiver_id:
            raise AuthorizationError("Not authorized to check out from this job")
        logger.info("job_checkout_already_completed", job_id=job_id, caregiver_id=caregiver_id)
        return _already_completed(job_id)

    def authorize(job: Job) -> None:
        ensure_allowed(caregiver, "job:checkout")
        if job.caregiver_id != caregiver_id:
            raise AuthorizationError("Not authorized to check out from this job")

    def settle(session: Session, job: Job) -> dict[str, Any]:
        if point is not None:
            check_geofence(point, job.lat, job.lng, job.geofence_radius_m, settings.geofence_max_radius_m)
            _record_gps(session, job, caregiver_id, GPS_CHECK_OUT, point)
        settlement = escrow.settle_escrow(session, job, currency)
        return {"caregiver_payment": settlement.caregiver_payment, "platform_fee": settlement.platform_fee}

    context = {"action": "check_out", "gps": point.to_dict() if point else None}
    try:
        result = execute_transition(
            job_id, JobStatus.COMPLETED, caregiver_id, context, settle, authorize=authorize
        )
    except (ConflictError, InvalidTransitionError):
        with session_scope() as session:
            if get_job(session, job_id).status == JobStatus.COMPLETED.value:
                logger.info("job_checkout_lost_race", job_id=job_id, caregiver_id=caregiver_id)
                return _already_completed(job_id)
        raise

    return {
        "job_id": job_id,
        "status": result.job["status"],
        "caregiver_payment": result.details["caregiver_payment"],
        "platform_fee": result.details["platform_fee"],
    }


def cancel_job(job_id: str, acting_user_id: str, reason: str | None = None) -> dict[str, Any]:
    """
    posted / assigned / in_progress → cancelled by the hirer, the assigned
    caregiver, or an admin. Posted jobs return the publish hold to the hirer;
    assigned and in-progress jobs drain the escrow back to the hirer.
    """
    actor = _load_user(acting_user_id)

    def authorize(job: Job) -> None:
        if actor.role == ROLE_ADMIN:
            return
        if acting_user_id not in (job.hirer_id, job.caregiver_id):
            raise AuthorizationError("Not authorized to cancel this job")
        ensure_allowed(actor, "job:cancel")

    def cancel(session: Session, job: Job) -> dict[str, Any]:
        if job.status == JobStatus.POSTED.value:
            refunded = escrow.refund_publish_hold(session, job)
        else:
            refunded = escrow.refund_escrow(session, job)
        job.cancelled_by = acting_user_id
        job.cancel_reason = (reason or "").strip() or None
        return {"refunded_amount": refunded}

    context = {"action": "cancel", "reason": reason}
    result = execute_transition(job_id, JobStatus.CANCELLED, acting_user_id, context, cancel, authorize=authorize)
    return _result(result)


def expire_job(job_id: str) -> dict[str, Any]:
    """posted → expired, returning the publish hold to the hirer."""

    def expire(session: Session, job: Job) -> dict[str, Any]:
        return {"refunded_amount": escrow.refund_publish_hold(session, job)}

    result = execute_transition(job_id, JobStatus.EXPIRED, None, {"action": "expire"}, expire)
    return _result(result)


def expire_stale_posts(now: int | None = None, limit: int = 500) -> dict[str, int]:
    """Expire posted jobs whose scheduled start has passed. Returns counts."""
    now = now if now is not None else now_ts()
    with session_scope() as session:
        job_ids = [
            row.id
            for row in session.query(Job.id)
            .filter(Job.status == JobStatus.POSTED.value, Job.scheduled_start_at <= now)
            .order_by(Job.scheduled_start_at)
            .limit(limit)
            .all()
        ]
    expired = 0
    skipped = 0
    errors = 0
    for job_id in job_ids:
        try:
            expire_job(job_id)
            expired += 1
        except (ConflictError, InvalidTransitionError, NotFoundError):
            skipped += 1
        except Exception as e:
            errors += 1
            logger.warning("job_expire_failed", job_id=job_id, error=str(e))
    if job_ids:
        logger.info("stale_posts_expired", checked=len(job_ids), expired=expired, skipped=skipped, errors=errors)
    return {"checked": len(job_ids), "expired": expired, "skipped": skipped, "errors": errors}
