"""
Trust level worker: recompute score and level for users and persist changes.

- update_user_trust(): one user; writes user fields + history + audit in one
  transaction, only when score or level changed.
- run_trust_level_worker(): batch over active caregivers; per-user failures
  are logged and counted, never abort the batch.
- trigger_user_trust_update(): event-driven single-user recompute, audited.
"""

from __future__ import annotations

import time
from typing import Any

from backend_careconnect.care_logging import get_logger
from backend_careconnect.config import get_settings
from backend_careconnect.core.clock import now_ts
from backend_careconnect.core.exceptions import ConflictError
from backend_careconnect.database import session_scope
from backend_careconnect.database.models import (
    ROLE_CAREGIVER,
    USER_ACTIVE,
    AuditEvent,
    TrustScoreHistory,
    User,
)
from backend_careconnect.database.repositories import get_user
from backend_careconnect.trust.levels import determine_trust_level
from backend_careconnect.trust.scoring import calculate_trust_score
from backend_careconnect.trust.signals import SqlTrustSignalSource, TrustSignalSource

logger = get_logger(__name__)

REASON_WORKER_RECALCULATION = "worker_recalculation"
REASON_TRIGGERED_PREFIX = "triggered:"
EVENT_TRUST_LEVEL_CHANGE = "trust_level_change"
EVENT_TRUST_RECOMPUTE = "trust_recompute"


def default_signal_source() -> TrustSignalSource:
    return SqlTrustSignalSource(on_time_grace_sec=get_settings().on_time_grace_sec)


def update_user_trust(
    user_id: str,
    source: TrustSignalSource | None = None,
    *,
    reason: str = REASON_WORKER_RECALCULATION,
) -> dict[str, Any]:
    """
    Recompute one user's trust. Returns a result dict; no_change=True when
    neither score nor level moved (nothing written). reason is stored as the
    history reason_code and the audit action. The user row update is
    guarded on the values read, so a concurrent writer raises ConflictError.
    """
    source = source or default_signal_source()
    result = calculate_trust_score(user_id, source)
    with session_scope() as session:
        user = get_user(session, user_id)
        current_score = int(user.trust_score or 0)
        current_level = user.trust_level or "L0"

    new_score = result.total_score
    new_level = determine_trust_level(current_level, new_score, source.get_prerequisites(user_id))

    if new_score == current_score and new_level == current_level:
        return {"success": True, "user_id": user_id, "no_change": True, "score": new_score, "level": new_level}

    delta = new_score - current_score
    now = now_ts()
    with session_scope() as session:
        updated = (
            session.query(User)
            .filter(User.id == user_id, User.trust_score == current_score, User.trust_level == current_level)
            .update(
                {"trust_score": new_score, "trust_level": new_level, "updated_at": now},
                synchronize_session=False,
            )
        )
        if updated != 1:
            raise ConflictError(f"Trust of user {user_id} changed concurrently")
        session.add(
            TrustScoreHistory(
                user_id=user_id,
                delta=delta,
                score_before=current_score,
                score_after=new_score,
                trust_level_before=current_level,
                trust_level_after=new_level,
                reason_code=reason,
                reason_detail=result.breakdown,
                created_at=now,
            )
        )
        session.add(
            AuditEvent(
                user_id=user_id,
                event_type=EVENT_TRUST_LEVEL_CHANGE,
                action=reason,
                old_level=current_level,
                new_level=new_level,
                details={"trust_score": new_score, "trust_score_delta": delta},
                created_at=now,
            )
        )

    logger.info(
        "trust_updated",
        user_id=user_id,
        previous_score=current_score,
        new_score=new_score,
        previous_level=current_level,
        new_level=new_level,
        reason=reason,
    )
    return {
        "success": True,
        "user_id": user_id,
        "previous_score": current_score,
        "new_score": new_score,
        "previous_level": current_level,
        "new_level": new_level,
        "breakdown": result.breakdown,
    }


def run_trust_level_worker(source: TrustSignalSource | None = None) -> dict[str, Any]:
    """Recompute trust for every active caregiver, sequentially."""
    source = source or default_signal_source()
    started = time.monotonic()
    with session_scope() as session:
        user_ids = [
            row.id
            for row in session.query(User.id)
            .filter(User.role == ROLE_CAREGIVER, User.status == USER_ACTIVE)
            .order_by(User.created_at, User.id)
            .all()
        ]

    summary: dict[str, Any] = {
        "total": len(user_ids),
        "updated": 0,
        "unchanged": 0,
        "errors": 0,
        "details": [],
        "failures": [],
    }
    for user_id in user_ids:
        try:
            result = update_user_trust(user_id, source)
        except Exception as e:
            summary["errors"] += 1
            summary["failures"].append({"user_id": user_id, "error": str(e)})
            logger.warning("trust_worker_user_failed", user_id=user_id, error=str(e))
            continue
        if result.get("no_change"):
            summary["unchanged"] += 1
        else:
            summary["updated"] += 1
            summary["details"].append(result)

    logger.info(
        "trust_worker_done",
        total=summary["total"],
        updated=summary["updated"],
        unchanged=summary["unchanged"],
        errors=summary["errors"],
        duration_ms=int((time.monotonic() - started) * 1000),
    )
    return summary


def trigger_user_trust_update(
    user_id: str,
    source: str = "event",
    signal_source: TrustSignalSource | None = None,
) -> dict[str, Any]:
    """Recompute one user after an event (job completion, review, ...) and audit the run."""
    started = time.monotonic()
    success = False
    try:
        result = update_user_trust(user_id, signal_source, reason=f"{REASON_TRIGGERED_PREFIX}{source}"[:64])
        success = True
        return result
    finally:
        duration_ms = int((time.monotonic() - started) * 1000)
        with session_scope() as session:
            session.add(
                AuditEvent(
                    user_id=user_id,
                    event_type=EVENT_TRUST_RECOMPUTE,
                    action=source,
                    details={"duration_ms": duration_ms, "success": success},
                )
            )
        logger.info("trust_recompute", user_id=user_id, source=source, duration_ms=duration_ms, success=success)
