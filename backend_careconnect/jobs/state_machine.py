"""
Job state machine: validates and executes job status transitions.

Lifecycle:
    draft → posted → assigned → in_progress → completed
    posted → cancelled | expired
    assigned → cancelled
    in_progress → cancelled

completed, cancelled and expired are terminal. Transitions run in one
transaction: row lock, re-validate, side effects (escrow), status-guarded
UPDATE, transition log. Any failure rolls the whole transition back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from sqlalchemy.orm import Session

from backend_careconnect.care_logging import get_logger, job_context
from backend_careconnect.core.clock import now_ts
from backend_careconnect.core.exceptions import ConflictError, InvalidTransitionError
from backend_careconnect.database import session_scope
from backend_careconnect.database.models import Job, JobTransitionLog
from backend_careconnect.database.repositories import get_job, lock_job

logger = get_logger(__name__)


class JobStatus(str, Enum):
    DRAFT = "draft"
    POSTED = "posted"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


VALID_TRANSITIONS: dict[str, frozenset[str]] = {
    JobStatus.DRAFT.value: frozenset({JobStatus.POSTED.value}),
    JobStatus.POSTED.value: frozenset(
        {JobStatus.ASSIGNED.value, JobStatus.CANCELLED.value, JobStatus.EXPIRED.value}
    ),
    JobStatus.ASSIGNED.value: frozenset({JobStatus.IN_PROGRESS.value, JobStatus.CANCELLED.value}),
    JobStatus.IN_PROGRESS.value: frozenset({JobStatus.COMPLETED.value, JobStatus.CANCELLED.value}),
    JobStatus.COMPLETED.value: frozenset(),
    JobStatus.CANCELLED.value: frozenset(),
    JobStatus.EXPIRED.value: frozenset(),
}

TERMINAL_STATES = frozenset(s for s, targets in VALID_TRANSITIONS.items() if not targets)

# Column stamped with the transition time when a job enters the state.
_STATE_TIMESTAMP_COLUMN = {
    JobStatus.POSTED.value: "posted_at",
    JobStatus.ASSIGNED.value: "assigned_at",
    JobStatus.IN_PROGRESS.value: "started_at",
    JobStatus.COMPLETED.value: "completed_at",
    JobStatus.CANCELLED.value: "cancelled_at",
    JobStatus.EXPIRED.value: "expired_at",
}

TransitionFn = Callable[[Session, Job], "dict[str, Any] | None"]
AuthorizeFn = Callable[[Job], None]


@dataclass
class TransitionResult:
    job: dict[str, Any]
    details: dict[str, Any] = field(default_factory=dict)


def _state_value(state: JobStatus | str | None) -> str | None:
    if isinstance(state, JobStatus):
        return state.value
    return state


def is_valid_transition(from_state: JobStatus | str | None, to_state: JobStatus | str | None) -> bool:
    """Pure lookup. Unknown states and self-transitions are never valid."""
    from_state = _state_value(from_state)
    to_state = _state_value(to_state)
    if from_state is None or to_state is None or from_state == to_state:
        return False
    return to_state in VALID_TRANSITIONS.get(from_state, frozenset())


def get_valid_transitions(from_state: JobStatus | str | None) -> list[str]:
    """Allowed target states, sorted; empty for terminal or unknown states."""
    return sorted(VALID_TRANSITIONS.get(_state_value(from_state), frozenset()))


def is_terminal(state: JobStatus | str) -> bool:
    return _state_value(state) in TERMINAL_STATES


def execute_transition(
    job_id: str,
    to_state: JobStatus | str,
    acting_user_id: str | None,
    context: dict[str, Any] | None,
    transition_fn: TransitionFn,
    *,
    authorize: AuthorizeFn | None = None,
) -> TransitionResult:
    """
    Move a job to to_state.

    transition_fn(session, job) runs inside the transaction after the row lock
    and authorization; it performs the side effects (escrow moves, field
    updates on job) and returns a details dict. The status itself is written
    with UPDATE ... WHERE status = <from>; if no row matches, another writer
    won and ConflictError is raised.
    """
    to_state = _state_value(to_state)
    with job_context(job_id, to_state=to_state):
        return _run_transition(job_id, to_state, acting_user_id, context, transition_fn, authorize)


def _run_transition(
    job_id: str,
    to_state: str,
    acting_user_id: str | None,
    context: dict[str, Any] | None,
    transition_fn: TransitionFn,
    authorize: AuthorizeFn | None,
) -> TransitionResult:
    with session_scope() as session:
        from_state = get_job(session, job_id).status

    if not is_valid_transition(from_state, to_state):
        logger.info("job_transition_rejected", job_id=job_id, from_state=from_state, to_state=to_state)
        raise InvalidTransitionError(from_state, to_state, job_id)

    with session_scope() as session:
        job = lock_job(session, job_id)
        if job.status != from_state:
            raise ConflictError(
                f"Job {job_id} changed from {from_state} to {job.status} concurrently",
                details={"job_id": job_id, "expected": from_state, "actual": job.status},
            )
        if authorize is not None:
            authorize(job)

        details = transition_fn(session, job) or {}
        session.flush()

        now = now_ts()
        values: dict[str, Any] = {"status": to_state, "updated_at": now}
        ts_column = _STATE_TIMESTAMP_COLUMN.get(to_state)
        if ts_column:
            values[ts_column] = now
        updated = (
            session.query(Job)
            .filter(Job.id == job_id, Job.status == from_state)
            .update(values, synchronize_session=False)
        )
        if updated != 1:
            raise ConflictError(
                f"Job {job_id} is no longer {from_state}",
                details={"job_id": job_id, "expected": from_state},
            )

        session.add(
            JobTransitionLog(
                job_id=job_id,
                from_status=from_state,
                to_status=to_state,
                acting_user_id=acting_user_id,
                context=context or {},
                created_at=now,
            )
        )
        session.flush()
        session.refresh(job)
        snapshot = job.to_dict()

    logger.info(
        "job_transition_committed",
        job_id=job_id,
        from_state=from_state,
        to_state=to_state,
        acting_user_id=acting_user_id,
    )
    return TransitionResult(job=snapshot, details=details)


def get_transition_log(job_id: str) -> list[dict[str, Any]]:
    with session_scope() as session:
        rows = (
            session.query(JobTransitionLog)
            .filter(JobTransitionLog.job_id == job_id)
            .order_by(JobTransitionLog.id)
            .all()
        )
        return [
            {
                "from_status": r.from_status,
                "to_status": r.to_status,
                "acting_user_id": r.acting_user_id,
                "context": r.context,
                "created_at": r.created_at,
            }
            for r in rows
        ]
