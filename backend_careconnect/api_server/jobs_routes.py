"""
FastAPI router: job lifecycle actions.

POST /jobs, POST /jobs/{id}/publish|accept|check-in|check-out|cancel, GET /jobs/{id}.
Responses use the {success, data} envelope; errors are rendered by the
handlers in server.py.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from backend_careconnect.api_server.deps import get_acting_user, require_policy
from backend_careconnect.core.exceptions import AuthorizationError
from backend_careconnect.database.models import ROLE_ADMIN, ROLE_CAREGIVER, User
from backend_careconnect.jobs import service
from backend_careconnect.jobs.state_machine import JobStatus

router = APIRouter(prefix="/jobs", tags=["jobs"])


class CreateJobRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    scheduled_start_at: int = Field(..., description="Unix seconds")
    scheduled_end_at: int = Field(..., description="Unix seconds")
    hourly_rate: int = Field(..., gt=0)
    total_hours: float | None = Field(None, gt=0)
    min_trust_level: str = Field("L1", pattern="^L[0-3]$")
    preferred_caregiver_id: str | None = None
    required_certifications: list[str] = Field(default_factory=list)
    lat: float | None = Field(None, ge=-90, le=90)
    lng: float | None = Field(None, ge=-180, le=180)
    geofence_radius_m: float | None = Field(None, gt=0)


class GeoRequest(BaseModel):
    lat: float | None = None
    lng: float | None = None
    accuracy_m: float | None = Field(None, ge=0)


class CancelRequest(BaseModel):
    reason: str | None = Field(None, max_length=1000)


def _ok(data: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": True, "data": data})


def _geo(body: GeoRequest | None) -> dict[str, Any] | None:
    if body is None:
        return None
    return body.model_dump(exclude_none=True) or None


@router.post("")
def create_job(body: CreateJobRequest, user: User = Depends(require_policy("job:create"))):
    job = service.create_job_post(
        user.id,
        body.title,
        body.scheduled_start_at,
        body.scheduled_end_at,
        body.hourly_rate,
        body.total_hours,
        min_trust_level=body.min_trust_level,
        preferred_caregiver_id=body.preferred_caregiver_id,
        required_certifications=body.required_certifications,
        lat=body.lat,
        lng=body.lng,
        geofence_radius_m=body.geofence_radius_m,
    )
    return _ok(job, status_code=201)


@router.get("/{job_id}")
def get_job(job_id: str, user: User = Depends(require_policy("job:get"))):
    job = service.get_job_detail(job_id)
    is_party = user.id in (job["hirer_id"], job["caregiver_id"])
    open_to_caregiver = user.role == ROLE_CAREGIVER and job["status"] == JobStatus.POSTED.value
    if user.role != ROLE_ADMIN and not is_party and not open_to_caregiver:
        raise AuthorizationError("Not authorized to view this job")
    return _ok(job)


@router.post("/{job_id}/publish")
def publish_job(job_id: str, user: User = Depends(require_policy("job:publish"))):
    return _ok(service.publish_job_post(job_id, user.id))


@router.post("/{job_id}/accept")
def accept_job(job_id: str, user: User = Depends(require_policy("job:accept"))):
    return _ok(service.accept_job(job_id, user.id))


@router.post("/{job_id}/check-in")
def check_in(job_id: str, body: GeoRequest | None = None, user: User = Depends(require_policy("job:checkin"))):
    return _ok(service.check_in(job_id, user.id, _geo(body)))


@router.post("/{job_id}/check-out")
def check_out(job_id: str, body: GeoRequest | None = None, user: User = Depends(require_policy("job:checkout"))):
    return _ok(service.check_out(job_id, user.id, _geo(body)))


@router.post("/{job_id}/cancel")
def cancel_job(job_id: str, body: CancelRequest | None = None, user: User = Depends(get_acting_user)):
    reason = body.reason if body else None
    return _ok(service.cancel_job(job_id, user.id, reason))
