"""
Tests for accept_job eligibility: schedule overlap, trust level, reservation, certifications.
"""

from __future__ import annotations

import pytest

from backend_careconnect.core.exceptions import AuthorizationError, ConflictError, ValidationError
from backend_careconnect.core.clock import windows_overlap
from backend_careconnect.database import session_scope
from backend_careconnect.database.models import Job, Wallet
from backend_careconnect.jobs import service


@pytest.fixture
def publish(make_job):
    def _publish(hirer_id, start_hour, end_hour, **kwargs):
        job = make_job(hirer_id, start_hour, end_hour, **kwargs)
        service.publish_job_post(job["id"], hirer_id)
        return job

    return _publish


def _status(job_id):
    with session_scope() as session:
        return session.get(Job, job_id).status


def test_windows_overlap_is_half_open():
    assert windows_overlap(9, 12, 10, 11) is True
    assert windows_overlap(9, 12, 11, 14) is True
    assert windows_overlap(9, 12, 12, 13) is False
    assert windows_overlap(13, 16, 9, 12) is False


def test_overlapping_assignment_conflicts(make_user, publish):
    hirer = make_user("hirer", balance=5000)
    caregiver = make_user("caregiver")
    morning = publish(hirer["id"], 9, 12)
    inner = publish(hirer["id"], 10, 11)
    afternoon = publish(hirer["id"], 13, 16)

    service.accept_job(morning["id"], caregiver["id"])

    with pytest.raises(ConflictError) as exc_info:
        service.accept_job(inner["id"], caregiver["id"])
    assert exc_info.value.status_code == 409
    assert exc_info.value.details["conflicting_job_id"] == morning["id"]
    assert _status(inner["id"]) == "posted"
    with session_scope() as session:
        assert session.query(Wallet).filter(Wallet.job_id == inner["id"]).count() == 0

    assert service.accept_job(afternoon["id"], caregiver["id"])["status"] == "assigned"


def test_touching_windows_do_not_conflict(make_user, publish):
    hirer = make_user("hirer", balance=5000)
    caregiver = make_user("caregiver")
    first = publish(hirer["id"], 9, 12)
    second = publish(hirer["id"], 12, 14)
    service.accept_job(first["id"], caregiver["id"])
    assert service.accept_job(second["id"], caregiver["id"])["status"] == "assigned"


def test_finished_jobs_do_not_block(make_user, publish):
    hirer = make_user("hirer", balance=5000)
    caregiver = make_user("caregiver")
    first = publish(hirer["id"], 9, 12)
    service.accept_job(first["id"], caregiver["id"])
    service.cancel_job(first["id"], hirer["id"])

    overlapping = publish(hirer["id"], 10, 11)
    assert service.accept_job(overlapping["id"], caregiver["id"])["status"] == "assigned"


def test_other_caregivers_are_not_blocked(make_user, publish):
    hirer = make_user("hirer", balance=5000)
    first_cg = make_user("caregiver")
    second_cg = make_user("caregiver")
    a = publish(hirer["id"], 9, 12)
    b = publish(hirer["id"], 10, 11)
    service.accept_job(a["id"], first_cg["id"])
    assert service.accept_job(b["id"], second_cg["id"])["status"] == "assigned"


def test_accept_twice_is_invalid(make_user, publish):
    from backend_careconnect.core.exceptions import InvalidTransitionError

    hirer = make_user("hirer", balance=5000)
    first_cg = make_user("caregiver")
    second_cg = make_user("caregiver")
    job = publish(hirer["id"], 9, 12)
    service.accept_job(job["id"], first_cg["id"])
    with pytest.raises(InvalidTransitionError):
        service.accept_job(job["id"], second_cg["id"])


def test_min_trust_level_enforced(make_user, publish):
    hirer = make_user("hirer", balance=5000)
    l1 = make_user("caregiver")
    l2 = make_user("caregiver", kyc=True)
    assert l2["trust_level"] == "L2"
    job = publish(hirer["id"], 9, 12, min_trust_level="L2")

    with pytest.raises(AuthorizationError, match="Insufficient trust level. Required: L2, Your level: L1"):
        service.accept_job(job["id"], l1["id"])
    assert service.accept_job(job["id"], l2["id"])["caregiver_id"] == l2["id"]


def test_l0_caregiver_cannot_accept(make_user, publish):
    hirer = make_user("hirer", balance=5000)
    l0 = make_user("caregiver", phone=False)
    job = publish(hirer["id"], 9, 12, min_trust_level="L0")
    with pytest.raises(AuthorizationError, match="Trust level L1 required"):
        service.accept_job(job["id"], l0["id"])


def test_hirer_cannot_accept(make_user, publish):
    hirer = make_user("hirer", balance=5000)
    job = publish(hirer["id"], 9, 12)
    with pytest.raises(AuthorizationError, match="Only caregivers"):
        service.accept_job(job["id"], hirer["id"])


def test_reserved_job_only_for_preferred_caregiver(make_user, publish):
    hirer = make_user("hirer", balance=5000)
    preferred = make_user("caregiver")
    other = make_user("caregiver")
    job = publish(hirer["id"], 9, 12, preferred_caregiver_id=preferred["id"])

    with pytest.raises(ValidationError, match="reserved for another caregiver"):
        service.accept_job(job["id"], other["id"])
    assert service.accept_job(job["id"], preferred["id"])["caregiver_id"] == preferred["id"]


def test_required_certifications(make_user, publish):
    hirer = make_user("hirer", balance=5000)
    uncertified = make_user("caregiver", certifications=["first_aid"])
    certified = make_user("caregiver", certifications=["First_Aid", "dementia_care"])
    job = publish(hirer["id"], 9, 12, required_certifications=["first_aid", "dementia_care"])

    with pytest.raises(ValidationError) as exc_info:
        service.accept_job(job["id"], uncertified["id"])
    assert exc_info.value.details["missing_certifications"] == ["dementia_care"]
    assert service.accept_job(job["id"], certified["id"])["status"] == "assigned"
