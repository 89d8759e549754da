"""
Tests for the trust level worker: persistence, batch behavior, audit records, SQL signals.
"""

from __future__ import annotations

import pytest

from backend_careconnect.accounts import service as accounts
from backend_careconnect.core.exceptions import NotFoundError
from backend_careconnect.database import session_scope
from backend_careconnect.database.models import AuditEvent, KycRecord, TrustScoreHistory, User
from backend_careconnect.jobs import service as jobs
from backend_careconnect.trust.signals import SqlTrustSignalSource, TrustPrerequisites, TrustSignals
from backend_careconnect.trust.worker import (
    run_trust_level_worker,
    trigger_user_trust_update,
    update_user_trust,
)


def _history(user_id):
    with session_scope() as session:
        return (
            session.query(TrustScoreHistory)
            .filter(TrustScoreHistory.user_id == user_id)
            .order_by(TrustScoreHistory.id)
            .all()
        )


def _audit(user_id, event_type):
    with session_scope() as session:
        return (
            session.query(AuditEvent)
            .filter(AuditEvent.user_id == user_id, AuditEvent.event_type == event_type)
            .order_by(AuditEvent.id)
            .all()
        )


def test_update_writes_user_history_and_audit(make_user, fake_signal_source):
    caregiver = make_user("caregiver")
    source = fake_signal_source(
        signals={caregiver["id"]: TrustSignals(completed_jobs=6, review_ratings=[5] * 4)},
        prerequisites={caregiver["id"]: TrustPrerequisites(phone_verified=True, kyc_approved=True, bank_verified=True)},
    )

    result = update_user_trust(caregiver["id"], source)

    assert result["previous_score"] == 50
    assert result["new_score"] == 92
    assert result["previous_level"] == "L1"
    assert result["new_level"] == "L3"
    profile = accounts.get_user_profile(caregiver["id"])
    assert (profile["trust_score"], profile["trust_level"]) == (92, "L3")

    last = _history(caregiver["id"])[-1]
    assert last.delta == 42
    assert (last.score_before, last.score_after) == (50, 92)
    assert (last.trust_level_before, last.trust_level_after) == ("L1", "L3")
    assert last.reason_code == "worker_recalculation"
    assert last.reason_detail["completed_jobs"] == 30

    audit = _audit(caregiver["id"], "trust_level_change")[-1]
    assert (audit.old_level, audit.new_level) == ("L1", "L3")
    assert audit.details == {"trust_score": 92, "trust_score_delta": 42}


def test_unchanged_user_writes_nothing(make_user, fake_signal_source):
    caregiver = make_user("caregiver")
    source = fake_signal_source(prerequisites={caregiver["id"]: TrustPrerequisites(phone_verified=True)})
    before = len(_history(caregiver["id"]))

    result = update_user_trust(caregiver["id"], source)

    assert result == {"success": True, "user_id": caregiver["id"], "no_change": True, "score": 50, "level": "L1"}
    assert len(_history(caregiver["id"])) == before


def test_hysteresis_keeps_l3_through_worker(make_user, fake_signal_source):
    caregiver = make_user("caregiver")
    prereqs = {caregiver["id"]: TrustPrerequisites(phone_verified=True, kyc_approved=True, bank_verified=True)}
    update_user_trust(caregiver["id"], fake_signal_source({caregiver["id"]: TrustSignals(completed_jobs=6)}, prereqs))
    assert accounts.get_user_profile(caregiver["id"])["trust_level"] == "L3"  # 80

    # 76: below the entry threshold, above the keep threshold
    dipped = TrustSignals(completed_jobs=6, review_ratings=[3] * 6, caregiver_cancellations=1)
    update_user_trust(caregiver["id"], fake_signal_source({caregiver["id"]: dipped}, prereqs))
    profile = accounts.get_user_profile(caregiver["id"])
    assert (profile["trust_score"], profile["trust_level"]) == (76, "L3")


def test_unknown_user_raises(care_db, fake_signal_source):
    with pytest.raises(NotFoundError):
        update_user_trust("missing-user", fake_signal_source())


def test_batch_covers_active_caregivers_only(make_user, fake_signal_source):
    active = make_user("caregiver")
    suspended = make_user("caregiver")
    hirer = make_user("hirer")
    accounts.set_user_status(suspended["id"], "suspended")
    source = fake_signal_source(
        signals={
            active["id"]: TrustSignals(completed_jobs=1),
            suspended["id"]: TrustSignals(completed_jobs=1),
            hirer["id"]: TrustSignals(completed_jobs=1),
        },
        prerequisites={active["id"]: TrustPrerequisites(phone_verified=True)},
    )

    summary = run_trust_level_worker(source)

    assert summary["total"] == 1
    assert summary["updated"] == 1
    assert summary["unchanged"] == 0
    assert summary["errors"] == 0
    assert summary["details"][0]["user_id"] == active["id"]
    assert accounts.get_user_profile(suspended["id"])["trust_score"] == 50
    assert accounts.get_user_profile(hirer["id"])["trust_score"] == 50

    again = run_trust_level_worker(source)
    assert (again["updated"], again["unchanged"]) == (0, 1)


def test_batch_counts_failures_and_continues(make_user, fake_signal_source):
    ok = make_user("caregiver")
    broken = make_user("caregiver")
    source = fake_signal_source(
        signals={ok["id"]: TrustSignals(completed_jobs=2)},
        prerequisites={ok["id"]: TrustPrerequisites(phone_verified=True)},
        failing={broken["id"]},
    )

    summary = run_trust_level_worker(source)

    assert summary["total"] == 2
    assert summary["updated"] == 1
    assert summary["errors"] == 1
    assert summary["failures"][0]["user_id"] == broken["id"]
    assert "signal store unavailable" in summary["failures"][0]["error"]
    assert accounts.get_user_profile(ok["id"])["trust_score"] == 60


def test_trigger_records_recompute_audit(make_user, fake_signal_source):
    caregiver = make_user("caregiver")
    source = fake_signal_source(
        signals={caregiver["id"]: TrustSignals(completed_jobs=1)},
        prerequisites={caregiver["id"]: TrustPrerequisites(phone_verified=True)},
    )

    result = trigger_user_trust_update(caregiver["id"], "job_completed", source)

    assert result["new_score"] == 55
    audit = _audit(caregiver["id"], "trust_recompute")
    assert len(audit) == 1
    assert audit[0].action == "job_completed"
    assert audit[0].details["success"] is True
    assert audit[0].details["duration_ms"] >= 0
    last = _history(caregiver["id"])[-1]
    assert last.reason_code == "triggered:job_completed"
    assert _audit(caregiver["id"], "trust_level_change")[-1].action == "triggered:job_completed"


def test_trigger_audits_failures(make_user, fake_signal_source):
    caregiver = make_user("caregiver")
    with pytest.raises(RuntimeError):
        trigger_user_trust_update(caregiver["id"], "review", fake_signal_source(failing={caregiver["id"]}))
    audit = _audit(caregiver["id"], "trust_recompute")
    assert audit[-1].details["success"] is False


def test_sql_source_reads_job_history(make_user, make_job):
    hirer = make_user("hirer", balance=5000)
    caregiver = make_user("caregiver")
    accounts.upsert_caregiver_profile(caregiver["id"], display_name="Nok", bio="Nurse aide", experience_years=4)
    done = make_job(hirer["id"], 9, 11)
    dropped = make_job(hirer["id"], 13, 15)
    for job in (done, dropped):
        jobs.publish_job_post(job["id"], hirer["id"])
        jobs.accept_job(job["id"], caregiver["id"])
    jobs.check_in(done["id"], caregiver["id"], {"lat": 13.75, "lng": 100.5, "accuracy_m": 500})
    jobs.check_out(done["id"], caregiver["id"])
    jobs.cancel_job(dropped["id"], caregiver["id"], "conflict")
    accounts.add_review(caregiver["id"], 5, job_id=done["id"], reviewer_id=hirer["id"])

    signals = SqlTrustSignalSource().get_signals(caregiver["id"])

    assert signals.completed_jobs == 1
    assert signals.review_ratings == [5]
    assert signals.caregiver_cancellations == 1
    assert signals.gps_flagged_events == 1
    assert signals.on_time_checkins == 1
    assert signals.profile_complete is True


def test_sql_source_prerequisites_use_latest_kyc(make_user):
    caregiver = make_user("caregiver")
    accounts.record_kyc(caregiver["id"], "approved")
    accounts.add_bank_account(caregiver["id"], is_verified=False)
    prereqs = SqlTrustSignalSource().get_prerequisites(caregiver["id"])
    assert prereqs.kyc_approved is True
    assert prereqs.bank_verified is False

    with session_scope() as session:
        session.add(KycRecord(user_id=caregiver["id"], status="rejected", created_at=2_000_000_000))
    assert SqlTrustSignalSource().get_prerequisites(caregiver["id"]).kyc_approved is False


def test_hirer_cancellation_does_not_penalize_caregiver(make_user, make_job):
    hirer = make_user("hirer", balance=5000)
    caregiver = make_user("caregiver")
    job = make_job(hirer["id"])
    jobs.publish_job_post(job["id"], hirer["id"])
    jobs.accept_job(job["id"], caregiver["id"])
    jobs.cancel_job(job["id"], hirer["id"])
    assert SqlTrustSignalSource().get_signals(caregiver["id"]).caregiver_cancellations == 0
    with session_scope() as session:
        assert session.get(User, caregiver["id"]).trust_level == "L1"


def test_phone_verification_lifts_new_user_to_l1(make_user):
    user = make_user("caregiver", phone=False)
    assert user["trust_level"] == "L0"
    accounts.verify_email(user["id"])
    assert update_user_trust(user["id"])["no_change"] is True

    accounts.verify_phone(user["id"])
    result = update_user_trust(user["id"])
    assert (result["previous_level"], result["new_level"]) == ("L0", "L1")
