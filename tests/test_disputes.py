"""
Tests for disputes: opening rules and escrow settlement.
"""

from __future__ import annotations

import pytest

from backend_careconnect.accounts.service import get_wallet
from backend_careconnect.core.exceptions import (
    AuthorizationError,
    InsufficientFundsError,
    NotFoundError,
    ValidationError,
)
from backend_careconnect.database import session_scope
from backend_careconnect.database.models import AuditEvent, LedgerTransaction, Wallet
from backend_careconnect.disputes import service as disputes
from backend_careconnect.jobs import service
from backend_careconnect.wallet.ledger import replay_balances


@pytest.fixture
def assigned(posted_job, make_user):
    """Hirer (200 available after publish), caregiver, and a job with 800 in escrow."""
    hirer, job = posted_job
    caregiver = make_user("caregiver")
    service.accept_job(job["id"], caregiver["id"])
    return hirer, caregiver, job


@pytest.fixture
def admin(make_user):
    return make_user("admin")


def _escrow_held(job_id):
    with session_scope() as session:
        return session.query(Wallet).filter(Wallet.job_id == job_id).one().held_balance


def _available(user_id):
    return get_wallet(user_id)["available_balance"]


def test_party_opens_dispute(assigned):
    hirer, caregiver, job = assigned
    dispute = disputes.open_dispute(job["id"], hirer["id"], "  Caregiver left early ")
    assert dispute["status"] == "open"
    assert dispute["reason"] == "Caregiver left early"
    assert dispute["opened_by_role"] == "hirer"
    assert dispute["already_open"] is False

    again = disputes.open_dispute(job["id"], caregiver["id"], "Hirer was not home")
    assert again["id"] == dispute["id"]
    assert again["already_open"] is True


def test_open_requires_assigned_caregiver(posted_job):
    hirer, job = posted_job
    with pytest.raises(ValidationError, match="Cannot open dispute before a caregiver accepts the job"):
        disputes.open_dispute(job["id"], hirer["id"], "changed my mind")


def test_open_rejected_for_non_party(assigned, make_user):
    _, _, job = assigned
    stranger = make_user("hirer")
    with pytest.raises(AuthorizationError, match="Not authorized to open dispute for this job"):
        disputes.open_dispute(job["id"], stranger["id"], "not my job")


def test_open_requires_reason(assigned):
    hirer, _, job = assigned
    with pytest.raises(ValidationError, match="reason is required"):
        disputes.open_dispute(job["id"], hirer["id"], "   ")


def test_settle_splits_escrow(assigned, admin):
    hirer, caregiver, job = assigned
    dispute = disputes.open_dispute(job["id"], hirer["id"], "Shift cut short")

    result = disputes.settle_dispute(
        dispute["id"], admin["id"], refund_amount=300, payout_amount=500, resolution="Split by hours worked"
    )
    assert result["replayed"] is False
    assert result["settlement"] == {"refund_amount": 300, "payout_amount": 500}
    assert result["dispute"]["status"] == "resolved"
    assert result["dispute"]["assigned_admin_id"] == admin["id"]
    assert result["dispute"]["resolution"] == "Split by hours worked"

    assert _available(hirer["id"]) == 500
    assert _available(caregiver["id"]) == 500
    assert _escrow_held(job["id"]) == 0

    with session_scope() as session:
        for wallet in session.query(Wallet).all():
            assert replay_balances(session, wallet.id) == {
                "available": wallet.available_balance,
                "held": wallet.held_balance,
            }
        rows = session.query(LedgerTransaction).filter(LedgerTransaction.reference_type == "dispute").all()
        assert sum(r.amount for r in rows) == 0
        assert {r.transaction_type for r in rows} == {"reversal", "release", "credit"}


def test_partial_settlement_leaves_rest_in_escrow(assigned, admin):
    hirer, caregiver, job = assigned
    dispute = disputes.open_dispute(job["id"], caregiver["id"], "Late start")
    disputes.settle_dispute(dispute["id"], admin["id"], refund_amount=100)
    assert _escrow_held(job["id"]) == 700
    assert _available(hirer["id"]) == 300
    assert _available(caregiver["id"]) == 0


def test_settlement_cannot_exceed_escrow(assigned, admin):
    hirer, caregiver, job = assigned
    dispute = disputes.open_dispute(job["id"], hirer["id"], "No show")
    with pytest.raises(InsufficientFundsError, match="Insufficient escrow balance for settlement"):
        disputes.settle_dispute(dispute["id"], admin["id"], refund_amount=600, payout_amount=201)

    assert _escrow_held(job["id"]) == 800
    assert _available(hirer["id"]) == 200
    assert disputes.get_dispute(dispute["id"], hirer["id"])["status"] == "open"


def test_settle_same_key_replays(assigned, admin):
    hirer, caregiver, job = assigned
    dispute = disputes.open_dispute(job["id"], hirer["id"], "No show")
    first = disputes.settle_dispute(dispute["id"], admin["id"], refund_amount=800, idempotency_key="settle-1")
    second = disputes.settle_dispute(dispute["id"], admin["id"], refund_amount=800, idempotency_key="settle-1")

    assert second["replayed"] is True
    assert second["settlement"] == first["settlement"]
    assert _available(hirer["id"]) == 1000
    assert _escrow_held(job["id"]) == 0

    with pytest.raises(ValidationError, match="Cannot settle dispute in status: resolved"):
        disputes.settle_dispute(dispute["id"], admin["id"], refund_amount=800, idempotency_key="settle-2")
    with pytest.raises(ValidationError, match="Cannot settle dispute in status: resolved"):
        disputes.settle_dispute(dispute["id"], admin["id"], resolution="again")


def test_resolution_only_settles_without_money(assigned, admin):
    hirer, _, job = assigned
    dispute = disputes.open_dispute(job["id"], hirer["id"], "Question about rate")
    result = disputes.settle_dispute(dispute["id"], admin["id"], resolution="Explained the rate")
    assert result["dispute"]["status"] == "resolved"
    assert result["settlement"] == {"refund_amount": 0, "payout_amount": 0}
    assert _escrow_held(job["id"]) == 800


def test_settle_input_validation(assigned, admin):
    hirer, _, job = assigned
    dispute = disputes.open_dispute(job["id"], hirer["id"], "No show")
    with pytest.raises(ValidationError, match="No settlement actions provided"):
        disputes.settle_dispute(dispute["id"], admin["id"])
    with pytest.raises(ValidationError):
        disputes.settle_dispute(dispute["id"], admin["id"], refund_amount=-5)
    with pytest.raises(ValidationError):
        disputes.settle_dispute(dispute["id"], admin["id"], payout_amount="lots")


def test_settle_requires_admin(assigned):
    hirer, _, job = assigned
    dispute = disputes.open_dispute(job["id"], hirer["id"], "No show")
    with pytest.raises(AuthorizationError, match="Admin role required"):
        disputes.settle_dispute(dispute["id"], hirer["id"], refund_amount=800)
    assert _escrow_held(job["id"]) == 800


def test_review_then_settle(assigned, admin):
    hirer, caregiver, job = assigned
    dispute = disputes.open_dispute(job["id"], hirer["id"], "Rough handling")
    reviewed = disputes.review_dispute(dispute["id"], admin["id"])
    assert reviewed["status"] == "in_review"
    assert reviewed["assigned_admin_id"] == admin["id"]
    with pytest.raises(ValidationError, match="Cannot review dispute in status: in_review"):
        disputes.review_dispute(dispute["id"], admin["id"])

    disputes.settle_dispute(dispute["id"], admin["id"], payout_amount=800)
    assert _available(caregiver["id"]) == 800

    with session_scope() as session:
        events = (
            session.query(AuditEvent)
            .filter(AuditEvent.event_type == "dispute_status_change")
            .order_by(AuditEvent.id)
            .all()
        )
        assert [e.action for e in events] == ["open", "in_review", "resolved"]


def test_new_dispute_after_resolution(assigned, admin):
    hirer, _, job = assigned
    first = disputes.open_dispute(job["id"], hirer["id"], "No show")
    disputes.settle_dispute(first["id"], admin["id"], resolution="Warned caregiver")
    second = disputes.open_dispute(job["id"], hirer["id"], "No show again")
    assert second["id"] != first["id"]
    assert second["already_open"] is False
    listed = disputes.list_job_disputes(job["id"], hirer["id"])
    assert [d["id"] for d in listed] == [second["id"], first["id"]]


def test_get_dispute_visibility(assigned, admin, make_user):
    hirer, caregiver, job = assigned
    dispute = disputes.open_dispute(job["id"], hirer["id"], "No show")
    assert disputes.get_dispute(dispute["id"], caregiver["id"])["id"] == dispute["id"]
    assert disputes.get_dispute(dispute["id"], admin["id"])["id"] == dispute["id"]
    with pytest.raises(AuthorizationError):
        disputes.get_dispute(dispute["id"], make_user("hirer")["id"])
    with pytest.raises(NotFoundError):
        disputes.get_dispute("missing", admin["id"])


def test_checkout_after_full_settlement_fails_cleanly(assigned, admin):
    hirer, caregiver, job = assigned
    dispute = disputes.open_dispute(job["id"], hirer["id"], "No show")
    disputes.settle_dispute(dispute["id"], admin["id"], refund_amount=800)
    service.check_in(job["id"], caregiver["id"])
    with pytest.raises(InsufficientFundsError):
        service.check_out(job["id"], caregiver["id"])
    with session_scope() as session:
        assert session.query(Wallet).filter(Wallet.job_id == job["id"]).one().held_balance == 0
