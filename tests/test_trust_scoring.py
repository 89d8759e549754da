"""
Tests for trust score calculation and trust level hysteresis.
"""

from __future__ import annotations

import pytest

from backend_careconnect.trust.levels import determine_trust_level
from backend_careconnect.trust.scoring import calculate_trust_score, score_signals
from backend_careconnect.trust.signals import TrustPrerequisites, TrustSignals

L3_READY = TrustPrerequisites(phone_verified=True, kyc_approved=True, bank_verified=True)
L2_READY = TrustPrerequisites(phone_verified=True, kyc_approved=True)


def test_new_user_scores_base():
    result = score_signals(TrustSignals())
    assert result.total_score == 50
    assert set(result.breakdown.values()) == {0}


def test_completed_jobs_capped():
    assert score_signals(TrustSignals(completed_jobs=3)).breakdown["completed_jobs"] == 15
    assert score_signals(TrustSignals(completed_jobs=10)).breakdown["completed_jobs"] == 30


def test_review_points_and_clamp():
    mixed = score_signals(TrustSignals(review_ratings=[5, 4, 3, 2, 1]))
    assert mixed.breakdown["reviews"] == 3 + 3 + 1 - 5 - 5
    assert score_signals(TrustSignals(review_ratings=[5] * 10)).breakdown["reviews"] == 20
    assert score_signals(TrustSignals(review_ratings=[1] * 10)).breakdown["reviews"] == -20


def test_penalties_have_floors():
    result = score_signals(TrustSignals(caregiver_cancellations=5, gps_flagged_events=9))
    assert result.breakdown["cancellations"] == -30
    assert result.breakdown["gps_violations"] == -15
    assert result.total_score == 5


def test_punctuality_and_profile():
    result = score_signals(TrustSignals(on_time_checkins=3, profile_complete=True))
    assert result.breakdown["punctuality"] == 6
    assert result.breakdown["profile_complete"] == 10
    assert result.total_score == 66


def test_total_clamped_to_range():
    best = TrustSignals(
        completed_jobs=20,
        review_ratings=[5] * 20,
        on_time_checkins=20,
        profile_complete=True,
    )
    assert score_signals(best).total_score == 100
    worst = TrustSignals(caregiver_cancellations=10, gps_flagged_events=10, review_ratings=[1] * 10)
    assert score_signals(worst).total_score == 0


def test_calculate_trust_score_reads_source(fake_signal_source):
    source = fake_signal_source(signals={"u1": TrustSignals(completed_jobs=2)})
    assert calculate_trust_score("u1", source).total_score == 60
    assert calculate_trust_score("unknown", source).total_score == 50


@pytest.mark.parametrize(
    "current,score,expected",
    [
        ("L3", 76, "L3"),
        ("L3", 75, "L3"),
        ("L3", 74, "L2"),
        ("L2", 79, "L2"),
        ("L2", 80, "L3"),
        ("L0", 95, "L3"),
    ],
)
def test_l3_hysteresis(current, score, expected):
    assert determine_trust_level(current, score, L3_READY) == expected


def test_l3_requires_bank_even_with_high_score():
    assert determine_trust_level("L3", 90, L2_READY) == "L2"


def test_lower_levels_follow_prerequisites():
    assert determine_trust_level("L0", 50, TrustPrerequisites(phone_verified=True)) == "L1"
    assert determine_trust_level("L0", 50, L2_READY) == "L2"
    assert determine_trust_level("L1", 50, TrustPrerequisites()) == "L0"


def test_email_alone_stays_l0():
    assert determine_trust_level("L0", 100, TrustPrerequisites(email_verified=True)) == "L0"


def test_kyc_without_phone_is_l0():
    assert determine_trust_level(None, 90, TrustPrerequisites(kyc_approved=True, bank_verified=True)) == "L0"
