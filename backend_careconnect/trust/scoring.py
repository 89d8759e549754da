"""
Trust score: 0-100 from behavioral signals.

Formula: 50 + completed jobs (+5 each, cap 30) + reviews (+3 for 4-5 stars,
+1 for 3, -5 for 1-2; clamped to ±20) + cancellations (-10 each, floor -30)
+ GPS violations (-3 each, floor -15) + on-time check-ins (+2 each, cap 20)
+ complete profile (+10). Clamped to 0-100.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from backend_careconnect.care_logging import get_logger
from backend_careconnect.trust.signals import TrustSignals, TrustSignalSource

logger = get_logger(__name__)

BASE_SCORE = 50
COMPLETED_JOB_POINTS = 5
COMPLETED_JOB_CAP = 30
GOOD_REVIEW_POINTS = 3
AVERAGE_REVIEW_POINTS = 1
BAD_REVIEW_POINTS = -5
REVIEW_BOUND = 20
CANCELLATION_POINTS = -10
CANCELLATION_FLOOR = -30
GPS_VIOLATION_POINTS = -3
GPS_VIOLATION_FLOOR = -15
ON_TIME_POINTS = 2
ON_TIME_CAP = 20
PROFILE_COMPLETE_POINTS = 10
SCORE_MIN = 0
SCORE_MAX = 100


@dataclass(frozen=True)
class TrustScoreResult:
    breakdown: dict[str, int]
    total_score: int

    def to_dict(self) -> dict[str, Any]:
        return {"breakdown": dict(self.breakdown), "total_score": self.total_score}


def _review_points(ratings: list[int]) -> int:
    points = 0
    for rating in ratings:
        if rating >= 4:
            points += GOOD_REVIEW_POINTS
        elif rating == 3:
            points += AVERAGE_REVIEW_POINTS
        else:
            points += BAD_REVIEW_POINTS
    return max(-REVIEW_BOUND, min(REVIEW_BOUND, points))


def score_signals(signals: TrustSignals) -> TrustScoreResult:
    """Pure scoring of already-collected signals."""
    breakdown = {
        "completed_jobs": min(signals.completed_jobs * COMPLETED_JOB_POINTS, COMPLETED_JOB_CAP),
        "reviews": _review_points(signals.review_ratings),
        "cancellations": max(signals.caregiver_cancellations * CANCELLATION_POINTS, CANCELLATION_FLOOR),
        "gps_violations": max(signals.gps_flagged_events * GPS_VIOLATION_POINTS, GPS_VIOLATION_FLOOR),
        "punctuality": min(signals.on_time_checkins * ON_TIME_POINTS, ON_TIME_CAP),
        "profile_complete": PROFILE_COMPLETE_POINTS if signals.profile_complete else 0,
    }
    raw = BASE_SCORE + sum(breakdown.values())
    return TrustScoreResult(breakdown=breakdown, total_score=max(SCORE_MIN, min(SCORE_MAX, raw)))


def calculate_trust_score(user_id: str, source: TrustSignalSource) -> TrustScoreResult:
    result = score_signals(source.get_signals(user_id))
    logger.debug("trust_score_calculated", user_id=user_id, total_score=result.total_score, breakdown=result.breakdown)
    return result
