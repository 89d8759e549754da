"""
Trust level from score and verification prerequisites.

    L3  phone + KYC + bank verified and score >= 80
        (a user already at L3 keeps it while prerequisites hold and score >= 75)
    L2  phone + KYC
    L1  phone
    L0  otherwise; email verification alone does not raise the level
"""

from __future__ import annotations

from backend_careconnect.trust.signals import TrustPrerequisites

L3_ENTER_SCORE = 80
L3_KEEP_SCORE = 75


def determine_trust_level(current_level: str | None, score: int, prerequisites: TrustPrerequisites) -> str:
    if prerequisites.l3 and score >= L3_ENTER_SCORE:
        return "L3"
    if current_level == "L3" and prerequisites.l3 and score >= L3_KEEP_SCORE:
        return "L3"
    if prerequisites.l2:
        return "L2"
    if prerequisites.phone_verified:
        return "L1"
    return "L0"
