"""
Policy gate: (role, trust level, action) → allow / deny.

Pure and table-driven. Admins are always allowed; unknown actions are denied.
Each rule names the roles that may perform the action and the minimum trust
level, optionally per role (caregivers need L1 for bank accounts, hirers L0).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from backend_careconnect.core.exceptions import AuthorizationError
from backend_careconnect.database.models import ROLE_ADMIN, ROLE_CAREGIVER, ROLE_HIRER

TRUST_LEVELS = ("L0", "L1", "L2", "L3")

ANY_ROLE = None
HIRER_ONLY = frozenset({ROLE_HIRER})
CAREGIVER_ONLY = frozenset({ROLE_CAREGIVER})
HIRER_OR_CAREGIVER = frozenset({ROLE_HIRER, ROLE_CAREGIVER})


@dataclass(frozen=True)
class PolicyDecision:
    allowed: bool
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"allowed": self.allowed}
        if self.reason:
            out["reason"] = self.reason
        return out


@dataclass(frozen=True)
class PolicyRule:
    roles: frozenset[str] | None
    min_level: str = "L0"
    min_level_by_role: Mapping[str, str] | None = None
    level_reason: str | None = None

    def required_level(self, role: str) -> str:
        if self.min_level_by_role and role in self.min_level_by_role:
            return self.min_level_by_role[role]
        return self.min_level


def _open(min_level: str = "L0") -> PolicyRule:
    return PolicyRule(roles=ANY_ROLE, min_level=min_level)


POLICY_RULES: dict[str, PolicyRule] = {
    "auth:me": _open(),
    "auth:profile:view": _open(),
    "auth:profile:update": _open(),
    "auth:phone": _open(),
    "auth:email": _open(),
    "auth:otp": _open(),
    "auth:policy": _open(),
    "auth:role": _open(),
    "auth:logout": _open(),
    "job:stats": _open(),
    "job:get": _open(),
    "job:create": PolicyRule(roles=HIRER_ONLY),
    "job:publish": PolicyRule(
        roles=HIRER_ONLY, min_level="L1", level_reason="Trust level L1 required to publish jobs"
    ),
    "job:my-jobs": PolicyRule(roles=HIRER_ONLY),
    "job:feed": PolicyRule(roles=CAREGIVER_ONLY, min_level="L1"),
    "job:assigned": PolicyRule(roles=CAREGIVER_ONLY, min_level="L1"),
    "job:accept": PolicyRule(roles=CAREGIVER_ONLY, min_level="L1"),
    "job:checkin": PolicyRule(roles=CAREGIVER_ONLY, min_level="L1"),
    "job:checkout": PolicyRule(roles=CAREGIVER_ONLY, min_level="L1"),
    "job:cancel": PolicyRule(roles=HIRER_OR_CAREGIVER),
    "wallet:balance": _open(),
    "wallet:transactions": _open(),
    "wallet:topup": _open(),
    "wallet:topup:pending": _open(),
    "wallet:topup:status": _open(),
    "wallet:bank-accounts": PolicyRule(roles=HIRER_OR_CAREGIVER, min_level_by_role={ROLE_CAREGIVER: "L1"}),
    "wallet:bank-add": PolicyRule(roles=HIRER_OR_CAREGIVER, min_level_by_role={ROLE_CAREGIVER: "L1"}),
    "wallet:withdrawals": _open(),
    "wallet:withdraw": PolicyRule(roles=CAREGIVER_ONLY, min_level="L2"),
    "wallet:withdraw:cancel": PolicyRule(roles=CAREGIVER_ONLY, min_level="L2"),
    "care-recipient:manage": PolicyRule(roles=HIRER_ONLY),
    "dispute:access": PolicyRule(roles=HIRER_OR_CAREGIVER),
    "chat:access": PolicyRule(roles=HIRER_OR_CAREGIVER),
}


def level_index(level: str | None) -> int:
    """Position of a trust level in L0..L3; unknown or missing counts as L0."""
    try:
        return TRUST_LEVELS.index(level or "L0")
    except ValueError:
        return 0


def meets_level(level: str | None, minimum: str) -> bool:
    return level_index(level) >= level_index(minimum)


def _role_reason(roles: frozenset[str]) -> str:
    if roles == HIRER_OR_CAREGIVER:
        return "Hirer or caregiver role required"
    if roles == HIRER_ONLY:
        return "Hirer role required"
    return "Caregiver role required"


def _attr(user: Any, name: str) -> Any:
    if isinstance(user, Mapping):
        return user.get(name)
    return getattr(user, name, None)


def can(user: Any, action: str) -> PolicyDecision:
    """
    Decide whether user (any object or mapping with role / trust_level) may
    perform action.
    """
    if user is None:
        return PolicyDecision(False, "Authentication required")
    role = _attr(user, "role")
    if role == ROLE_ADMIN:
        return PolicyDecision(True)

    rule = POLICY_RULES.get(action)
    if rule is None:
        return PolicyDecision(False, "Unknown action")
    if rule.roles is not None and role not in rule.roles:
        return PolicyDecision(False, _role_reason(rule.roles))

    required = rule.required_level(role)
    if not meets_level(_attr(user, "trust_level"), required):
        return PolicyDecision(False, rule.level_reason or f"Trust level {required} required")
    return PolicyDecision(True)


def ensure_allowed(user: Any, action: str) -> None:
    """Raise AuthorizationError when can(user, action) denies."""
    decision = can(user, action)
    if not decision.allowed:
        raise AuthorizationError(
            decision.reason or "Not allowed",
            details={"action": action},
        )
