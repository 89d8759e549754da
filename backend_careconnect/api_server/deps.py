"""
FastAPI dependencies: acting user from the X-User-Id header and policy checks.

Authentication itself is handled upstream; this layer trusts the header.
"""

from __future__ import annotations

from typing import Callable

from fastapi import Header, HTTPException, Request

from backend_careconnect.care_logging import get_logger
from backend_careconnect.core.exceptions import AuthorizationError
from backend_careconnect.database import session_scope
from backend_careconnect.database.models import ROLE_ADMIN, AuditEvent, User
from backend_careconnect.database.repositories import get_user
from backend_careconnect.policy.gate import can

logger = get_logger(__name__)

EVENT_POLICY_DENIED = "policy_denied"


def get_acting_user(x_user_id: str | None = Header(default=None)) -> User:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header required")
    with session_scope() as session:
        return get_user(session, user_id)


def _record_denial(user: User, action: str, request: Request, reason: str | None) -> None:
    with session_scope() as session:
        session.add(
            AuditEvent(
                user_id=user.id,
                event_type=EVENT_POLICY_DENIED,
                action=action,
                details={
                    "role": user.role,
                    "trust_level": user.trust_level,
                    "method": request.method,
                    "path": request.url.path,
                    "reason": reason,
                },
            )
        )


def require_policy(action: str) -> Callable[..., User]:
    """Dependency factory: resolve the acting user and deny (403, audited) when can() refuses."""

    def dependency(request: Request, x_user_id: str | None = Header(default=None)) -> User:
        user = get_acting_user(x_user_id)
        decision = can(user, action)
        if not decision.allowed:
            _record_denial(user, action, request, decision.reason)
            logger.info("policy_denied", user_id=user.id, action=action, reason=decision.reason)
            raise AuthorizationError(decision.reason or "Not allowed", details={"action": action})
        return user

    return dependency


def require_admin(x_user_id: str | None = Header(default=None)) -> User:
    user = get_acting_user(x_user_id)
    if user.role != ROLE_ADMIN:
        raise AuthorizationError("Admin role required")
    return user
