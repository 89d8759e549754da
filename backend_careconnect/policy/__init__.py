"""
Policy gate: role and trust-level based permissions for marketplace actions.
"""

from backend_careconnect.policy.gate import PolicyDecision, can, ensure_allowed

__all__ = ["PolicyDecision", "can", "ensure_allowed"]
