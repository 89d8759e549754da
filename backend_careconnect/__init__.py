"""
Backend CareConnect: marketplace core for care-seekers (hirers) and caregivers.

Job lifecycle state machine with escrow settlement, append-only wallet ledger,
trust scoring worker with hysteresis, and the policy gate that decides which
actions a user may trigger. Modular layout: database, wallet, jobs, trust,
policy, API server, and periodic worker.
"""

__version__ = "0.1.0"
