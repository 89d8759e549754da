"""
Core utilities: error taxonomy, clock and rounding helpers.

Used across jobs, wallet, trust, policy, and the API server.
"""
