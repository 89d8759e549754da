"""
Background worker: periodic trust recomputation and stale post expiry.
"""
