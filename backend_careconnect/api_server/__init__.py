"""
HTTP API: job actions, wallet ledger and trust worker entry points.
"""
