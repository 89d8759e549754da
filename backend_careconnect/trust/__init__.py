"""
Trust subsystem: signal gateway, 0-100 scoring, L0-L3 levels with hysteresis,
and the worker that persists changes.
"""
