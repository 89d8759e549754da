"""
Job disputes: opening, admin review and escrow settlement.
"""
