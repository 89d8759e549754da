"""
User accounts, wallets top-up and verification records.
"""
