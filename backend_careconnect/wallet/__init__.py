"""
Wallets, the append-only ledger and the escrow settlement protocol.
"""
