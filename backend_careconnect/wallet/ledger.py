"""
Ledger primitive: every balance change on a wallet goes through post_entry(),
which mutates the balance and appends the matching ledger_transactions row in
the caller's transaction.

Balances never go negative; summing ledger amounts per (wallet, balance_type)
reproduces the stored balances exactly (see replay_balances).
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from backend_careconnect.care_logging import get_logger
from backend_careconnect.core.exceptions import InsufficientFundsError, ValidationError
from backend_careconnect.database import session_scope
from backend_careconnect.database.models import (
    BALANCE_AVAILABLE,
    BALANCE_HELD,
    LedgerTransaction,
    Wallet,
)
from backend_careconnect.database.repositories import get_user_wallet

logger = get_logger(__name__)

TX_TOPUP = "topup"
TX_HOLD = "hold"
TX_ESCROW_FUND = "escrow_fund"
TX_RELEASE = "release"
TX_CREDIT = "credit"
TX_FEE = "fee"
TX_REFUND = "refund"
TX_REVERSAL = "reversal"
TX_DEBIT = "debit"

TRANSACTION_TYPES = frozenset(
    {TX_TOPUP, TX_HOLD, TX_ESCROW_FUND, TX_RELEASE, TX_CREDIT, TX_FEE, TX_REFUND, TX_REVERSAL, TX_DEBIT}
)

_BALANCE_ATTR = {
    BALANCE_AVAILABLE: "available_balance",
    BALANCE_HELD: "held_balance",
}


def post_entry(
    session: Session,
    wallet: Wallet,
    amount: int,
    *,
    balance_type: str,
    transaction_type: str,
    reference_type: str,
    reference_id: str | None = None,
    description: str | None = None,
    insufficient_message: str | None = None,
) -> LedgerTransaction:
    """
    Apply a signed amount to one balance of the wallet and append the ledger row.
    Raises InsufficientFundsError when the balance would drop below zero.
    """
    if balance_type not in _BALANCE_ATTR:
        raise ValidationError(f"Unknown balance type: {balance_type}")
    if transaction_type not in TRANSACTION_TYPES:
        raise ValidationError(f"Unknown transaction type: {transaction_type}")
    amount = int(amount)
    if amount == 0:
        raise ValidationError("Ledger amount must be non-zero")

    attr = _BALANCE_ATTR[balance_type]
    current = int(getattr(wallet, attr) or 0)
    new_balance = current + amount
    if new_balance < 0:
        raise InsufficientFundsError(
            insufficient_message or f"Insufficient {balance_type} balance",
            details={"wallet_id": wallet.id, "balance": current, "required": -amount},
        )
    setattr(wallet, attr, new_balance)

    entry = LedgerTransaction(
        wallet_id=wallet.id,
        amount=amount,
        balance_type=balance_type,
        transaction_type=transaction_type,
        reference_type=reference_type,
        reference_id=reference_id,
        description=description,
    )
    session.add(entry)
    session.flush()
    logger.debug(
        "ledger_entry_posted",
        wallet_id=wallet.id,
        amount=amount,
        balance_type=balance_type,
        transaction_type=transaction_type,
        reference_id=reference_id,
    )
    return entry


def replay_balances(session: Session, wallet_id: str) -> dict[str, int]:
    """Rebuild {available, held} for a wallet from its ledger rows."""
    rows = (
        session.query(LedgerTransaction.balance_type, func.coalesce(func.sum(LedgerTransaction.amount), 0))
        .filter(LedgerTransaction.wallet_id == wallet_id)
        .group_by(LedgerTransaction.balance_type)
        .all()
    )
    totals = {BALANCE_AVAILABLE: 0, BALANCE_HELD: 0}
    for balance_type, total in rows:
        totals[balance_type] = int(total)
    return totals


def get_wallet_ledger(wallet_id: str, limit: int = 100) -> list[dict[str, Any]]:
    """Most recent ledger rows of a wallet, newest first."""
    limit = max(1, min(limit, 1000))
    with session_scope() as session:
        rows = (
            session.query(LedgerTransaction)
            .filter(LedgerTransaction.wallet_id == wallet_id)
            .order_by(LedgerTransaction.created_at.desc(), LedgerTransaction.id)
            .limit(limit)
            .all()
        )
        return [r.to_dict() for r in rows]


def get_or_create_user_wallet(session: Session, user_id: str, wallet_type: str, currency: str) -> Wallet:
    wallet = get_user_wallet(session, user_id, wallet_type, lock=True)
    if wallet is None:
        wallet = Wallet(user_id=user_id, wallet_type=wallet_type, currency=currency)
        session.add(wallet)
        session.flush()
    return wallet
