"""
Balance and allowance checks run before a deposit.

Allowances are only ever raised, and only to the amount the current deposit
needs. The one-off unlimited seed belongs to registration.
"""

from __future__ import annotations

import logging
from typing import Optional

from .errors import AuthorizationTransactionFailed, InsufficientBalance, PaymentError
from .ledger import Ledger
from .participants import Participant

logger = logging.getLogger(__name__)


def ensure_balance(ledger: Ledger, participant: Participant, asset_id: int, amount: int, symbol: str = "") -> int:
    balance = ledger.balance_of(participant.address, asset_id)
    if balance < amount:
        raise InsufficientBalance(participant.label, symbol or str(asset_id), amount, balance)
    return balance


def ensure_authorization(
    ledger: Ledger, participant: Participant, asset_id: int, amount: int, symbol: str = ""
) -> Optional[str]:
    """Raise the circle's allowance for `asset_id` to `amount` if it is lower. Returns the approve txid, if any."""
    current = ledger.allowance_of(participant.address, asset_id)
    if current >= amount:
        return None

    symbol = symbol or str(asset_id)
    logger.info(
        "  approving %s for %s (needed %s, allowance %s)", symbol, participant.label, amount, current
    )
    try:
        txid = ledger.submit_approve(participant, asset_id, amount)
        logger.info("    approve tx: %s", txid)
        ledger.confirm(txid)
    except PaymentError as e:
        raise AuthorizationTransactionFailed(
            f"approve {symbol} for {participant.label} (amount {amount}) failed: {e}"
        )
    return txid
