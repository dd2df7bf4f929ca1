"""
executor.py
===========

Payment Executor: one (round, participant) attempt.

Steps, strictly in order, entered fresh for every pair:
  1) contribution already on-chain?         -> skipped-already-paid
  2) ledger time past the round deadline?   -> skipped-deadline-missed
  3) balance + allowance, installment asset, then reward asset
  4) submit deposit_round(round, auction_size, participant)
  5) confirm                                -> confirmed

Any PaymentError in 3-5 ends the attempt as `failed` with the error kind. No
retries happen here; the ledger is re-queried on the next run, so a re-run is
safe.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .errors import ClockUnavailable, PaymentError
from .ledger import Ledger
from .participants import Participant
from .preconditions import ensure_authorization, ensure_balance
from .schedule import AgreementSchedule, Round

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    SKIPPED_ALREADY_PAID = "skipped-already-paid"
    SKIPPED_DEADLINE_MISSED = "skipped-deadline-missed"
    FAILED = "failed"
    CONFIRMED = "confirmed"


@dataclass
class Attempt:
    round_index: int
    label: str
    address: str
    outcome: Outcome
    auction_size: int = 0
    error_kind: str = ""
    error: str = ""
    txid: str = ""
    confirmed_round: Optional[int] = None
    approval_txids: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.outcome != Outcome.FAILED


class PaymentExecutor:
    def __init__(self, ledger: Ledger, schedule: AgreementSchedule):
        self.ledger = ledger
        self.schedule = schedule

    def execute(self, rnd: Round, participant: Participant) -> Attempt:
        attempt = Attempt(
            round_index=rnd.index,
            label=participant.label,
            address=participant.address,
            outcome=Outcome.FAILED,
            auction_size=participant.auction_size,
        )

        paid = self.ledger.contribution(rnd.index, participant.address)
        if paid > 0:
            logger.info("Round %s: %s already paid (%s), skipping", rnd.index, participant.label, paid)
            attempt.outcome = Outcome.SKIPPED_ALREADY_PAID
            return attempt

        try:
            now = self.ledger.now()
        except ClockUnavailable as e:
            return self._fail(attempt, e)
        if now >= rnd.deadline:
            logger.warning(
                "Round %s: deadline %s passed (ledger time %s), %s forfeits the round",
                rnd.index, rnd.deadline, now, participant.label,
            )
            attempt.outcome = Outcome.SKIPPED_DEADLINE_MISSED
            return attempt

        s = self.schedule
        logger.info(
            "Paying round %s for %s (%s) with auctionSize=%s",
            rnd.index, participant.label, participant.address, participant.auction_size,
        )
        try:
            for asset_id, amount, symbol in (
                (s.installment_asset_id, s.installment_size, s.installment_symbol),
                (s.reward_asset_id, participant.auction_size, s.reward_symbol),
            ):
                ensure_balance(self.ledger, participant, asset_id, amount, symbol)
                txid = ensure_authorization(self.ledger, participant, asset_id, amount, symbol)
                if txid:
                    attempt.approval_txids.append(txid)

            attempt.txid = self.ledger.submit_deposit(
                participant, rnd.index, participant.auction_size,
                (s.installment_asset_id, s.reward_asset_id),
            )
            logger.info("  deposit tx submitted: %s", attempt.txid)
            attempt.confirmed_round = self.ledger.confirm(attempt.txid)
        except PaymentError as e:
            return self._fail(attempt, e)

        logger.info(
            "  deposit for %s round %s confirmed in block %s",
            participant.label, rnd.index, attempt.confirmed_round,
        )
        attempt.outcome = Outcome.CONFIRMED
        return attempt

    def _fail(self, attempt: Attempt, e: Exception) -> Attempt:
        attempt.outcome = Outcome.FAILED
        attempt.error_kind = getattr(e, "kind", type(e).__name__)
        attempt.error = str(e)
        logger.error(
            "Round %s: %s failed (%s): %s", attempt.round_index, attempt.label, attempt.error_kind, e
        )
        return attempt
