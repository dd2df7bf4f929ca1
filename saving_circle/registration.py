"""
Register participants with a freshly created circle.

One register() call per participant, sequentially. With
`seed_unlimited_allowance`, each participant also approves the circle for the
maximum amount of both assets once, so later rounds never need an approve.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from .chain import UINT64_MAX
from .ledger import Ledger
from .participants import Participant
from .schedule import AgreementSchedule

logger = logging.getLogger(__name__)


def register_participant(
    ledger: Ledger,
    participant: Participant,
    schedule: Optional[AgreementSchedule] = None,
    seed_unlimited_allowance: bool = False,
) -> List[str]:
    logger.info("Registering %s (%s)", participant.label, participant.address)
    txid = ledger.submit_register(participant)
    logger.info("  tx submitted: %s", txid)
    confirmed = ledger.confirm(txid)
    logger.info("  confirmed in block %s", confirmed)
    txids = [txid]

    if seed_unlimited_allowance:
        if schedule is None:
            raise ValueError("seed_unlimited_allowance needs the circle schedule (asset ids)")
        for asset_id in (schedule.installment_asset_id, schedule.reward_asset_id):
            approve_txid = ledger.submit_approve(participant, asset_id, UINT64_MAX)
            ledger.confirm(approve_txid)
            logger.info("  unlimited allowance for asset %s seeded (tx %s)", asset_id, approve_txid)
            txids.append(approve_txid)
    return txids


def register_all(
    ledger: Ledger,
    participants: Sequence[Participant],
    schedule: Optional[AgreementSchedule] = None,
    seed_unlimited_allowance: bool = False,
) -> Dict[str, List[str]]:
    out = {}
    for p in participants:
        out[p.label] = register_participant(ledger, p, schedule, seed_unlimited_allowance)
    logger.info("All %s accounts registered successfully.", len(participants))
    return out
