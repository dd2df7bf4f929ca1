"""
ledger.py
=========

The ledger surface the scheduler needs, and its Algorand implementation.

Reads:  block timestamp, circle global state, per-round contribution boxes,
        ASA balances, allowance boxes, ASA metadata.
Writes: approve(asset, amount), deposit_round(round, auction_size, user),
        register().

Everything else (contract logic, signing internals) is opaque: a write either
returns a txid or raises SubmissionRejected; `confirm` either returns the
confirmed round or raises ConfirmationTimeout.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Protocol, Tuple

from algosdk import transaction
from algosdk.encoding import decode_address
from algosdk.error import AlgodHTTPError
from algosdk.logic import get_application_address
from algosdk.v2client import algod

from . import chain
from .clock import AlgodClock
from .errors import ScheduleUnavailable, SubmissionRejected
from .participants import Participant

logger = logging.getLogger(__name__)


# Global-state keys of the circle application, with accepted aliases.
KEY_INSTALLMENT_ASSET = [b"installment_asa", b"installment_token"]
KEY_REWARD_ASSET = [b"reward_asa", b"protocol_token"]
KEY_INSTALLMENT_SIZE = [b"installment_size"]
KEY_REWARD_PER_INSTALLMENT = [b"reward_per_inst", b"protocol_reward"]
KEY_NUM_ROUNDS = [b"num_rounds"]
KEY_START_TIME = [b"start_time"]
KEY_ROUND_DURATION = [b"round_secs", b"time_per_round"]
KEY_NUM_USERS = [b"num_users"]
KEY_MAX_AUCTION = [b"max_auction", b"max_protocol_token_in_auction"]

AGREEMENT_FIELDS: Dict[str, List[bytes]] = {
    "installment_asset_id": KEY_INSTALLMENT_ASSET,
    "reward_asset_id": KEY_REWARD_ASSET,
    "installment_size": KEY_INSTALLMENT_SIZE,
    "reward_per_installment": KEY_REWARD_PER_INSTALLMENT,
    "num_rounds": KEY_NUM_ROUNDS,
    "start_time": KEY_START_TIME,
    "round_duration": KEY_ROUND_DURATION,
    "num_users": KEY_NUM_USERS,
    "max_auction_size": KEY_MAX_AUCTION,
}

# deposit_round moves two assets through inner transactions
DEPOSIT_FEE_MULTIPLIER = 3
APPROVE_FEE_MULTIPLIER = 1


@dataclass(frozen=True)
class AssetInfo:
    asset_id: int
    symbol: str
    decimals: int = 0


class Ledger(Protocol):
    def now(self) -> int: ...

    def agreement_state(self) -> Dict[str, int]: ...

    def asset_info(self, asset_id: int) -> AssetInfo: ...

    def contribution(self, round_index: int, address: str) -> int: ...

    def balance_of(self, address: str, asset_id: int) -> int: ...

    def allowance_of(self, address: str, asset_id: int) -> int: ...

    def submit_approve(self, participant: Participant, asset_id: int, amount: int) -> str: ...

    def submit_deposit(
        self, participant: Participant, round_index: int, auction_size: int, assets: Tuple[int, int]
    ) -> str: ...

    def submit_register(self, participant: Participant) -> str: ...

    def confirm(self, txid: str) -> int: ...


class AlgorandLedger:
    """Ledger implementation backed by an algod node and the circle application `app_id`."""

    def __init__(
        self,
        client: algod.AlgodClient,
        app_id: int,
        contract,
        confirm_rounds: int = 12,
    ):
        self.client = client
        self.app_id = int(app_id)
        self.app_address = get_application_address(self.app_id)
        self.confirm_rounds = int(confirm_rounds)
        self.clock = AlgodClock(client)
        self.m_register = contract.get_method_by_name("register")
        self.m_approve = contract.get_method_by_name("approve")
        self.m_deposit = contract.get_method_by_name("deposit_round")

    # -----------------------------
    # Clock
    # -----------------------------

    def now(self) -> int:
        return self.clock.now()

    # -----------------------------
    # Agreement reads
    # -----------------------------

    def agreement_state(self) -> Dict[str, int]:
        try:
            gs = chain.read_global_state_raw(self.client, self.app_id)
        except OSError as e:
            raise ScheduleUnavailable(f"Could not read application {self.app_id}: {e}")
        out: Dict[str, int] = {}
        for name, keys in AGREEMENT_FIELDS.items():
            value = chain.gs_get(gs, *keys)
            if value is not None:
                out[name] = value
        return out

    def contribution(self, round_index: int, address: str) -> int:
        name = chain.contribution_box_name(round_index, address)
        return chain.read_box_uint(self.client, self.app_id, name)

    # -----------------------------
    # Asset reads
    # -----------------------------

    def asset_info(self, asset_id: int) -> AssetInfo:
        params = self.client.asset_info(asset_id)["params"]
        return AssetInfo(
            asset_id=int(asset_id),
            symbol=str(params.get("unit-name") or params.get("name") or asset_id),
            decimals=int(params.get("decimals", 0)),
        )

    def balance_of(self, address: str, asset_id: int) -> int:
        try:
            info = self.client.account_asset_info(address, asset_id)
        except AlgodHTTPError as e:
            # not opted in: nothing to spend
            if getattr(e, "code", None) == 404:
                return 0
            raise
        return int(info.get("asset-holding", {}).get("amount", 0))

    def allowance_of(self, address: str, asset_id: int) -> int:
        name = chain.allowance_box_name(asset_id, address)
        return chain.read_box_uint(self.client, self.app_id, name)

    # -----------------------------
    # Writes
    # -----------------------------

    def _params(self, multiplier: int) -> transaction.SuggestedParams:
        try:
            sp = self.client.suggested_params()
        except (AlgodHTTPError, OSError) as e:
            raise SubmissionRejected(f"could not fetch suggested params: {e}")
        sp.flat_fee = True
        sp.fee = (getattr(sp, "min_fee", None) or 1000) * multiplier
        return sp

    def submit_approve(self, participant: Participant, asset_id: int, amount: int) -> str:
        txn = transaction.ApplicationNoOpTxn(
            sender=participant.address,
            sp=self._params(APPROVE_FEE_MULTIPLIER),
            index=self.app_id,
            app_args=[self.m_approve.get_selector(), chain.u64(asset_id), chain.u64(amount)],
            foreign_assets=[int(asset_id)],
            boxes=[(self.app_id, chain.allowance_box_name(asset_id, participant.address))],
        )
        return chain.send_signed(self.client, txn.sign(participant.private_key))

    def submit_deposit(
        self, participant: Participant, round_index: int, auction_size: int, assets: Tuple[int, int]
    ) -> str:
        installment_asset, reward_asset = assets
        txn = transaction.ApplicationNoOpTxn(
            sender=participant.address,
            sp=self._params(DEPOSIT_FEE_MULTIPLIER),
            index=self.app_id,
            app_args=[
                self.m_deposit.get_selector(),
                chain.u64(round_index),
                chain.u64(auction_size),
                decode_address(participant.address),
            ],
            foreign_assets=[int(installment_asset), int(reward_asset)],
            boxes=[
                (self.app_id, chain.contribution_box_name(round_index, participant.address)),
                (self.app_id, chain.allowance_box_name(installment_asset, participant.address)),
                (self.app_id, chain.allowance_box_name(reward_asset, participant.address)),
            ],
        )
        return chain.send_signed(self.client, txn.sign(participant.private_key))

    def submit_register(self, participant: Participant) -> str:
        txn = transaction.ApplicationNoOpTxn(
            sender=participant.address,
            sp=self._params(1),
            index=self.app_id,
            app_args=[self.m_register.get_selector()],
        )
        return chain.send_signed(self.client, txn.sign(participant.private_key))

    def confirm(self, txid: str) -> int:
        info = chain.wait_for_confirm(self.client, txid, self.confirm_rounds)
        return int(info["confirmed-round"])


def describe_asset(ledger: Ledger, asset_id: int, fallback_symbol: str) -> AssetInfo:
    """Optional enrichment: symbol/decimals for log lines, defaulted when the read fails."""
    try:
        return ledger.asset_info(asset_id)
    except Exception as e:  # metadata is cosmetic; required reads go through other paths
        logger.debug("asset_info(%s) failed, using %r: %s", asset_id, fallback_symbol, e)
        return AssetInfo(asset_id=int(asset_id), symbol=fallback_symbol, decimals=0)
