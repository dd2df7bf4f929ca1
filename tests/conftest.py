"""
Shared fixtures: an in-memory ledger and a ledger clock that only moves when
the scheduler sleeps, so no test waits in real time or touches a node.
"""

import os
import sys
import threading
from typing import Dict, List, Tuple

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from algosdk import account, mnemonic, transaction

from saving_circle.errors import ClockUnavailable, ConfirmationTimeout, SubmissionRejected
from saving_circle.ledger import AssetInfo
from saving_circle.participants import Participant
from saving_circle.schedule import AgreementSchedule

INSTALLMENT_ASSET = 1001
REWARD_ASSET = 1002
T0 = 1_700_000_000


class FakeClock:
    def __init__(self, t: float):
        self.t = float(t)
        self.sleeps: List[float] = []
        self.failures_left = 0

    def now(self) -> int:
        if self.failures_left > 0:
            self.failures_left -= 1
            raise ClockUnavailable("node unreachable")
        return int(self.t)

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.t += seconds


class FakeLedger:
    """Applies approve/deposit effects on confirm, like the chain would."""

    def __init__(self, clock: FakeClock, state: Dict[str, int]):
        self.clock = clock
        self.state = dict(state)
        self.balances: Dict[Tuple[str, int], int] = {}
        self.allowances: Dict[Tuple[str, int], int] = {}
        self.contributions: Dict[Tuple[int, str], int] = {}
        self.reject_approve = set()
        self.reject_deposit = set()
        self.timeout_deposit = set()
        self.metadata_fails = False
        self.calls: List[tuple] = []
        self.deposits: List[tuple] = []
        self.approvals: List[tuple] = []
        self.registered: List[str] = []
        self._pending: Dict[str, tuple] = {}
        self._lock = threading.Lock()
        self._n = 0
        self.block = 100

    def _txid(self, kind: str) -> str:
        self._n += 1
        return f"{kind.upper()}TX{self._n:04d}"

    def now(self) -> int:
        return self.clock.now()

    def agreement_state(self) -> Dict[str, int]:
        return dict(self.state)

    def asset_info(self, asset_id: int) -> AssetInfo:
        if self.metadata_fails:
            raise RuntimeError("asset lookup failed")
        symbol = {INSTALLMENT_ASSET: "USDC", REWARD_ASSET: "SCT"}.get(asset_id, str(asset_id))
        return AssetInfo(asset_id=asset_id, symbol=symbol, decimals=6)

    def contribution(self, round_index: int, address: str) -> int:
        with self._lock:
            self.calls.append(("contribution", round_index, address))
            return self.contributions.get((round_index, address), 0)

    def balance_of(self, address: str, asset_id: int) -> int:
        with self._lock:
            self.calls.append(("balance_of", address, asset_id))
            return self.balances.get((address, asset_id), 0)

    def allowance_of(self, address: str, asset_id: int) -> int:
        with self._lock:
            self.calls.append(("allowance_of", address, asset_id))
            return self.allowances.get((address, asset_id), 0)

    def submit_approve(self, participant: Participant, asset_id: int, amount: int) -> str:
        with self._lock:
            if participant.address in self.reject_approve:
                raise SubmissionRejected("logic eval error: approve rejected")
            txid = self._txid("approve")
            self.approvals.append((participant.label, asset_id, amount))
            self._pending[txid] = ("approve", participant.address, asset_id, amount)
            return txid

    def submit_deposit(self, participant, round_index, auction_size, assets) -> str:
        with self._lock:
            if participant.address in self.reject_deposit:
                raise SubmissionRejected("logic eval error: assert failed")
            txid = self._txid("deposit")
            self.deposits.append((round_index, participant.label, auction_size, int(self.clock.t)))
            self._pending[txid] = ("deposit", participant.address, round_index, auction_size, assets)
            return txid

    def submit_register(self, participant: Participant) -> str:
        with self._lock:
            txid = self._txid("register")
            self.registered.append(participant.label)
            self._pending[txid] = ("register", participant.address)
            return txid

    def confirm(self, txid: str) -> int:
        with self._lock:
            op = self._pending.pop(txid)
            if op[0] == "deposit" and op[1] in self.timeout_deposit:
                raise ConfirmationTimeout(txid, "not confirmed after 12 rounds")
            if op[0] == "approve":
                _, addr, asset_id, amount = op
                self.allowances[(addr, asset_id)] = amount
            elif op[0] == "deposit":
                _, addr, round_index, auction_size, (inst, reward) = op
                size = self.state["installment_size"]
                self.contributions[(round_index, addr)] = size
                self.balances[(addr, inst)] -= size
                self.balances[(addr, reward)] -= auction_size
                self.allowances[(addr, inst)] -= size
                self.allowances[(addr, reward)] -= auction_size
            self.block += 1
            return self.block


def make_participant(label: str, auction_size: int = 10) -> Participant:
    sk, addr = account.generate_account()
    return Participant(label=label, address=addr, private_key=sk, auction_size=auction_size)


def make_state(**overrides) -> Dict[str, int]:
    state = {
        "installment_asset_id": INSTALLMENT_ASSET,
        "reward_asset_id": REWARD_ASSET,
        "installment_size": 100,
        "reward_per_installment": 10,
        "num_rounds": 3,
        "start_time": T0,
        "round_duration": 60,
        "num_users": 3,
        "max_auction_size": 1_000_000_000,
    }
    state.update(overrides)
    return state


def make_schedule(**overrides) -> AgreementSchedule:
    s = make_state(**overrides)
    return AgreementSchedule(**s)


def fund(ledger: FakeLedger, p: Participant, installment: int = 1_000, reward: int = 1_000) -> None:
    ledger.balances[(p.address, INSTALLMENT_ASSET)] = installment
    ledger.balances[(p.address, REWARD_ASSET)] = reward


def suggested_params() -> transaction.SuggestedParams:
    return transaction.SuggestedParams(
        fee=0,
        first=1000,
        last=2000,
        gh="SGO1GKSzyE7IEPItTxCByw9x8FmnrCDexi9/cOUJOiI=",
        gen="testnet-v1.0",
        flat_fee=False,
        min_fee=1000,
    )


def new_mnemonic() -> Tuple[str, str]:
    sk, addr = account.generate_account()
    return mnemonic.from_private_key(sk), addr


@pytest.fixture
def clock():
    return FakeClock(T0 - 100)


@pytest.fixture
def ledger(clock):
    return FakeLedger(clock, make_state())


@pytest.fixture
def schedule():
    return make_schedule()


@pytest.fixture
def trio(ledger):
    people = [make_participant(f"account_{i}") for i in (1, 2, 3)]
    for p in people:
        fund(ledger, p)
    return people
