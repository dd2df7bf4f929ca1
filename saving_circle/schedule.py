"""
schedule.py
===========

Agreement schedule and round windows.

Round i covers the half-open ledger-time window
    [start_time + round_duration * i, start_time + round_duration * (i + 1))
so rounds are contiguous and never overlap: deadline(i) == window_start(i + 1).

The schedule is read once per run from the circle's global state and then
treated as immutable.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterator, Optional

from .errors import ScheduleUnavailable
from .ledger import AssetInfo, Ledger, describe_asset

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = (
    "start_time",
    "round_duration",
    "num_rounds",
    "installment_size",
    "reward_per_installment",
    "max_auction_size",
    "installment_asset_id",
    "reward_asset_id",
)


@dataclass(frozen=True)
class Round:
    index: int
    window_start: int
    deadline: int

    def contains(self, ts: int) -> bool:
        return self.window_start <= ts < self.deadline


@dataclass(frozen=True)
class AgreementSchedule:
    start_time: int
    round_duration: int
    num_rounds: int
    installment_size: int
    reward_per_installment: int
    max_auction_size: int
    installment_asset_id: int
    reward_asset_id: int
    num_users: int = 0
    installment_asset: Optional[AssetInfo] = None
    reward_asset: Optional[AssetInfo] = None

    def __post_init__(self):
        if self.num_rounds < 1:
            raise ScheduleUnavailable(f"num_rounds must be >= 1, got {self.num_rounds}")
        if self.round_duration <= 0:
            raise ScheduleUnavailable(
                f"round_duration must be > 0, got {self.round_duration} (rounds would have no window)"
            )
        if self.start_time < 0:
            raise ScheduleUnavailable(f"start_time must be >= 0, got {self.start_time}")

    def window_start(self, index: int) -> int:
        return self.start_time + self.round_duration * index

    def deadline(self, index: int) -> int:
        return self.start_time + self.round_duration * (index + 1)

    def round(self, index: int) -> Round:
        if not 0 <= index < self.num_rounds:
            raise IndexError(f"round {index} outside [0, {self.num_rounds})")
        return Round(index=index, window_start=self.window_start(index), deadline=self.deadline(index))

    def rounds(self) -> Iterator[Round]:
        for i in range(self.num_rounds):
            yield self.round(i)

    @property
    def end_time(self) -> int:
        return self.deadline(self.num_rounds - 1)

    def round_at(self, ts: int) -> int:
        """Index of the round whose window contains `ts`, clamped to the first/last round."""
        if ts < self.start_time:
            return 0
        return min((ts - self.start_time) // self.round_duration, self.num_rounds - 1)

    @property
    def installment_symbol(self) -> str:
        return self.installment_asset.symbol if self.installment_asset else "installment token"

    @property
    def reward_symbol(self) -> str:
        return self.reward_asset.symbol if self.reward_asset else "reward token"


def load_schedule(ledger: Ledger, with_metadata: bool = True) -> AgreementSchedule:
    """
    Read the schedule from the circle's global state (one snapshot read), then
    fetch display metadata for both assets concurrently. Metadata is optional;
    every schedule field is required.
    """
    try:
        state = ledger.agreement_state()
    except ScheduleUnavailable:
        raise
    except Exception as e:
        raise ScheduleUnavailable(f"Could not read agreement state: {e}")

    missing = [f for f in REQUIRED_FIELDS if f not in state]
    if missing:
        raise ScheduleUnavailable(f"Agreement state is missing: {', '.join(missing)}")

    installment_asset = reward_asset = None
    if with_metadata:
        with ThreadPoolExecutor(max_workers=2) as pool:
            f_inst = pool.submit(describe_asset, ledger, state["installment_asset_id"], "installment token")
            f_reward = pool.submit(describe_asset, ledger, state["reward_asset_id"], "reward token")
            installment_asset = f_inst.result()
            reward_asset = f_reward.result()

    schedule = AgreementSchedule(
        start_time=int(state["start_time"]),
        round_duration=int(state["round_duration"]),
        num_rounds=int(state["num_rounds"]),
        installment_size=int(state["installment_size"]),
        reward_per_installment=int(state["reward_per_installment"]),
        max_auction_size=int(state["max_auction_size"]),
        installment_asset_id=int(state["installment_asset_id"]),
        reward_asset_id=int(state["reward_asset_id"]),
        num_users=int(state.get("num_users", 0)),
        installment_asset=installment_asset,
        reward_asset=reward_asset,
    )
    logger.info(
        "Schedule: start=%s round_duration=%ss rounds=%s installment=%s %s reward=%s %s max_auction=%s",
        schedule.start_time, schedule.round_duration, schedule.num_rounds,
        schedule.installment_size, schedule.installment_symbol,
        schedule.reward_per_installment, schedule.reward_symbol,
        schedule.max_auction_size,
    )
    return schedule
