"""
Ledger clock and the round-start wait.

The ledger's latest block timestamp is the only notion of "now" used for
scheduling. Nothing here caches it: every check is a fresh read.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, Protocol

from algosdk.error import AlgodHTTPError
from algosdk.v2client import algod

from .config import MAX_CLOCK_FAILURES, MIN_POLL_SLEEP_SECONDS
from .errors import ClockUnavailable, WaitCancelled

logger = logging.getLogger(__name__)

# longest single sleep between checks of a cancel event
CANCEL_CHECK_SECONDS = 0.5


class Clock(Protocol):
    def now(self) -> int: ...


class AlgodClock:
    """Timestamp of the latest block known to the node."""

    def __init__(self, client: algod.AlgodClient):
        self.client = client

    def now(self) -> int:
        try:
            last_round = self.client.status().get("last-round")
            if not last_round:
                raise ClockUnavailable("algod status returned no last-round")
            block = self.client.block_info(last_round)
        except (AlgodHTTPError, OSError) as e:
            raise ClockUnavailable(f"Could not read latest block: {e}")
        ts = (block or {}).get("block", {}).get("ts")
        if ts is None:
            raise ClockUnavailable(f"Block {last_round} has no timestamp")
        return int(ts)


def wait_until(
    clock: Clock,
    target: int,
    poll_interval: float,
    sleep: Callable[[float], None] = time.sleep,
    cancel: Optional[threading.Event] = None,
    max_clock_failures: int = MAX_CLOCK_FAILURES,
) -> int:
    """
    Block until `clock.now() >= target` and return the observed time.

    Sleeps min(remaining, poll_interval) between reads, so a far-away target
    is approached in bounded steps and a near one is not overslept. A set
    `cancel` event aborts the wait with WaitCancelled; it is checked at least
    every CANCEL_CHECK_SECONDS while sleeping. Up to
    `max_clock_failures` consecutive ClockUnavailable errors are tolerated.
    """
    failures = 0
    while True:
        if cancel is not None and cancel.is_set():
            raise WaitCancelled(f"wait for ledger time {target} cancelled")

        try:
            now = clock.now()
            failures = 0
        except ClockUnavailable as e:
            failures += 1
            if failures > max_clock_failures:
                raise
            logger.warning("Ledger clock read failed (%d/%d): %s", failures, max_clock_failures, e)
            now = None

        if now is not None and now >= target:
            return now

        delay = poll_interval if now is None else min(target - now, poll_interval)
        delay = max(float(delay), MIN_POLL_SLEEP_SECONDS)
        if now is not None:
            logger.debug("ledger time %s, waiting %ss more for %s", now, target - now, target)

        _pause(delay, sleep, cancel, target)


def _pause(
    delay: float,
    sleep: Callable[[float], None],
    cancel: Optional[threading.Event],
    target: int,
) -> None:
    """Sleep `delay` through `sleep`, in slices so a set `cancel` is noticed promptly."""
    if cancel is None:
        sleep(delay)
        return
    remaining = delay
    while remaining > 0:
        if cancel.is_set():
            raise WaitCancelled(f"wait for ledger time {target} cancelled")
        step = min(remaining, CANCEL_CHECK_SECONDS)
        sleep(step)
        remaining -= step
