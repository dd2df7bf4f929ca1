"""
scheduler.py
============

Round Scheduler.

For each round, in ascending order:
  a) wait (polling the ledger clock) until ledger time >= window_start
  b) run one Payment Executor per participant on a thread pool
  c) collect every participant's outcome before moving on

Rounds are barriers; participants inside a round race. The join is settled:
an exception in one task becomes that participant's `failed` attempt and
never hides a sibling's outcome or stops the next round.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from .clock import wait_until
from .config import MAX_CLOCK_FAILURES, POLL_INTERVAL_SECONDS
from .executor import Attempt, Outcome, PaymentExecutor
from .ledger import Ledger
from .participants import Participant
from .schedule import AgreementSchedule, Round

logger = logging.getLogger(__name__)


@dataclass
class RoundResult:
    round: Round
    started_at: int
    attempts: List[Attempt] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        c = Counter(a.outcome.value for a in self.attempts)
        return {o.value: c.get(o.value, 0) for o in Outcome}


@dataclass
class RunResult:
    rounds: List[RoundResult] = field(default_factory=list)

    @property
    def attempts(self) -> List[Attempt]:
        return [a for r in self.rounds for a in r.attempts]

    @property
    def failed(self) -> List[Attempt]:
        return [a for a in self.attempts if a.outcome == Outcome.FAILED]


class RoundScheduler:
    def __init__(
        self,
        ledger: Ledger,
        schedule: AgreementSchedule,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        max_workers: Optional[int] = None,
        max_clock_failures: int = MAX_CLOCK_FAILURES,
        executor: Optional[PaymentExecutor] = None,
        sleep: Callable[[float], None] = time.sleep,
        cancel: Optional[threading.Event] = None,
    ):
        self.ledger = ledger
        self.schedule = schedule
        self.poll_interval = poll_interval
        self.max_workers = max_workers
        self.max_clock_failures = max_clock_failures
        self.executor = executor or PaymentExecutor(ledger, schedule)
        self.sleep = sleep
        self.cancel = cancel

    def run(
        self,
        participants: Sequence[Participant],
        rounds: Optional[Iterable[int]] = None,
        result: Optional[RunResult] = None,
    ) -> RunResult:
        """
        Drive `rounds` (default: every round of the schedule) for all participants.

        Finished rounds are appended to `result` as they complete, so a caller
        that passes its own RunResult still holds them if a later round's wait
        aborts the run.
        """
        if rounds is None:
            selected = list(self.schedule.rounds())
        else:
            selected = [self.schedule.round(i) for i in sorted(set(rounds))]

        if result is None:
            result = RunResult()
        for rnd in selected:
            result.rounds.append(self.run_round(rnd, participants))
        logger.info(
            "Run complete: %s round(s), %s attempt(s), %s failed",
            len(result.rounds), len(result.attempts), len(result.failed),
        )
        return result

    def run_round(self, rnd: Round, participants: Sequence[Participant]) -> RoundResult:
        logger.info("Round %s: waiting for ledger time %s (deadline %s)", rnd.index, rnd.window_start, rnd.deadline)
        started_at = wait_until(
            self.ledger,
            rnd.window_start,
            self.poll_interval,
            sleep=self.sleep,
            cancel=self.cancel,
            max_clock_failures=self.max_clock_failures,
        )
        logger.info("Round %s: open at ledger time %s, paying %s participant(s)", rnd.index, started_at, len(participants))

        rr = RoundResult(round=rnd, started_at=started_at)
        if not participants:
            return rr

        workers = self.max_workers or len(participants)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"round{rnd.index}") as pool:
            futures = [(p, pool.submit(self.executor.execute, rnd, p)) for p in participants]
            for p, fut in futures:
                rr.attempts.append(self._settle(rnd, p, fut))

        counts = rr.counts()
        logger.info(
            "Round %s done: %s",
            rnd.index, ", ".join(f"{k}={v}" for k, v in counts.items() if v),
        )
        return rr

    def _settle(self, rnd: Round, p: Participant, fut) -> Attempt:
        try:
            return fut.result()
        except Exception as e:  # one task's crash must not hide the others
            logger.exception("Round %s: unexpected error paying %s", rnd.index, p.label)
            return Attempt(
                round_index=rnd.index,
                label=p.label,
                address=p.address,
                outcome=Outcome.FAILED,
                auction_size=p.auction_size,
                error_kind="UnexpectedError",
                error=f"{type(e).__name__}: {e}",
            )
