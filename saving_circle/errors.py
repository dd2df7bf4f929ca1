"""
errors.py
=========

Error taxonomy for the saving-circle scheduler.

Two families:
- RunAbort: configuration / schedule / clock problems. Nothing sensible can be
  paid, so the CLI stops with a non-zero exit status.
- PaymentError: scoped to one (round, participant) pair. Recorded on the
  attempt and reported; sibling participants and later rounds carry on.
"""

from __future__ import annotations


class CircleError(Exception):
    """Base class for every error raised by this package."""

    kind = "CircleError"


# -----------------------------
# Fatal for the whole run
# -----------------------------

class RunAbort(CircleError):
    kind = "RunAbort"


class ConfigurationError(RunAbort):
    kind = "ConfigurationError"


class ScheduleUnavailable(RunAbort):
    kind = "ScheduleUnavailable"


class ClockUnavailable(RunAbort):
    kind = "ClockUnavailable"


class AuctionSizeExceedsCeiling(RunAbort):
    kind = "AuctionSizeExceedsCeiling"

    def __init__(self, label: str, amount: int, ceiling: int):
        super().__init__(f"{label} auction size {amount} exceeds max_auction_size {ceiling}")
        self.label = label
        self.amount = amount
        self.ceiling = ceiling


class WaitCancelled(CircleError):
    kind = "WaitCancelled"


# -----------------------------
# Scoped to one (round, participant) pair
# -----------------------------

class PaymentError(CircleError):
    kind = "PaymentError"


class InsufficientBalance(PaymentError):
    kind = "InsufficientBalance"

    def __init__(self, label: str, asset: str, required: int, available: int):
        super().__init__(
            f"{label} has insufficient {asset} balance. Required {required}, balance {available}"
        )
        self.label = label
        self.asset = asset
        self.required = required
        self.available = available


class AuthorizationTransactionFailed(PaymentError):
    kind = "AuthorizationTransactionFailed"


class SubmissionRejected(PaymentError):
    kind = "SubmissionRejected"


class ConfirmationTimeout(PaymentError):
    kind = "ConfirmationTimeout"

    def __init__(self, txid: str, detail: str = ""):
        msg = f"Tx not confirmed: {txid}"
        if detail:
            msg = f"{msg} ({detail})"
        super().__init__(msg)
        self.txid = txid
