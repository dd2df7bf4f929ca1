"""
Auction-size resolution.

Precedence for a participant's reward-token bid per round:
  1. `<label>_auction_size` override
  2. run-wide override (AUCTION_SIZE / --auction-size)
  3. the circle's reward per installment, when > 0
  4. 1 (minimal unit)

Every resolved amount must be <= max_auction_size. This is checked for all
participants before the first round so a bad config never half-pays a round.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import List, Mapping, Optional, Sequence, Union

from .config import MINIMAL_AUCTION_UNIT
from .errors import AuctionSizeExceedsCeiling, ConfigurationError
from .participants import Participant

logger = logging.getLogger(__name__)


def parse_auction_size(value: Union[str, int], label: str) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid auction size for {label}: {value!r}")
    try:
        result = value if isinstance(value, int) else int(str(value).strip())
    except ValueError:
        raise ConfigurationError(f"Invalid auction size for {label}: {value!r}")
    if result <= 0:
        raise ConfigurationError(f"Invalid auction size for {label}: {value!r}")
    return result


def resolve_default(explicit_override: Optional[Union[str, int]], protocol_reward: int) -> int:
    if explicit_override is not None:
        return parse_auction_size(explicit_override, "AUCTION_SIZE")
    if protocol_reward > 0:
        return int(protocol_reward)
    return MINIMAL_AUCTION_UNIT


def resolve_for_participant(label: str, default_amount: int, overrides: Mapping[str, str]) -> int:
    specific = overrides.get(label)
    if specific is not None:
        return parse_auction_size(specific, f"{label} auction size")
    return default_amount


def validate_auction_size(amount: int, ceiling: int, label: str) -> int:
    if amount > ceiling:
        raise AuctionSizeExceedsCeiling(label, amount, ceiling)
    return amount


def resolve_all(
    participants: Sequence[Participant],
    explicit_override: Optional[Union[str, int]],
    protocol_reward: int,
    max_auction_size: int,
    overrides: Mapping[str, str],
) -> List[Participant]:
    """Return copies of `participants` with `auction_size` set; fails fast on any ceiling violation."""
    default_amount = resolve_default(explicit_override, protocol_reward)
    validate_auction_size(default_amount, max_auction_size, "Default")
    logger.info("default auction size=%s (max %s)", default_amount, max_auction_size)

    unknown = sorted(set(overrides) - {p.label for p in participants})
    if unknown:
        logger.warning("Ignoring auction size overrides for unknown participants: %s", ", ".join(unknown))

    out = []
    for p in participants:
        amount = resolve_for_participant(p.label, default_amount, overrides)
        validate_auction_size(amount, max_auction_size, p.label)
        out.append(replace(p, auction_size=amount))
    return out
