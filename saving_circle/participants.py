"""
Participants of a circle: a label, the signing key, and (once resolved) the
reward-token auction size used for every round of the run.

Credentials come either from .env (`<label>_mnemonic`, or `<label>_pk`) or from
a cohort JSON file in the onboarding format:
[{"addr": ..., "mnemonic": ..., "id": 1}, ...].
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

from algosdk import account, mnemonic
from algosdk.encoding import is_valid_address

from .config import env_get, env_label
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

PRIVATE_KEY_BYTES = 64


@dataclass(frozen=True)
class Participant:
    label: str
    address: str
    private_key: str
    auction_size: int = 0

    def __repr__(self) -> str:
        # keep keys out of logs and tracebacks
        return f"Participant(label={self.label!r}, address={self.address!r}, auction_size={self.auction_size})"


def _participant(label: str, sk: str, expected_address: Optional[str]) -> Participant:
    addr = account.address_from_private_key(sk)
    if expected_address:
        if not is_valid_address(expected_address):
            raise ConfigurationError(f"{label} address {expected_address!r} is not a valid Algorand address")
        if expected_address != addr:
            logger.warning(
                "%s address (%s) does not match derived wallet address (%s). Using wallet.",
                label, expected_address, addr,
            )
    return Participant(label=label, address=addr, private_key=sk)


def participant_from_mnemonic(label: str, mn: str, expected_address: Optional[str] = None) -> Participant:
    try:
        sk = mnemonic.to_private_key(mn)
    except Exception as e:  # algosdk raises several error types for a bad word list
        raise ConfigurationError(f"Invalid mnemonic for {label}: {e}")
    return _participant(label, sk, expected_address)


def participant_from_private_key(label: str, sk: str, expected_address: Optional[str] = None) -> Participant:
    """`sk` is the base64 private key algosdk produces (64 bytes: seed + public key)."""
    try:
        raw = base64.b64decode(sk, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ConfigurationError(f"Invalid private key for {label}: {e}")
    if len(raw) != PRIVATE_KEY_BYTES:
        raise ConfigurationError(
            f"Invalid private key for {label}: expected {PRIVATE_KEY_BYTES} bytes, got {len(raw)}"
        )
    return _participant(label, sk, expected_address)


def load_participants_from_env(environ: Mapping[str, str], labels: Sequence[str]) -> List[Participant]:
    """`<label>_mnemonic` (25 words) or, failing that, `<label>_pk` (base64 private key)."""
    out: List[Participant] = []
    for label in labels:
        expected = env_get(environ, label)
        mn = env_label(environ, label, "mnemonic")
        if mn:
            out.append(participant_from_mnemonic(label, mn, expected))
            continue
        sk = env_label(environ, label, "pk")
        if sk:
            out.append(participant_from_private_key(label, sk, expected))
            continue
        raise ConfigurationError(f"Missing {label}_mnemonic in .env")
    return out


def load_cohort(path: Path) -> List[Participant]:
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Cohort file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except ValueError as e:
        raise ConfigurationError(f"{path} is not valid JSON: {e}")
    if not isinstance(data, list) or not data:
        raise ConfigurationError(f"{path} loaded but contained no entries.")

    out: List[Participant] = []
    seen = set()
    for i, e in enumerate(data, start=1):
        label = str(e.get("label") or f"account_{e.get('id', i)}").strip()
        if label in seen:
            raise ConfigurationError(f"Duplicate participant label {label!r} in {path}")
        seen.add(label)
        mn = str(e.get("mnemonic", "")).strip()
        if not mn:
            raise ConfigurationError(f"Entry {label} in {path} has no mnemonic")
        out.append(participant_from_mnemonic(label, mn, str(e.get("addr", "")).strip() or None))
    return out


def ensure_distinct(participants: Sequence[Participant]) -> None:
    """Each credential may back at most one concurrent task."""
    seen = {}
    for p in participants:
        if p.address in seen:
            raise ConfigurationError(f"{p.label} and {seen[p.address]} share address {p.address}")
        seen[p.address] = p.label
