"""
chain.py
========

Algod plumbing shared by the ledger adapter, deploy and registration:

- algod client construction (token optional, extra headers via JSON)
- ABI contract loading + manual selector / canonical arg encoding
- global-state and box reads
- send + bounded confirmation with errors mapped onto the package taxonomy
"""

from __future__ import annotations

import base64
import json
import logging
from pathlib import Path
from typing import Dict, Optional

from algosdk import transaction
from algosdk.abi import Contract
from algosdk.encoding import decode_address
from algosdk.error import AlgodHTTPError
from algosdk.v2client import algod

from .config import AlgodSettings
from .errors import ConfirmationTimeout, ScheduleUnavailable, SubmissionRejected

logger = logging.getLogger(__name__)

# Box key prefixes used by the circle application.
BOX_CONTRIBUTION = b"dp"
BOX_ALLOWANCE = b"al"

# Largest amount an ASA allowance box can hold.
UINT64_MAX = 2**64 - 1


# -----------------------------
# Algod (token optional)
# -----------------------------

def get_algod_client(settings: AlgodSettings) -> algod.AlgodClient:
    # token may be blank for some nodes/providers
    return algod.AlgodClient(settings.token or "", settings.address, headers=settings.headers)


# -----------------------------
# ABI / Contract
# -----------------------------

def load_abi_contract(abi_path: Path) -> Contract:
    abi = json.loads(Path(abi_path).read_text(encoding="utf-8"))
    return Contract.from_json(json.dumps(abi))


def u64(x: int) -> bytes:
    return int(x).to_bytes(8, "big")


def contribution_box_name(round_index: int, address: str) -> bytes:
    return BOX_CONTRIBUTION + u64(round_index) + decode_address(address)


def allowance_box_name(asset_id: int, address: str) -> bytes:
    return BOX_ALLOWANCE + u64(asset_id) + decode_address(address)


# -----------------------------
# State reads
# -----------------------------

def b64_to_bytes(s: str) -> bytes:
    return base64.b64decode(s)


def read_global_state_raw(client: algod.AlgodClient, app_id: int) -> Dict[bytes, int]:
    """All uint entries of the application's global state, keyed by raw key bytes."""
    try:
        app = client.application_info(app_id)
    except AlgodHTTPError as e:
        raise ScheduleUnavailable(f"Could not read application {app_id}: {e}")
    gs_list = app.get("params", {}).get("global-state", [])
    out: Dict[bytes, int] = {}
    for kv in gs_list:
        k = b64_to_bytes(kv["key"])
        v = kv["value"]
        if v["type"] == 2:
            out[k] = int(v["uint"])
    return out


def gs_get(gs: Dict[bytes, int], *candidate_keys: bytes, default: Optional[int] = None) -> Optional[int]:
    for k in candidate_keys:
        if k in gs:
            return int(gs[k])
    return default


def read_box_uint(client: algod.AlgodClient, app_id: int, name: bytes) -> int:
    """uint64 stored in an application box; a box that does not exist reads as 0."""
    try:
        box = client.application_box_by_name(app_id, name)
    except AlgodHTTPError as e:
        if getattr(e, "code", None) == 404:
            return 0
        raise
    raw = b64_to_bytes(box["value"])
    return int.from_bytes(raw[:8], "big") if raw else 0


# -----------------------------
# Send / confirm
# -----------------------------

def send_signed(client: algod.AlgodClient, signed: transaction.SignedTransaction) -> str:
    try:
        return client.send_transaction(signed)
    except (AlgodHTTPError, OSError) as e:
        raise SubmissionRejected(str(e))


def wait_for_confirm(client: algod.AlgodClient, txid: str, timeout_rounds: int = 12) -> dict:
    """Wait block by block until `txid` is confirmed; give up after `timeout_rounds` blocks."""
    try:
        last_round = client.status().get("last-round", 0)
        for _ in range(timeout_rounds):
            p = client.pending_transaction_info(txid)
            if p.get("confirmed-round", 0) > 0:
                return p
            if p.get("pool-error"):
                raise ConfirmationTimeout(txid, f"dropped: {p['pool-error']}")
            last_round += 1
            client.status_after_block(last_round)
    except (AlgodHTTPError, OSError) as e:
        raise ConfirmationTimeout(txid, f"node error while waiting: {e}")
    raise ConfirmationTimeout(txid, f"not confirmed after {timeout_rounds} rounds")
