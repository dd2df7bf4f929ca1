"""
deploy.py - create a new saving circle application

Purpose
-------
One-shot: compile the circle's approval/clear TEAL, create the application
with its ten creation arguments, optionally fund the application account
(minimum balance for boxes + inner-transaction fees), and record the result in
the deployment registry so later commands can find it.

Creation arguments (in order)
-----------------------------
  installment_asset        ASA id paid every round
  reward_asset             ASA id bid in each round's auction
  installment_size         base units of installment_asset per round
  reward_per_installment   reward_asset minted/paid per installment
  num_rounds               number of rounds (>= 1)
  start_time               epoch seconds of round 0; "+N" = N seconds after current ledger time
  round_duration           seconds per round (> 0)
  num_users                circle size
  admin                    Algorand address of the circle admin
  max_auction_size         ceiling for any single auction bid
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import astuple, dataclass, fields
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

from algosdk import account, transaction
from algosdk.encoding import decode_address, is_valid_address
from algosdk.logic import get_application_address
from algosdk.v2client import algod

from . import chain, registry
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# 9 uint globals (see ledger.AGREEMENT_FIELDS) + admin address
GLOBAL_SCHEMA = transaction.StateSchema(num_uints=9, num_byte_slices=1)
LOCAL_SCHEMA = transaction.StateSchema(num_uints=0, num_byte_slices=0)


@dataclass(frozen=True)
class CircleArgs:
    installment_asset: int
    reward_asset: int
    installment_size: int
    reward_per_installment: int
    num_rounds: int
    start_time: int
    round_duration: int
    num_users: int
    admin: str
    max_auction_size: int

    def app_args(self) -> List[bytes]:
        out = []
        for f in fields(self):
            v = getattr(self, f.name)
            out.append(decode_address(v) if f.name == "admin" else chain.u64(v))
        return out

    def as_dict(self) -> Dict[str, Union[int, str]]:
        return {f.name: (v if f.name == "admin" else str(v)) for f, v in zip(fields(self), astuple(self))}


ARGUMENT_NAMES = [f.name for f in fields(CircleArgs)]


def _coerce(name: str, value, now: Optional[Callable[[], int]]) -> Union[int, str]:
    if value is None or str(value).strip() == "":
        raise ConfigurationError(f"Missing value for {name}")
    raw = str(value).strip()
    if name == "admin":
        if not is_valid_address(raw):
            raise ConfigurationError(f"admin {raw!r} is not a valid Algorand address")
        return raw
    if name == "start_time" and raw.startswith("+"):
        if now is None:
            raise ConfigurationError("Relative start_time needs a ledger clock")
        offset = _coerce("start_time offset", raw[1:], None)
        return now() + offset
    try:
        parsed = int(raw)
    except ValueError:
        raise ConfigurationError(f"Unable to parse numeric argument {name} from value {raw!r}")
    if parsed < 0:
        raise ConfigurationError(f"{name} must be non-negative, got {parsed}")
    return parsed


def parse_circle_args(
    raw: Union[Sequence, Dict[str, object]],
    now: Optional[Callable[[], int]] = None,
) -> CircleArgs:
    """Accept an ordered list of 10 values, or a dict keyed by argument name."""
    if isinstance(raw, dict):
        missing = [n for n in ARGUMENT_NAMES if n not in raw]
        if missing:
            raise ConfigurationError(f"Missing circle arguments: {', '.join(missing)}")
        raw = [raw[n] for n in ARGUMENT_NAMES]
    raw = list(raw)
    if len(raw) != len(ARGUMENT_NAMES):
        raise ConfigurationError(
            f"Expected {len(ARGUMENT_NAMES)} arguments ({', '.join(ARGUMENT_NAMES)}), but received {len(raw)}."
        )
    args = CircleArgs(*[_coerce(n, v, now) for n, v in zip(ARGUMENT_NAMES, raw)])
    if args.num_rounds < 1:
        raise ConfigurationError("num_rounds must be >= 1")
    if args.round_duration < 1:
        raise ConfigurationError("round_duration must be >= 1")
    return args


def parse_circle_args_json(text: str, now: Optional[Callable[[], int]] = None) -> CircleArgs:
    try:
        raw = json.loads(text)
    except ValueError as e:
        raise ConfigurationError(f"Failed to parse CIRCLE_ARGS env var as JSON: {e}")
    if not isinstance(raw, (list, dict)):
        raise ConfigurationError("CIRCLE_ARGS must be a JSON array of 10 values (or an object keyed by name).")
    return parse_circle_args(raw, now)


def compile_program(client: algod.AlgodClient, path: Path) -> bytes:
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Missing TEAL file: {path}")
    source = path.read_text(encoding="utf-8")
    return base64.b64decode(client.compile(source)["result"])


def deploy_circle(
    client: algod.AlgodClient,
    deployer_sk: str,
    approval_path: Path,
    clear_path: Path,
    args: CircleArgs,
    fund_microalgos: int = 0,
    registry_path: Optional[Path] = None,
    confirm_rounds: int = 12,
) -> registry.DeploymentRecord:
    deployer_addr = account.address_from_private_key(deployer_sk)
    logger.info("Using deployer %s", deployer_addr)
    for name, value in args.as_dict().items():
        logger.info("  - %s: %s", name, value)

    approval = compile_program(client, approval_path)
    clear = compile_program(client, clear_path)

    create_txn = transaction.ApplicationCreateTxn(
        sender=deployer_addr,
        sp=client.suggested_params(),
        on_complete=transaction.OnComplete.NoOpOC,
        approval_program=approval,
        clear_program=clear,
        global_schema=GLOBAL_SCHEMA,
        local_schema=LOCAL_SCHEMA,
        app_args=args.app_args(),
        foreign_assets=[args.installment_asset, args.reward_asset],
    )
    txid = chain.send_signed(client, create_txn.sign(deployer_sk))
    logger.info("Transaction submitted: %s", txid)
    info = chain.wait_for_confirm(client, txid, confirm_rounds)
    app_id = int(info["application-index"])
    app_address = get_application_address(app_id)
    logger.info("New SavingCircle deployed: app id %s, address %s (block %s)", app_id, app_address, info.get("confirmed-round"))

    if fund_microalgos > 0:
        pay = transaction.PaymentTxn(
            sender=deployer_addr, sp=client.suggested_params(), receiver=app_address, amt=int(fund_microalgos)
        )
        fund_txid = chain.send_signed(client, pay.sign(deployer_sk))
        chain.wait_for_confirm(client, fund_txid, confirm_rounds)
        logger.info("Funded %s with %s microAlgos (tx %s)", app_address, fund_microalgos, fund_txid)

    record = registry.DeploymentRecord(address=app_address, app_id=app_id, txid=txid, args=args.as_dict())
    if registry_path is not None:
        registry.save_deployment(registry_path, record)
    return record
