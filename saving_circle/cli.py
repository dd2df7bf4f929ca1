"""
cli.py - `saving-circle` command line

Subcommands
-----------
pay       Pay installments for every round (default), or a single round.
register  Register the configured accounts with the circle.
deploy    Create a new circle application and record it in the registry.
status    Read-only: schedule, current round, balances/allowances/contributions.

Environment (.env)
------------------
Required:
  ALGOD_ADDRESS (or ALGOD_URL / ALGOD_SERVER)
  <label>_mnemonic (or a base64 <label>_pk) for every label in CIRCLE_ACCOUNTS (default account_1..account_3)
  SAVING_CIRCLE_APP_ID, unless --app-id is given or deployments/SavingCircle.json exists
Optional:
  ALGOD_TOKEN, ALGOD_HEADERS_JSON
  AUCTION_SIZE, <label>_auction_size
  POLL_INTERVAL_SECONDS, CONFIRM_ROUNDS
  ROUND / CIRCLE_ROUND   (pay: single round)
  DEPLOYER_MNEMONIC (or COORDINATOR_MNEMONIC), CIRCLE_ARGS   (deploy)

Examples
--------
  saving-circle pay
  saving-circle pay --round 1
  saving-circle pay --current --auction-size 25
  saving-circle deploy 1001 1002 100 10 3 +30 60 3 <ADMIN_ADDR> 1000000000 --fund 2000000
  saving-circle register --seed-unlimited-allowance
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import threading
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

from algosdk import account, mnemonic
from dotenv import load_dotenv

from . import chain, config as cfg
from .auction import resolve_all
from .clock import AlgodClock
from .deploy import parse_circle_args, parse_circle_args_json, deploy_circle
from .errors import ConfigurationError, RunAbort, WaitCancelled
from .ledger import AlgorandLedger
from .participants import Participant, ensure_distinct, load_cohort, load_participants_from_env
from .registration import register_all
from .report import default_run_dir, write_report
from .schedule import AgreementSchedule, load_schedule
from .scheduler import RoundScheduler, RunResult

logger = logging.getLogger("saving_circle")


# -----------------------------
# Helpers
# -----------------------------

def configure_logging(verbose: int = 0) -> None:
    level = logging.DEBUG if verbose > 0 else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-7s [%(threadName)s] %(name)s: %(message)s",
    )
    if verbose < 2:
        # algod request chatter
        logging.getLogger("urllib3").setLevel(logging.WARNING)


def parse_round_number(value: str) -> int:
    try:
        parsed = int(str(value).strip())
    except ValueError:
        raise ConfigurationError(f'Round must be a non-negative integer, received "{value}"')
    if parsed < 0:
        raise ConfigurationError(f'Round must be a non-negative integer, received "{value}"')
    return parsed


def resolve_rounds(
    args: argparse.Namespace,
    environ: Mapping[str, str],
    schedule: AgreementSchedule,
    ledger,
) -> Optional[List[int]]:
    """
    None = every round. A single round comes from --round, then ROUND /
    CIRCLE_ROUND, then --current (the round containing the current ledger time).
    """
    if args.round is not None:
        rounds = [parse_round_number(args.round)]
    else:
        env_round = cfg.env_get(environ, "ROUND") or cfg.env_get(environ, "CIRCLE_ROUND")
        if env_round is not None:
            rounds = [parse_round_number(env_round)]
        elif args.current:
            current = schedule.round_at(ledger.now())
            logger.info("ROUND not provided; defaulting to current round = %s", current)
            rounds = [current]
        else:
            rounds = list(range(args.from_round, schedule.num_rounds)) if args.from_round else None

    for r in rounds or []:
        if r >= schedule.num_rounds:
            raise ConfigurationError(f"Round {r} outside the circle's {schedule.num_rounds} rounds")
    return rounds


def load_participants(run_config: cfg.RunConfig, environ: Mapping[str, str]) -> List[Participant]:
    if run_config.cohort_path is not None:
        participants = load_cohort(run_config.cohort_path)
    else:
        participants = load_participants_from_env(environ, run_config.labels)
    ensure_distinct(participants)
    return participants


def build_ledger(run_config: cfg.RunConfig) -> AlgorandLedger:
    client = chain.get_algod_client(run_config.algod)
    contract = chain.load_abi_contract(run_config.abi_path)
    logger.info("Using SavingCircle app %s", run_config.app_id)
    return AlgorandLedger(client, run_config.app_id, contract, run_config.confirm_rounds)


def run_config_from_args(args: argparse.Namespace, environ: Mapping[str, str]) -> cfg.RunConfig:
    return cfg.load_run_config(
        environ,
        app_id=args.app_id,
        auction_size=getattr(args, "auction_size", None),
        poll_interval=getattr(args, "poll_interval", None),
        confirm_rounds=args.confirm_rounds,
        max_workers=getattr(args, "max_workers", None),
        registry_path=args.registry,
        cohort_path=args.cohort_json,
    )


# -----------------------------
# Commands
# -----------------------------

def cmd_pay(args: argparse.Namespace, environ: Mapping[str, str]) -> int:
    run_config = run_config_from_args(args, environ)
    ledger = build_ledger(run_config)
    schedule = load_schedule(ledger)

    participants = resolve_all(
        load_participants(run_config, environ),
        run_config.auction_size,
        schedule.reward_per_installment,
        schedule.max_auction_size,
        run_config.auction_overrides,
    )
    for p in participants:
        logger.info("%s (%s): auction size %s %s", p.label, p.address, p.auction_size, schedule.reward_symbol)

    rounds = resolve_rounds(args, environ, schedule, ledger)

    cancel = threading.Event()
    scheduler = RoundScheduler(
        ledger,
        schedule,
        poll_interval=run_config.poll_interval,
        max_workers=run_config.max_workers,
        max_clock_failures=run_config.max_clock_failures,
        cancel=cancel,
    )
    result = RunResult()
    completed = False
    try:
        scheduler.run(participants, rounds, result=result)
        completed = True
    except KeyboardInterrupt:
        cancel.set()
        raise
    finally:
        # rounds that finished before an abort still need a record for reconciliation
        run_dir = Path(args.report_dir) if args.report_dir else default_run_dir(cfg.DEFAULT_RUNS_DIR)
        paths = write_report(
            run_dir,
            result.attempts,
            meta={
                "app_id": run_config.app_id,
                "completed": completed,
                "requested_rounds": rounds,
                "rounds": [rr.round.index for rr in result.rounds],
                "participants": {p.label: p.address for p in participants},
                "auction_sizes": {p.label: p.auction_size for p in participants},
                "installment_size": schedule.installment_size,
                "start_time": schedule.start_time,
                "round_duration": schedule.round_duration,
                "num_rounds": schedule.num_rounds,
            },
        )
        if not completed:
            logger.warning(
                "Run aborted after %s finished round(s); partial report in %s", len(result.rounds), run_dir
            )

    print("\n✅ Payment run complete.")
    for rr in result.rounds:
        counts = ", ".join(f"{k}={v}" for k, v in rr.counts().items() if v)
        print(f"- Round {rr.round.index}: {counts}")
    for a in result.failed:
        print(f"  ❌ round {a.round_index} {a.label}: {a.error_kind}: {a.error[:140]}")
    print(f"- Payment log:   {paths['payment_log']}")
    print(f"- Round summary: {paths['round_summary']}")
    print(f"- Meta:          {paths['meta']}")
    return 0


def cmd_register(args: argparse.Namespace, environ: Mapping[str, str]) -> int:
    run_config = run_config_from_args(args, environ)
    ledger = build_ledger(run_config)
    schedule = load_schedule(ledger, with_metadata=False) if args.seed_unlimited_allowance else None
    participants = load_participants(run_config, environ)
    register_all(ledger, participants, schedule, args.seed_unlimited_allowance)
    print(f"✅ All {len(participants)} accounts registered successfully.")
    return 0


def cmd_deploy(args: argparse.Namespace, environ: Mapping[str, str]) -> int:
    settings = cfg.load_algod_settings(environ)
    client = chain.get_algod_client(settings)
    deployer_mn = cfg.env_first("DEPLOYER_MNEMONIC", "COORDINATOR_MNEMONIC", environ=environ)
    try:
        deployer_sk = mnemonic.to_private_key(deployer_mn)
    except Exception as e:  # algosdk raises several error types for a bad word list
        raise ConfigurationError(f"Invalid DEPLOYER_MNEMONIC: {e}")

    clock = AlgodClock(client)

    if args.circle_args:
        circle_args = parse_circle_args(args.circle_args, now=clock.now)
    else:
        raw = cfg.env_get(environ, "CIRCLE_ARGS")
        if not raw:
            raise ConfigurationError("No circle arguments supplied. Pass 10 CLI args or set CIRCLE_ARGS (JSON array).")
        circle_args = parse_circle_args_json(raw, now=clock.now)

    record = deploy_circle(
        client,
        deployer_sk,
        Path(args.approval),
        Path(args.clear),
        circle_args,
        fund_microalgos=args.fund,
        registry_path=Path(args.registry) if args.registry else cfg.DEFAULT_REGISTRY_PATH,
        confirm_rounds=args.confirm_rounds or cfg.CONFIRM_ROUNDS,
    )
    print("✅ SavingCircle deployed successfully!")
    print(f"   - Application ID: {record.app_id}")
    print(f"   - Address:        {record.address}")
    print(f"   - Deployer:       {account.address_from_private_key(deployer_sk)}")
    return 0


def cmd_status(args: argparse.Namespace, environ: Mapping[str, str]) -> int:
    run_config = run_config_from_args(args, environ)
    ledger = build_ledger(run_config)
    schedule = load_schedule(ledger)
    now = ledger.now()
    current = schedule.round_at(now)

    print(f"🔹 SavingCircle app {run_config.app_id} ({ledger.app_address})")
    print(f"   ledger time {now}; current round {current}; circle ends at {schedule.end_time}")
    for rnd in schedule.rounds():
        marker = "→" if rnd.contains(now) else " "
        print(f" {marker} round {rnd.index}: [{rnd.window_start}, {rnd.deadline})")
    print(
        f"   installment {schedule.installment_size} {schedule.installment_symbol}, "
        f"reward {schedule.reward_per_installment} {schedule.reward_symbol}, "
        f"max auction {schedule.max_auction_size}"
    )

    participants = load_participants(run_config, environ)
    print(f"\n{'LABEL':<12} {'PAID':>10} {'INST BAL':>12} {'INST ALLOW':>12} {'RWD BAL':>12} {'RWD ALLOW':>12}")
    for p in participants:
        print(
            f"{p.label:<12} "
            f"{ledger.contribution(current, p.address):>10} "
            f"{ledger.balance_of(p.address, schedule.installment_asset_id):>12} "
            f"{ledger.allowance_of(p.address, schedule.installment_asset_id):>12} "
            f"{ledger.balance_of(p.address, schedule.reward_asset_id):>12} "
            f"{ledger.allowance_of(p.address, schedule.reward_asset_id):>12}"
        )
    return 0


# -----------------------------
# Main
# -----------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="saving-circle", description="Saving circle installment scheduler")
    parser.add_argument("--env-file", default=".env", help="dotenv file to load (default .env)")
    parser.add_argument("-v", "--verbose", action="count", default=0)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--app-id", type=int, default=None, help="SavingCircle application id")
    common.add_argument("--registry", default=None, help="Deployment registry JSON (default deployments/SavingCircle.json)")
    common.add_argument("--cohort-json", default=None, help="Cohort JSON with label/addr/mnemonic entries")
    common.add_argument("--confirm-rounds", type=int, default=None, help="Blocks to wait for each confirmation")

    sub = parser.add_subparsers(dest="command", required=True)

    p_pay = sub.add_parser("pay", parents=[common], help="Pay installments round by round")
    p_pay.add_argument("--round", default=None, help="Pay exactly this round")
    p_pay.add_argument("--current", action="store_true", help="Pay only the round open at the current ledger time")
    p_pay.add_argument("--from-round", type=int, default=0, help="Skip rounds before this index")
    p_pay.add_argument("--auction-size", default=None, help="Default reward-token auction size")
    p_pay.add_argument("--poll-interval", type=float, default=None, help="Max seconds between ledger clock polls")
    p_pay.add_argument("--max-workers", type=int, default=None, help="Concurrent participants per round")
    p_pay.add_argument("--report-dir", default=None, help="Where to write the run report (default runs/<timestamp>)")
    p_pay.set_defaults(func=cmd_pay)

    p_reg = sub.add_parser("register", parents=[common], help="Register participants")
    p_reg.add_argument(
        "--seed-unlimited-allowance",
        action="store_true",
        help="Also approve the circle for the maximum amount of both assets",
    )
    p_reg.set_defaults(func=cmd_register)

    p_dep = sub.add_parser("deploy", help="Create a new circle")
    p_dep.add_argument("circle_args", nargs="*", help="10 creation arguments (or CIRCLE_ARGS env)")
    p_dep.add_argument("--approval", default="approval_saving_circle.teal")
    p_dep.add_argument("--clear", default="clear_saving_circle.teal")
    p_dep.add_argument("--fund", type=int, default=0, help="microAlgos to send to the app account")
    p_dep.add_argument("--registry", default=None)
    p_dep.add_argument("--confirm-rounds", type=int, default=None)
    p_dep.set_defaults(func=cmd_deploy)

    p_status = sub.add_parser("status", parents=[common], help="Show schedule and participant state")
    p_status.set_defaults(func=cmd_status)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    load_dotenv(args.env_file)

    try:
        return args.func(args, os.environ)
    except RunAbort as e:
        logger.error("%s: %s", e.kind, e)
        return 1
    except WaitCancelled as e:
        logger.error("Cancelled: %s", e)
        return 130
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
