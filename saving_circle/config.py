"""
config.py - Central configuration for the saving-circle scheduler

Purpose
-------
Single source of truth for defaults and for the per-run configuration object.

- Module constants document defaults and units.
- `RunConfig` is built ONCE at process start (from .env / environment / CLI)
  and passed explicitly into every component. Nothing below the CLI reads the
  environment mid-run.

Units
-----
- Times are epoch seconds as reported by the ledger (block timestamps).
- Asset amounts are integer base units of the ASA (no decimals applied).
- Confirmation bounds are counted in ledger rounds (blocks), not seconds.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from .errors import ConfigurationError
from . import registry


# --- Participants ---
DEFAULT_ACCOUNT_LABELS = ("account_1", "account_2", "account_3")

# --- Scheduling ---
POLL_INTERVAL_SECONDS = 5.0     # upper bound on a single sleep while waiting for a round start
MIN_POLL_SLEEP_SECONDS = 0.25   # floor so a 0-second remainder does not spin the node
MAX_CLOCK_FAILURES = 3          # consecutive failed clock reads tolerated while waiting

# --- Confirmation ---
CONFIRM_ROUNDS = 12             # blocks to wait for a submitted txn before ConfirmationTimeout

# --- Auction sizing ---
MINIMAL_AUCTION_UNIT = 1        # used when neither override nor protocol reward is set

# --- Files ---
DEFAULT_REGISTRY_PATH = Path("deployments") / "SavingCircle.json"
DEFAULT_ABI_PATH = Path(__file__).resolve().parent / "abi" / "saving_circle.json"
DEFAULT_RUNS_DIR = Path("runs")


# -----------------------------
# Minimal env helpers
# -----------------------------

def env_get(environ: Mapping[str, str], key: str) -> Optional[str]:
    """Look a key up as written, then upper-cased (`account_1_mnemonic` or `ACCOUNT_1_MNEMONIC`)."""
    v = environ.get(key)
    if v is None:
        v = environ.get(key.upper())
    if v is None:
        return None
    v = v.strip()
    return v if v else None


def env_label(environ: Mapping[str, str], label: str, suffix: str) -> Optional[str]:
    """Per-account key: `account_1_auction_size`, `account_1_AUCTION_SIZE` or `ACCOUNT_1_AUCTION_SIZE`."""
    for key in (f"{label}_{suffix}", f"{label}_{suffix.upper()}"):
        v = (environ.get(key) or "").strip()
        if v:
            return v
    return env_get(environ, f"{label}_{suffix}".upper())


def env_first(*names: str, required: bool = True, environ: Optional[Mapping[str, str]] = None) -> str:
    environ = os.environ if environ is None else environ
    for n in names:
        v = env_get(environ, n)
        if v:
            return v
    if required:
        raise ConfigurationError(f"Missing env var. Tried: {', '.join(names)}")
    return ""


def env_first_int(*names: str, required: bool = True, environ: Optional[Mapping[str, str]] = None) -> int:
    raw = env_first(*names, required=required, environ=environ)
    if not raw:
        return 0
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"Expected an integer for {names[0]}, got {raw!r}")


def env_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = env_get(environ, name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"Expected a number for {name}, got {raw!r}")
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {raw!r}")
    return value


# -----------------------------
# Run configuration
# -----------------------------

@dataclass(frozen=True)
class AlgodSettings:
    address: str
    token: str = ""
    headers: Optional[Dict[str, str]] = None


@dataclass(frozen=True)
class RunConfig:
    algod: AlgodSettings
    app_id: int
    labels: Tuple[str, ...] = DEFAULT_ACCOUNT_LABELS
    auction_size: Optional[str] = None
    auction_overrides: Dict[str, str] = field(default_factory=dict)
    poll_interval: float = POLL_INTERVAL_SECONDS
    confirm_rounds: int = CONFIRM_ROUNDS
    max_clock_failures: int = MAX_CLOCK_FAILURES
    max_workers: Optional[int] = None
    abi_path: Path = DEFAULT_ABI_PATH
    registry_path: Path = DEFAULT_REGISTRY_PATH
    cohort_path: Optional[Path] = None


def load_algod_settings(environ: Mapping[str, str]) -> AlgodSettings:
    address = env_first("ALGOD_ADDRESS", "ALGOD_URL", "ALGOD_SERVER", environ=environ)
    # token may be blank for some nodes/providers
    token = env_first("ALGOD_TOKEN", "ALGOD_API_KEY", required=False, environ=environ)

    headers = None
    headers_json = env_get(environ, "ALGOD_HEADERS_JSON")
    if headers_json:
        try:
            headers = json.loads(headers_json)
        except ValueError as e:
            raise ConfigurationError(f"ALGOD_HEADERS_JSON is not valid JSON: {e}")
        if not isinstance(headers, dict):
            raise ConfigurationError("ALGOD_HEADERS_JSON must be a JSON object")
    return AlgodSettings(address=address, token=token, headers=headers)


def parse_labels(raw: Optional[str]) -> Tuple[str, ...]:
    if not raw:
        return DEFAULT_ACCOUNT_LABELS
    labels = tuple(p.strip() for p in raw.split(",") if p.strip())
    if not labels:
        raise ConfigurationError("CIRCLE_ACCOUNTS is set but names no accounts")
    if len(set(labels)) != len(labels):
        raise ConfigurationError(f"CIRCLE_ACCOUNTS contains duplicate labels: {raw!r}")
    return labels


def resolve_app_id(
    environ: Mapping[str, str],
    cli_app_id: Optional[int],
    registry_path: Path,
) -> int:
    """CLI value, then SAVING_CIRCLE_APP_ID, then the deployment registry file."""
    if cli_app_id:
        return int(cli_app_id)
    env_app_id = env_first_int("SAVING_CIRCLE_APP_ID", "CIRCLE_APP_ID", required=False, environ=environ)
    if env_app_id:
        return env_app_id
    file_app_id = registry.load_app_id(registry_path)
    if file_app_id:
        return file_app_id
    raise ConfigurationError(
        "Provide the SavingCircle app id via --app-id, SAVING_CIRCLE_APP_ID env var, "
        f"or ensure {registry_path} exists."
    )


def load_run_config(
    environ: Optional[Mapping[str, str]] = None,
    *,
    app_id: Optional[int] = None,
    auction_size: Optional[str] = None,
    poll_interval: Optional[float] = None,
    confirm_rounds: Optional[int] = None,
    max_workers: Optional[int] = None,
    registry_path: Optional[Path] = None,
    cohort_path: Optional[Path] = None,
    abi_path: Optional[Path] = None,
) -> RunConfig:
    """Build the run configuration. Explicit arguments (CLI) win over the environment."""
    environ = os.environ if environ is None else environ
    registry_path = Path(registry_path) if registry_path else DEFAULT_REGISTRY_PATH

    labels = parse_labels(env_get(environ, "CIRCLE_ACCOUNTS"))

    overrides: Dict[str, str] = {}
    for label in labels:
        v = env_label(environ, label, "auction_size")
        if v is not None:
            overrides[label] = v

    if confirm_rounds is None:
        confirm_rounds = env_first_int("CONFIRM_ROUNDS", required=False, environ=environ) or CONFIRM_ROUNDS
    if confirm_rounds <= 0:
        raise ConfigurationError(f"confirm rounds must be positive, got {confirm_rounds}")

    if poll_interval is None:
        poll_interval = env_float(environ, "POLL_INTERVAL_SECONDS", POLL_INTERVAL_SECONDS)
    elif poll_interval <= 0:
        raise ConfigurationError(f"poll interval must be positive, got {poll_interval}")

    return RunConfig(
        algod=load_algod_settings(environ),
        app_id=resolve_app_id(environ, app_id, registry_path),
        labels=labels,
        auction_size=auction_size if auction_size is not None else env_get(environ, "AUCTION_SIZE"),
        auction_overrides=overrides,
        poll_interval=float(poll_interval),
        confirm_rounds=int(confirm_rounds),
        max_workers=max_workers,
        abi_path=Path(abi_path) if abi_path else DEFAULT_ABI_PATH,
        registry_path=registry_path,
        cohort_path=Path(cohort_path) if cohort_path else None,
    )
