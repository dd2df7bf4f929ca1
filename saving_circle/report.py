"""
Run report written next to each `pay` run:

run-dir/
  - payment_log.csv     (one row per (round, participant) attempt)
  - round_summary.csv   (round x outcome counts)
  - run_meta.json       (run configuration + ids)
"""

from __future__ import annotations

import csv
import json
import time
from pathlib import Path
from typing import Dict, Iterable, Optional

import pandas as pd

from .executor import Attempt, Outcome

PAYMENT_LOG_FIELDS = [
    "round",
    "label",
    "address",
    "outcome",
    "auction_size",
    "txid",
    "confirmed_round",
    "approval_txids",
    "error_kind",
    "error",
]


def default_run_dir(base: Path) -> Path:
    return Path(base) / time.strftime("%Y-%m-%d_%H-%M-%S")


def init_payment_log(run_dir: Path) -> Path:
    run_dir.mkdir(parents=True, exist_ok=True)
    path = run_dir / "payment_log.csv"
    with path.open("w", newline="", encoding="utf-8") as f:
        csv.DictWriter(f, fieldnames=PAYMENT_LOG_FIELDS).writeheader()
    return path


def attempt_row(a: Attempt) -> dict:
    return {
        "round": a.round_index,
        "label": a.label,
        "address": a.address,
        "outcome": a.outcome.value,
        "auction_size": a.auction_size,
        "txid": a.txid,
        "confirmed_round": a.confirmed_round if a.confirmed_round is not None else "",
        "approval_txids": ";".join(a.approval_txids),
        "error_kind": a.error_kind,
        "error": a.error[:300],
    }


def append_row(path: Path, row: dict) -> None:
    with path.open("a", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(f, fieldnames=list(row.keys()))
        w.writerow(row)


def summarize(attempts: Iterable[Attempt]) -> pd.DataFrame:
    """Outcome counts per round; every outcome gets a column even when zero."""
    df = pd.DataFrame([attempt_row(a) for a in attempts], columns=PAYMENT_LOG_FIELDS)
    columns = [o.value for o in Outcome]
    if df.empty:
        return pd.DataFrame(columns=columns).rename_axis("round")
    table = pd.crosstab(df["round"], df["outcome"])
    return table.reindex(columns=columns, fill_value=0)


def write_report(run_dir: Path, attempts: Iterable[Attempt], meta: Optional[Dict] = None) -> Dict[str, Path]:
    attempts = list(attempts)
    log_path = init_payment_log(run_dir)
    for a in attempts:
        append_row(log_path, attempt_row(a))

    summary_path = run_dir / "round_summary.csv"
    summarize(attempts).to_csv(summary_path)

    meta_path = run_dir / "run_meta.json"
    meta = dict(meta or {})
    meta.setdefault("timestamp", time.strftime("%Y-%m-%d %H:%M:%S"))
    meta_path.write_text(json.dumps(meta, indent=2, default=str), encoding="utf-8")
    return {"payment_log": log_path, "round_summary": summary_path, "meta": meta_path}
