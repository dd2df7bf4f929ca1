"""
Deployment registry.

`deployments/SavingCircle.json` is the local record of which circle instance
was created last. It is written once by `deploy` and read by `pay`,
`register` and `status` to discover the app id when none is given.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class DeploymentRecord:
    address: str
    app_id: int
    txid: str
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    args: Dict[str, Any] = field(default_factory=dict)


def save_deployment(path: Path, record: DeploymentRecord) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(asdict(record), indent=2), encoding="utf-8")
    logger.info("Deployment info written to %s", path)
    return path


def load_deployment(path: Path) -> Optional[DeploymentRecord]:
    """Return the stored record, or None when the file is missing or unreadable."""
    path = Path(path)
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return DeploymentRecord(
            address=str(data.get("address", "")),
            app_id=int(data["app_id"]),
            txid=str(data.get("txid", "")),
            created_at=str(data.get("created_at", "")),
            args=dict(data.get("args") or {}),
        )
    except (ValueError, KeyError, TypeError) as e:
        logger.warning("Unable to parse %s: %s", path, e)
        return None


def load_app_id(path: Path) -> Optional[int]:
    record = load_deployment(path)
    if record is None or record.app_id <= 0:
        return None
    logger.info("Loaded SavingCircle app id %s from %s", record.app_id, path)
    return record.app_id
