"""
Scrape checkpoint persistence.

Purpose
-------
Keep the scraper cursor and cumulative counters in a small JSON document so
a restart resumes where the previous process stopped.

Architecture Notes
------------------
- Written after every batch through a temp file and `os.replace`, so a crash
  mid-write leaves the previous document intact.
- Best-effort in both directions: a missing, unreadable or malformed file
  loads as `None` and the caller falls back to the database; a failed write
  is logged and reported as `False`, never raised.

Document shape
--------------
{
    "last_record_id": 105,
    "last_successful_id": 103,
    "last_update": "2026-01-01T00:00:00",
    "last_ban_sync": "2026-01-01T00:00:00" | null,
    "stats": {"processed": 0, "inserted": 0, ...}
}
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

from kzsync.core.database.base import utc_now
from kzsync.core.exceptions import CheckpointError
from kzsync.core.logging.logger import get_logger

logger = get_logger(__name__)


@dataclass
class Checkpoint:
    last_record_id: int
    last_successful_id: int = 0
    last_update: Optional[datetime] = None
    last_ban_sync: Optional[datetime] = None
    stats: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["last_update"] = self.last_update.isoformat() if self.last_update else None
        data["last_ban_sync"] = self.last_ban_sync.isoformat() if self.last_ban_sync else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        """Parse a stored document; raises ValueError/TypeError/KeyError when malformed."""
        last_record_id = int(data["last_record_id"])
        if last_record_id < 0:
            raise ValueError("last_record_id must be >= 0")

        return cls(
            last_record_id=last_record_id,
            last_successful_id=int(data.get("last_successful_id") or 0),
            last_update=_parse_datetime(data.get("last_update")),
            last_ban_sync=_parse_datetime(data.get("last_ban_sync")),
            stats={str(k): int(v) for k, v in (data.get("stats") or {}).items()},
        )


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(str(value))


class CheckpointStore:
    """
    JSON file holding one Checkpoint.

    Public API
    ----------
    - load() -> Checkpoint or None when absent/corrupt
    - save(checkpoint) -> True on success, False on a logged failure
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Optional[Checkpoint]:
        if not self._path.exists():
            logger.info("No checkpoint file found", extra={"path": str(self._path)})
            return None

        try:
            return self._read()
        except CheckpointError as exc:
            logger.warning(
                "Checkpoint unreadable; falling back to database",
                extra={"path": str(self._path), "error": str(exc.original_error)},
            )
            return None

    def save(self, checkpoint: Checkpoint) -> bool:
        if checkpoint.last_update is None:
            checkpoint.last_update = utc_now()

        try:
            self._write(checkpoint)
        except CheckpointError as exc:
            logger.error(
                "Failed to persist checkpoint",
                extra={"path": str(self._path), "error": str(exc.original_error)},
            )
            return False
        return True

    def _read(self) -> Checkpoint:
        try:
            with self._path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
            if not isinstance(data, dict):
                raise ValueError("checkpoint document must be an object")
            return Checkpoint.from_dict(data)
        except (OSError, ValueError, TypeError, KeyError) as exc:
            raise CheckpointError(str(self._path), exc) from exc

    def _write(self, checkpoint: Checkpoint) -> None:
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as fh:
                json.dump(checkpoint.to_dict(), fh, indent=2)
            os.replace(tmp_path, self._path)
        except (OSError, TypeError, ValueError) as exc:
            raise CheckpointError(str(self._path), exc) from exc
