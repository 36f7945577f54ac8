"""
Ban page ingestion.

Upserts one page of `GET /bans` into kz_bans keyed by the remote ban id and
reports the distinct players it touched, for the reconciler.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession

from kzsync.core.database.base import utc_now
from kzsync.core.database.upsert import upsert_rows
from kzsync.core.logging.logger import get_logger
from kzsync.database.models import Ban
from kzsync.modules.shared.normalize import (
    coerce_int,
    parse_timestamp,
    require,
    sanitize_string,
)

logger = get_logger(__name__)

# Refreshed from the authority on every sighting; created_at is kept
BAN_REFRESH_COLUMNS = (
    "ban_type",
    "expires_on",
    "ip",
    "steamid64",
    "player_name",
    "steam_id",
    "notes",
    "stats",
    "server_id",
    "updated_by_id",
    "created_on",
    "updated_on",
    "updated_at",
)


def _ban_timestamp(value: Any) -> Optional[datetime]:
    # DATETIME columns hold whole seconds; the authority sends milliseconds
    parsed = parse_timestamp(value)
    return parsed.replace(microsecond=0) if parsed is not None else None


def normalize_ban(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Coerce one ban entry into kz_bans column values.

    Timestamps are truncated to whole seconds and never clamped, so the
    permanent sentinel survives whatever precision the authority sends.

    Raises
    ------
    ValueError
        If the entry is not an object, lacks an id, or has a bad timestamp.
    """
    if not isinstance(payload, Mapping):
        raise ValueError("ban payload must be an object")

    stats = payload.get("stats")
    if stats is not None and not isinstance(stats, str):
        stats = json.dumps(stats, sort_keys=True)

    steamid64 = payload.get("steamid64")
    server_id = payload.get("server_id")
    return {
        "id": int(require(payload, "id")),
        "ban_type": sanitize_string(payload.get("ban_type"), 50, "none"),
        "expires_on": _ban_timestamp(payload.get("expires_on")),
        "ip": sanitize_string(payload.get("ip"), 45),
        "steamid64": str(steamid64).strip() if steamid64 not in (None, "") else None,
        "player_name": sanitize_string(payload.get("player_name"), 255),
        "steam_id": sanitize_string(payload.get("steam_id"), 32),
        "notes": payload.get("notes"),
        "stats": stats,
        "server_id": coerce_int(server_id, 0) if server_id is not None else None,
        "updated_by_id": sanitize_string(payload.get("updated_by_id"), 20),
        "created_on": _ban_timestamp(payload.get("created_on")),
        "updated_on": _ban_timestamp(payload.get("updated_on")),
    }


@dataclass
class BanIngestResult:
    upserted: int = 0
    invalid: int = 0
    steamids: Set[str] = field(default_factory=set)


class BanIngestService:
    """Normalizes and upserts ban pages."""

    def prepare(self, payloads: Iterable[Any]) -> tuple[List[Dict[str, Any]], BanIngestResult]:
        """Normalize a page; duplicate ids within the page keep the last entry."""
        result = BanIngestResult()
        now = utc_now()
        rows: Dict[int, Dict[str, Any]] = {}

        for payload in payloads:
            try:
                row = normalize_ban(payload)
            except (ValueError, TypeError) as exc:
                result.invalid += 1
                logger.warning("Skipping malformed ban entry", extra={"error": str(exc)})
                continue
            row["created_at"] = now
            row["updated_at"] = now
            rows[row["id"]] = row
            if row["steamid64"]:
                result.steamids.add(row["steamid64"])

        return list(rows.values()), result

    async def upsert(self, session: AsyncSession, rows: List[Dict[str, Any]]) -> int:
        return await upsert_rows(
            session,
            Ban,
            rows,
            conflict_columns=["id"],
            update_columns=BAN_REFRESH_COLUMNS,
        )
