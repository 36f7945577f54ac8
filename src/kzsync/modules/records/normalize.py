"""Normalization of `GET /records/{id}` bodies."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from kzsync.database.models.caches import RUN_TYPE_PRO, RUN_TYPE_TP
from kzsync.modules.shared.normalize import (
    coerce_int,
    convert_timestamp,
    require,
    sanitize_string,
)

MISSING_SERVER_ID = -1
MISSING_SERVER_NAME = "Unknown Server (Missing ID)"

DEFAULT_MODE = "kz_timer"
DEFAULT_TICKRATE = 128


@dataclass(frozen=True)
class NormalizedRecord:
    original_id: int
    steamid64: str
    steam_id: Optional[str]
    player_name: str
    map_id: int
    map_name: str
    server_id: int
    server_name: str
    mode: str
    stage: int
    time: float
    teleports: int
    points: int
    tickrate: int
    record_filter_id: int
    replay_id: int
    updated_by: int
    created_on: Optional[datetime]
    updated_on: Optional[datetime]

    @property
    def run_type(self) -> str:
        return RUN_TYPE_PRO if self.teleports == 0 else RUN_TYPE_TP

    def record_values(self) -> Dict[str, Any]:
        """kz_records columns that come straight from the payload."""
        return {
            "original_id": self.original_id,
            "steamid64": self.steamid64,
            "mode": self.mode,
            "stage": self.stage,
            "time": self.time,
            "teleports": self.teleports,
            "points": self.points,
            "tickrate": self.tickrate,
            "record_filter_id": self.record_filter_id,
            "replay_id": self.replay_id,
            "updated_by": self.updated_by,
            "created_on": self.created_on,
            "updated_on": self.updated_on,
        }


def normalize_record(payload: Mapping[str, Any]) -> NormalizedRecord:
    """
    Coerce one record body.

    Raises
    ------
    ValueError
        If the payload is not an object, lacks id/steamid64/map_id/time, or
        carries a negative time.
    """
    if not isinstance(payload, Mapping):
        raise ValueError("record payload must be an object")

    original_id = int(require(payload, "id"))
    steamid64 = str(require(payload, "steamid64")).strip()
    map_id = int(require(payload, "map_id"))
    time = float(require(payload, "time"))
    if time < 0:
        raise ValueError("record time must be >= 0")

    server_id = coerce_int(payload.get("server_id"), MISSING_SERVER_ID)
    if server_id == MISSING_SERVER_ID:
        server_name = MISSING_SERVER_NAME
    else:
        server_name = sanitize_string(payload.get("server_name"), 255, f"Server {server_id}")

    return NormalizedRecord(
        original_id=original_id,
        steamid64=steamid64,
        steam_id=sanitize_string(payload.get("steam_id"), 32),
        player_name=sanitize_string(payload.get("player_name"), 255, "Unknown"),
        map_id=map_id,
        map_name=sanitize_string(payload.get("map_name"), 255, f"map_{map_id}"),
        server_id=server_id,
        server_name=server_name,
        mode=sanitize_string(payload.get("mode"), 32, DEFAULT_MODE),
        stage=coerce_int(payload.get("stage"), 0),
        time=round(time, 3),
        teleports=coerce_int(payload.get("teleports"), 0),
        points=coerce_int(payload.get("points"), 0),
        tickrate=coerce_int(payload.get("tickrate"), DEFAULT_TICKRATE),
        record_filter_id=coerce_int(payload.get("record_filter_id"), 0),
        replay_id=coerce_int(payload.get("replay_id"), 0),
        updated_by=coerce_int(payload.get("updated_by"), 0),
        created_on=convert_timestamp(payload.get("created_on")),
        updated_on=convert_timestamp(payload.get("updated_on")),
    )
