"""
Jumpstat partitions and their quarantine tables.

Each game variant keeps its jumpstats in its own table pair. The variants
share the semantic fields but not the column names of their keys:

    cs2      ID (uuid text)   SteamID64
    csgo128  JumpID (int)     SteamID32
    csgo64   JumpID (int)     SteamID32

Measured values are stored pre-scaled as integers (Distance x10000; Sync,
Pre, Max x100). Quarantine tables hold every original column plus the
provenance of the filter that moved the row.

These are plain Core tables on the shared metadata so their PascalCase
column names stay exactly as the game servers write them.
"""

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Index,
    Integer,
    SmallInteger,
    String,
    Table,
    Text,
)

from kzsync.core.database.base import metadata, utc_now

JUMPSTAT_VALUE_COLUMNS = (
    "JumpType",
    "Mode",
    "Distance",
    "IsBlockJump",
    "Block",
    "Strafes",
    "Sync",
    "Pre",
    "Max",
    "Airtime",
    "Created",
)

QUARANTINE_PROVENANCE_COLUMNS = (
    "filter_id",
    "filter_name",
    "filter_conditions",
    "quarantined_by",
    "quarantined_at",
    "notes",
)


def _value_columns() -> list[Column]:
    return [
        Column("JumpType", SmallInteger, nullable=False),
        Column("Mode", SmallInteger, nullable=False),
        Column("Distance", BigInteger, nullable=False),
        Column("IsBlockJump", SmallInteger, nullable=False, default=0),
        Column("Block", Integer, nullable=False, default=0),
        Column("Strafes", Integer, nullable=False, default=0),
        Column("Sync", Integer, nullable=False, default=0),
        Column("Pre", Integer, nullable=False, default=0),
        Column("Max", Integer, nullable=False, default=0),
        Column("Airtime", Integer, nullable=False, default=0),
        Column("Created", DateTime, nullable=False),
    ]


def _key_columns(game: str) -> list[Column]:
    if game == "cs2":
        return [
            Column("ID", String(36), primary_key=True),
            Column("SteamID64", String(20), nullable=False),
        ]
    return [
        Column("JumpID", Integer, primary_key=True, autoincrement=False),
        Column("SteamID32", BigInteger, nullable=False),
    ]


def _player_column(game: str) -> str:
    return "SteamID64" if game == "cs2" else "SteamID32"


def _jumpstats_table(game: str) -> Table:
    player = _player_column(game)
    return Table(
        f"{game}_jumpstats",
        metadata,
        *_key_columns(game),
        *_value_columns(),
        Index(f"ix_{game}_jumpstats_player", player),
        Index(f"ix_{game}_jumpstats_type_mode", "JumpType", "Mode"),
    )


def _quarantine_table(game: str) -> Table:
    player = _player_column(game)
    return Table(
        f"{game}_jumpstats_quarantine",
        metadata,
        *_key_columns(game),
        *_value_columns(),
        Column("filter_id", String(100), nullable=False),
        Column("filter_name", String(255), nullable=False),
        Column("filter_conditions", Text, nullable=True),
        Column("quarantined_by", String(50), nullable=False, default="system"),
        Column("quarantined_at", DateTime, nullable=False, default=utc_now),
        Column("notes", Text, nullable=True),
        Index(f"ix_{game}_jumpstats_quarantine_player", player),
        Index(f"ix_{game}_jumpstats_quarantine_filter", "filter_id"),
        Index(f"ix_{game}_jumpstats_quarantine_at", "quarantined_at"),
    )


CS2_JUMPSTATS = _jumpstats_table("cs2")
CS2_JUMPSTATS_QUARANTINE = _quarantine_table("cs2")
CSGO128_JUMPSTATS = _jumpstats_table("csgo128")
CSGO128_JUMPSTATS_QUARANTINE = _quarantine_table("csgo128")
CSGO64_JUMPSTATS = _jumpstats_table("csgo64")
CSGO64_JUMPSTATS_QUARANTINE = _quarantine_table("csgo64")

JUMPSTAT_TABLES = {
    "cs2": (CS2_JUMPSTATS, CS2_JUMPSTATS_QUARANTINE),
    "csgo128": (CSGO128_JUMPSTATS, CSGO128_JUMPSTATS_QUARANTINE),
    "csgo64": (CSGO64_JUMPSTATS, CSGO64_JUMPSTATS_QUARANTINE),
}
