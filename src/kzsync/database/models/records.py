"""
Record and ArchivedRecord models.

A Record is one performance attempt ingested from the remote authority.
Exactly one row exists per `original_id` (the remote record id), enforced by
a unique constraint and insert-if-absent writes.

Records are never edited after insert. Archiving relocates the row into
kz_records_archive (keeping the original primary key as `record_id`), and
restoring relocates it back column for column.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Column, DateTime, Index, Integer, Numeric, String
from sqlmodel import Field, SQLModel

from kzsync.core.database.base import utc_now

# Columns shared verbatim by kz_records and kz_records_archive
RECORD_COLUMNS = (
    "original_id",
    "player_id",
    "steamid64",
    "map_id",
    "server_id",
    "mode",
    "stage",
    "time",
    "teleports",
    "points",
    "tickrate",
    "record_filter_id",
    "replay_id",
    "updated_by",
    "created_on",
    "updated_on",
    "inserted_at",
)


class Record(SQLModel, table=True):
    """
    One ingested run.

    Attributes:
        original_id: Remote record id, the idempotency key
        player_id / map_id / server_id: Local surrogate references
        steamid64: Denormalized owner identity, used by ban archiving
        time: Run time in seconds (3 decimal places)
        teleports: Teleport-assist count; 0 means a "pro" run
    """

    __tablename__ = "kz_records"
    __table_args__ = (
        Index("ix_kz_records_player_map", "player_id", "map_id"),
        Index("ix_kz_records_map_mode_stage", "map_id", "mode", "stage"),
        Index("ix_kz_records_steamid64", "steamid64"),
        Index("ix_kz_records_created_on", "created_on"),
        # Archived rows keep their id for restore; ids must never be reused
        {"sqlite_autoincrement": True},
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    original_id: int = Field(sa_column=Column(BigInteger, unique=True, nullable=False))

    player_id: int = Field(nullable=False)
    steamid64: str = Field(sa_column=Column(String(20), nullable=False))
    map_id: int = Field(nullable=False)
    server_id: int = Field(nullable=False)

    mode: str = Field(default="kz_timer", max_length=32)
    stage: int = Field(default=0)
    time: float = Field(sa_column=Column(Numeric(10, 3, asdecimal=False), nullable=False))
    teleports: int = Field(default=0)
    points: int = Field(default=0)
    tickrate: int = Field(default=128)
    record_filter_id: int = Field(default=0)
    replay_id: int = Field(default=0)
    updated_by: int = Field(default=0)

    created_on: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))
    updated_on: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))
    inserted_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime, nullable=False, default=utc_now)
    )


class ArchivedRecord(SQLModel, table=True):
    """
    A record moved out of kz_records while its owner holds an active
    permanent ban, tagged with the ban that caused the move.
    """

    __tablename__ = "kz_records_archive"
    __table_args__ = (
        Index("ix_kz_records_archive_steamid64", "steamid64"),
        Index("ix_kz_records_archive_player_id", "player_id"),
        Index("ix_kz_records_archive_ban_id", "ban_id"),
    )

    record_id: int = Field(sa_column=Column(Integer, primary_key=True, autoincrement=False))
    original_id: int = Field(sa_column=Column(BigInteger, unique=True, nullable=False))

    player_id: int = Field(nullable=False)
    steamid64: str = Field(sa_column=Column(String(20), nullable=False))
    map_id: int = Field(nullable=False)
    server_id: int = Field(nullable=False)

    mode: str = Field(default="kz_timer", max_length=32)
    stage: int = Field(default=0)
    time: float = Field(sa_column=Column(Numeric(10, 3, asdecimal=False), nullable=False))
    teleports: int = Field(default=0)
    points: int = Field(default=0)
    tickrate: int = Field(default=128)
    record_filter_id: int = Field(default=0)
    replay_id: int = Field(default=0)
    updated_by: int = Field(default=0)

    created_on: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))
    updated_on: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))
    inserted_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime, nullable=False, default=utc_now)
    )

    ban_id: Optional[int] = Field(default=None)
    archived_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime, nullable=False, default=utc_now)
    )
    archived_reason: str = Field(default="permanent_ban", max_length=100)
