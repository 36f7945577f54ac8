"""
Derived best-time caches.

Maintained by the scraper on every *new* insert with strictly-better-only
replacement, so a cached time can only decrease.

run_type is "pro" for zero-teleport runs and "tp" otherwise; the two are
ranked separately.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Column, DateTime, Numeric, String, UniqueConstraint
from sqlmodel import Field, SQLModel

from kzsync.core.database.base import utc_now

RUN_TYPE_PRO = "pro"
RUN_TYPE_TP = "tp"


class PlayerMapBest(SQLModel, table=True):
    """Personal best per (player, map, mode, stage, run_type)."""

    __tablename__ = "kz_player_map_bests"
    __table_args__ = (
        UniqueConstraint(
            "player_id", "map_id", "mode", "stage", "run_type",
            name="uq_kz_player_map_bests_key",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    player_id: int = Field(nullable=False)
    map_id: int = Field(nullable=False, index=True)
    mode: str = Field(max_length=32)
    stage: int = Field(default=0)
    run_type: str = Field(max_length=3)

    original_id: int = Field(sa_column=Column(BigInteger, nullable=False))
    time: float = Field(sa_column=Column(Numeric(10, 3, asdecimal=False), nullable=False))
    teleports: int = Field(default=0)
    points: int = Field(default=0)
    server_id: int = Field(nullable=False)
    created_on: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))
    updated_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime, nullable=False, default=utc_now)
    )


class MapWorldRecord(SQLModel, table=True):
    """Global best per (map, mode, stage, run_type)."""

    __tablename__ = "kz_map_world_records"
    __table_args__ = (
        UniqueConstraint(
            "map_id", "mode", "stage", "run_type",
            name="uq_kz_map_world_records_key",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    map_id: int = Field(nullable=False)
    mode: str = Field(max_length=32)
    stage: int = Field(default=0)
    run_type: str = Field(max_length=3)

    player_id: int = Field(nullable=False)
    steamid64: str = Field(sa_column=Column(String(20), nullable=False))
    player_name: str = Field(default="Unknown", max_length=255)
    original_id: int = Field(sa_column=Column(BigInteger, nullable=False))
    time: float = Field(sa_column=Column(Numeric(10, 3, asdecimal=False), nullable=False))
    teleports: int = Field(default=0)
    points: int = Field(default=0)
    created_on: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))
    updated_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime, nullable=False, default=utc_now)
    )
