"""
Reference entities: players, maps and servers.

Created lazily the first time a record or ban mentions them, always through
insert-if-absent so concurrent sightings never produce duplicates.

Indexes:
    - kz_players.steamid64 (unique)
    - kz_players.is_banned (sweep candidates)
    - kz_maps (map_id, map_name) unique
    - kz_servers.server_id (unique)
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, Index, String, UniqueConstraint
from sqlmodel import Field, SQLModel

from kzsync.core.database.base import utc_now


class Player(SQLModel, table=True):
    """
    A player identified by a 64-bit Steam identity.

    `is_banned` is derived from kz_bans by the ban reconciler and is
    advisory only; kz_bans is the source of truth.
    """

    __tablename__ = "kz_players"
    __table_args__ = (
        Index("ix_kz_players_is_banned", "is_banned"),
        Index("ix_kz_players_last_seen", "last_seen"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    # Stored as text; 64-bit ids lose precision in some JSON consumers
    steamid64: str = Field(sa_column=Column(String(20), unique=True, nullable=False))
    steam_id: Optional[str] = Field(default=None, max_length=32)
    player_name: str = Field(default="Unknown", max_length=255)

    is_banned: bool = Field(default=False, nullable=False)
    last_seen: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))

    created_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime, nullable=False, default=utc_now)
    )
    updated_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime, nullable=False, default=utc_now)
    )


class KzMap(SQLModel, table=True):
    __tablename__ = "kz_maps"
    __table_args__ = (
        UniqueConstraint("map_id", "map_name", name="uq_kz_maps_map_id_name"),
        Index("ix_kz_maps_map_name", "map_name"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    map_id: int = Field(nullable=False)
    map_name: str = Field(max_length=255, nullable=False)


class KzServer(SQLModel, table=True):
    # server_id -1 is the shared "missing id" bucket
    __tablename__ = "kz_servers"

    id: Optional[int] = Field(default=None, primary_key=True)
    server_id: int = Field(unique=True, nullable=False)
    server_name: str = Field(default="Unknown Server", max_length=255)
