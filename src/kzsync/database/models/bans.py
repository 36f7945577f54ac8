"""
Ban model.

Authoritative ban entries mirrored from the remote authority, keyed by the
remote ban id. Rows are refreshed in place on every ingest; nothing else
writes them.

Expiry semantics:
    - expires_on == 9999-12-31 23:59:59: permanent ban
    - expires_on NULL: active, unspecified duration (never archives)
    - otherwise: active until expires_on
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, Index, Integer, String, Text
from sqlmodel import Field, SQLModel

from kzsync.core.database.base import utc_now


class Ban(SQLModel, table=True):
    __tablename__ = "kz_bans"
    __table_args__ = (
        Index("ix_kz_bans_steamid64", "steamid64"),
        Index("ix_kz_bans_expires_on", "expires_on"),
        Index("ix_kz_bans_steamid64_expires_on", "steamid64", "expires_on"),
    )

    id: int = Field(sa_column=Column(Integer, primary_key=True, autoincrement=False))
    ban_type: str = Field(max_length=50, nullable=False)
    expires_on: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))

    ip: Optional[str] = Field(default=None, max_length=45)
    steamid64: Optional[str] = Field(default=None, sa_column=Column(String(20), nullable=True))
    player_name: Optional[str] = Field(default=None, max_length=255)
    steam_id: Optional[str] = Field(default=None, max_length=32)
    notes: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    stats: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    server_id: Optional[int] = Field(default=None)
    updated_by_id: Optional[str] = Field(default=None, max_length=20)

    created_on: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))
    updated_on: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))
    created_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime, nullable=False, default=utc_now)
    )
    updated_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime, nullable=False, default=utc_now)
    )
