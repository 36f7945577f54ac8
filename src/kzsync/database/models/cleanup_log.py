"""Audit trail of quarantine filter runs, one row per filter per variant."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, Index, Text
from sqlmodel import Field, SQLModel

from kzsync.core.database.base import utc_now


class CleanupLog(SQLModel, table=True):
    __tablename__ = "jumpstat_cleanup_log"
    __table_args__ = (
        Index("ix_jumpstat_cleanup_log_game_filter", "game", "filter_id"),
        Index("ix_jumpstat_cleanup_log_created_at", "created_at"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    game: str = Field(max_length=16, nullable=False)
    filter_id: str = Field(max_length=100, nullable=False)
    filter_name: str = Field(default="", max_length=255)
    records_matched: int = Field(default=0)
    records_quarantined: int = Field(default=0)
    dry_run: bool = Field(default=True)
    executed_by: str = Field(default="system", max_length=50)
    error_message: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime, nullable=False, default=utc_now)
    )
