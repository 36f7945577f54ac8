"""
ORM base helpers shared by every table model.

Models are SQLModel table classes; all of them register on the single
`SQLModel.metadata`, which is what schema creation and tests use.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlmodel import SQLModel

metadata = SQLModel.metadata


def utc_now() -> datetime:
    """Naive UTC timestamp, matching the `DateTime` (no tz) columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
