"""
Ban activity rules.

Only the far-future sentinel expiry marks a permanent ban. A NULL expiry is
an active ban of unspecified duration: it sets the banned flag but never
archives records. Both forms of the test (Python and SQL) live here so the
convention is applied in exactly one place.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import ColumnElement, or_

from kzsync.database.models import Ban

PERMANENT_BAN_SENTINEL = datetime(9999, 12, 31, 23, 59, 59)


def is_permanent(expires_on: Optional[datetime]) -> bool:
    return expires_on is not None and expires_on == PERMANENT_BAN_SENTINEL


def is_active(expires_on: Optional[datetime], now: datetime) -> bool:
    return expires_on is None or expires_on > now


def active_ban_clause(now: datetime) -> ColumnElement[bool]:
    return or_(Ban.expires_on.is_(None), Ban.expires_on > now)


def permanent_ban_clause() -> ColumnElement[bool]:
    return Ban.expires_on == PERMANENT_BAN_SENTINEL
