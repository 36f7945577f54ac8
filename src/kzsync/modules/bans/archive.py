"""
Archive and restore of a banned player's records.

Both directions are a single relocation (INSERT ... SELECT then DELETE)
inside the caller's transaction. The archive keeps the original primary key
as `record_id`, so a restore writes back every original column unchanged.
"""

from __future__ import annotations

from typing import Collection, Optional, Set

from sqlalchemy import distinct, select
from sqlalchemy.ext.asyncio import AsyncSession

from kzsync.core.database.base import utc_now
from kzsync.core.database.upsert import column_mapping, relocate_rows
from kzsync.database.models import ArchivedRecord, Record

ARCHIVE_REASON_PERMANENT_BAN = "permanent_ban"


async def archive_player_records(
    session: AsyncSession,
    steamid64: str,
    ban_id: Optional[int],
    *,
    reason: str = ARCHIVE_REASON_PERMANENT_BAN,
) -> int:
    """Move every active record of one player into the archive; returns rows moved."""
    columns = column_mapping(
        Record,
        ArchivedRecord,
        rename={"record_id": "id"},
        extra={"ban_id": ban_id, "archived_at": utc_now(), "archived_reason": reason},
    )
    return await relocate_rows(
        session,
        source=Record,
        target=ArchivedRecord,
        where=Record.steamid64 == steamid64,
        columns=columns,
    )


async def restore_player_records(session: AsyncSession, steamids: Collection[str]) -> int:
    """Move archived records of the given players back; returns rows moved."""
    if not steamids:
        return 0
    columns = column_mapping(ArchivedRecord, Record, rename={"id": "record_id"})
    return await relocate_rows(
        session,
        source=ArchivedRecord,
        target=Record,
        where=ArchivedRecord.steamid64.in_(list(steamids)),
        columns=columns,
    )


async def players_with_archived_records(
    session: AsyncSession, steamids: Optional[Collection[str]] = None
) -> Set[str]:
    stmt = select(distinct(ArchivedRecord.steamid64))
    if steamids is not None:
        if not steamids:
            return set()
        stmt = stmt.where(ArchivedRecord.steamid64.in_(list(steamids)))
    return {row[0] for row in (await session.execute(stmt)).all()}
