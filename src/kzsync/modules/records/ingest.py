"""
Record ingestion inside one storage transaction.

Purpose
-------
Write a batch of normalized records: resolve player/map/server surrogate
ids (insert-if-absent, then select), insert each record if its remote id
is not present yet, and maintain the derived best-time caches.

Architecture Notes
------------------
- `ingest_batch` runs entirely inside the caller's transaction and is
  safe to re-run on a lock-contention retry: ids resolved during an attempt
  are collected in a private LookupCache that the caller merges only after
  commit.
- `update_best_caches` runs per new record in its own transaction after the
  batch commits; a cache failure never undoes an insert.
- Cache replacement is strictly-better-only (`time > :new_time` guard), so
  cached times are monotonic regardless of arrival order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Sequence, Tuple

from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from kzsync.core.database.base import utc_now
from kzsync.core.database.upsert import insert_ignore
from kzsync.database.models import KzMap, KzServer, MapWorldRecord, Player, PlayerMapBest, Record
from kzsync.modules.records.lookup_cache import LookupCache
from kzsync.modules.records.normalize import NormalizedRecord


@dataclass(frozen=True)
class RecordRefs:
    player_id: int
    map_id: int
    server_id: int


@dataclass
class BatchIngestResult:
    inserted: List[Tuple[NormalizedRecord, RecordRefs]] = field(default_factory=list)
    skipped: int = 0
    resolved: LookupCache = field(default_factory=LookupCache)


class RecordIngestor:
    """Transactional write path for scraped records."""

    def __init__(self, cache: LookupCache) -> None:
        self._cache = cache

    async def ingest_batch(
        self, session: AsyncSession, records: Sequence[NormalizedRecord]
    ) -> BatchIngestResult:
        result = BatchIngestResult()
        seen_at = utc_now()

        for record in records:
            refs = RecordRefs(
                player_id=await self._resolve_player(session, record, seen_at, result.resolved),
                map_id=await self._resolve_map(session, record, result.resolved),
                server_id=await self._resolve_server(session, record, result.resolved),
            )
            values = record.record_values()
            values.update(
                player_id=refs.player_id,
                map_id=refs.map_id,
                server_id=refs.server_id,
                inserted_at=seen_at,
            )
            if await insert_ignore(session, Record, values, conflict_columns=["original_id"]):
                result.inserted.append((record, refs))
            else:
                result.skipped += 1

        return result

    # ========================================================================
    # Reference resolution
    # ========================================================================

    async def _resolve_player(
        self,
        session: AsyncSession,
        record: NormalizedRecord,
        seen_at: datetime,
        resolved: LookupCache,
    ) -> int:
        player_id = self._cache.player(record.steamid64) or resolved.player(record.steamid64)

        if player_id is None:
            await insert_ignore(
                session,
                Player,
                {
                    "steamid64": record.steamid64,
                    "steam_id": record.steam_id,
                    "player_name": record.player_name,
                    "is_banned": False,
                    "last_seen": seen_at,
                    "created_at": seen_at,
                    "updated_at": seen_at,
                },
                conflict_columns=["steamid64"],
            )
            player_id = (
                await session.execute(select(Player.id).where(Player.steamid64 == record.steamid64))
            ).scalar_one()
            resolved.players[record.steamid64] = player_id

        # Every sighting refreshes the display name and last_seen
        await session.execute(
            update(Player)
            .where(Player.id == player_id)
            .values(player_name=record.player_name, last_seen=seen_at, updated_at=seen_at)
        )
        return player_id

    async def _resolve_map(
        self, session: AsyncSession, record: NormalizedRecord, resolved: LookupCache
    ) -> int:
        map_pk = self._cache.map(record.map_id, record.map_name) or resolved.map(
            record.map_id, record.map_name
        )
        if map_pk is not None:
            return map_pk

        await insert_ignore(
            session,
            KzMap,
            {"map_id": record.map_id, "map_name": record.map_name},
            conflict_columns=["map_id", "map_name"],
        )
        map_pk = (
            await session.execute(
                select(KzMap.id).where(
                    and_(KzMap.map_id == record.map_id, KzMap.map_name == record.map_name)
                )
            )
        ).scalar_one()
        resolved.maps[(record.map_id, record.map_name)] = map_pk
        return map_pk

    async def _resolve_server(
        self, session: AsyncSession, record: NormalizedRecord, resolved: LookupCache
    ) -> int:
        server_pk = self._cache.server(record.server_id) or resolved.server(record.server_id)
        if server_pk is not None:
            return server_pk

        await insert_ignore(
            session,
            KzServer,
            {"server_id": record.server_id, "server_name": record.server_name},
            conflict_columns=["server_id"],
        )
        server_pk = (
            await session.execute(select(KzServer.id).where(KzServer.server_id == record.server_id))
        ).scalar_one()
        resolved.servers[record.server_id] = server_pk
        return server_pk


# ============================================================================
# Derived caches
# ============================================================================


async def update_best_caches(
    session: AsyncSession, record: NormalizedRecord, refs: RecordRefs
) -> Tuple[bool, bool]:
    """
    Offer a newly inserted record to both best-time caches.

    Returns
    -------
    (personal_best_changed, world_record_changed)
    """
    now = utc_now()
    run_type = record.run_type

    pb_values = {
        "player_id": refs.player_id,
        "map_id": refs.map_id,
        "mode": record.mode,
        "stage": record.stage,
        "run_type": run_type,
        "original_id": record.original_id,
        "time": record.time,
        "teleports": record.teleports,
        "points": record.points,
        "server_id": refs.server_id,
        "created_on": record.created_on,
        "updated_at": now,
    }
    pb_changed = await _offer(
        session,
        PlayerMapBest,
        pb_values,
        key_columns=("player_id", "map_id", "mode", "stage", "run_type"),
    )

    wr_values = {
        "map_id": refs.map_id,
        "mode": record.mode,
        "stage": record.stage,
        "run_type": run_type,
        "player_id": refs.player_id,
        "steamid64": record.steamid64,
        "player_name": record.player_name,
        "original_id": record.original_id,
        "time": record.time,
        "teleports": record.teleports,
        "points": record.points,
        "created_on": record.created_on,
        "updated_at": now,
    }
    wr_changed = await _offer(
        session,
        MapWorldRecord,
        wr_values,
        key_columns=("map_id", "mode", "stage", "run_type"),
    )
    return pb_changed, wr_changed


async def _offer(session: AsyncSession, model, values: dict, *, key_columns: Sequence[str]) -> bool:
    """Insert the cache row, or replace it only when strictly faster."""
    if await insert_ignore(session, model, values, conflict_columns=list(key_columns)):
        return True

    table = model.__table__
    key_match = [table.c[name] == values[name] for name in key_columns]
    changes = {name: value for name, value in values.items() if name not in key_columns}
    result = await session.execute(
        update(table).where(and_(*key_match, table.c.time > values["time"])).values(**changes)
    )
    return result.rowcount > 0
