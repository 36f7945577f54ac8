"""
Ban Status Reconciler

Purpose
-------
Keep `kz_players.is_banned` equal to "has at least one active ban" and keep
a player's records archived exactly while they hold an active permanent ban.

Responsibilities
----------------
- Reconcile explicit player sets (fresh ban pages) in bounded batches
- Periodic sweep over flagged players, archived players and active bans, so
  naturally expiring temporary bans clear without a fresh event
- Create player rows for banned identities never seen in a record
- Counters for operators

Architecture Notes
------------------
**Per-batch transaction**: one batch (at most BAN_RECONCILE_BATCH_SIZE
players) is one transaction run through DatabaseRetryPolicy, so lock
contention with the scraper retries the whole batch from a clean rollback.
A batch that still fails is counted and the remaining batches continue.

**Flag writes**: `is_banned` is only written where it actually changes.

**Archive idempotency**: archiving a player with nothing left in kz_records
but rows in the archive is reported as `already_archived`, not as newly
archived.

**Consistency**: the flag is eventually consistent; it is exact after a
pass completes.

Configuration
-------------
- BAN_RECONCILE_BATCH_SIZE (default: 100)
- BAN_SWEEP_INTERVAL_SECONDS (default: 3600)
"""

from __future__ import annotations

import time
from datetime import datetime, timedelta
from logging import Logger
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set

from sqlalchemy import distinct, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from kzsync.core.config.config import Config
from kzsync.core.database.base import utc_now
from kzsync.core.database.retry_policy import DatabaseRetryPolicy
from kzsync.core.database.service import DatabaseService
from kzsync.core.database.upsert import insert_ignore
from kzsync.core.logging.logger import LogContext
from kzsync.database.models import ArchivedRecord, Ban, Player
from kzsync.modules.bans.archive import (
    archive_player_records,
    players_with_archived_records,
    restore_player_records,
)
from kzsync.modules.bans.policy import active_ban_clause, is_permanent
from kzsync.modules.shared.base_service import BaseService

COUNTER_NAMES = (
    "checked",
    "newly_banned",
    "newly_unbanned",
    "archived_players",
    "archived_records",
    "already_archived",
    "restored_players",
    "restored_records",
    "errors",
)


def _empty_counters() -> Dict[str, int]:
    return {name: 0 for name in COUNTER_NAMES}


def _chunks(items: Sequence[str], size: int) -> Iterable[List[str]]:
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


class BanStatusReconciler(BaseService):
    """
    Derives banned flags and archive state from kz_bans.

    Public API
    ----------
    - reconcile_players(steamids) -> counters
    - sync_banned_players() -> number of player rows created
    - run_periodic_sweep(force=False) -> counters, or None when skipped
    - manual_update(steamids=None) -> counters
    - get_stats() -> totals and sweep timing
    """

    def __init__(
        self,
        retry_policy: Optional[DatabaseRetryPolicy] = None,
        *,
        batch_size: Optional[int] = None,
        sweep_interval_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = utc_now,
        logger: Optional[Logger] = None,
    ) -> None:
        super().__init__(logger)
        self._retry = retry_policy or DatabaseRetryPolicy.from_config()
        self._batch_size = batch_size or int(Config.BAN_RECONCILE_BATCH_SIZE)
        self._sweep_interval = timedelta(
            seconds=sweep_interval_seconds
            if sweep_interval_seconds is not None
            else float(Config.BAN_SWEEP_INTERVAL_SECONDS)
        )
        self._clock = clock

        self._sweep_running = False
        self._last_sweep_at: Optional[datetime] = None
        self._last_sweep_duration: Optional[float] = None
        self._totals = _empty_counters()
        self._passes = 0

    @property
    def is_sweep_running(self) -> bool:
        return self._sweep_running

    # ========================================================================
    # Reconciliation
    # ========================================================================

    async def reconcile_players(self, steamids: Iterable[str]) -> Dict[str, int]:
        """Recompute flag and archive state for the given players."""
        ids = sorted({str(s).strip() for s in steamids if s not in (None, "")})
        counters = _empty_counters()
        if not ids:
            return counters

        now = self._clock()
        for chunk in _chunks(ids, self._batch_size):
            try:
                batch = await self._retry.run_in_transaction(
                    lambda session, chunk=chunk: self._reconcile_batch(session, chunk, now),
                    operation_name="bans.reconcile_batch",
                    context={"players": len(chunk)},
                )
            except Exception as exc:
                counters["errors"] += 1
                self.log_error("bans.reconcile_batch", exc, players=len(chunk))
                continue
            for name, value in batch.items():
                counters[name] += value

        self._record_pass(counters)
        self.log.info("Ban reconciliation pass complete", extra=counters)
        return counters

    async def _reconcile_batch(
        self, session: AsyncSession, chunk: List[str], now: datetime
    ) -> Dict[str, int]:
        counters = _empty_counters()
        counters["checked"] = len(chunk)

        rows = (
            await session.execute(
                select(Ban.steamid64, Ban.id, Ban.expires_on)
                .where(Ban.steamid64.in_(chunk), active_ban_clause(now))
                .order_by(Ban.id)
            )
        ).all()

        banned: Set[str] = set()
        permanent: Dict[str, int] = {}
        for steamid64, ban_id, expires_on in rows:
            banned.add(steamid64)
            if is_permanent(expires_on):
                # Latest permanent ban is the one recorded as the cause
                permanent[steamid64] = ban_id
        unbanned = [sid for sid in chunk if sid not in banned]

        if banned:
            result = await session.execute(
                update(Player.__table__)
                .where(Player.steamid64.in_(sorted(banned)), Player.is_banned.is_(False))
                .values(is_banned=True, updated_at=now)
            )
            counters["newly_banned"] = result.rowcount
        if unbanned:
            result = await session.execute(
                update(Player.__table__)
                .where(Player.steamid64.in_(unbanned), Player.is_banned.is_(True))
                .values(is_banned=False, updated_at=now)
            )
            counters["newly_unbanned"] = result.rowcount

        for steamid64, ban_id in sorted(permanent.items()):
            moved = await archive_player_records(session, steamid64, ban_id)
            if moved:
                counters["archived_players"] += 1
                counters["archived_records"] += moved
            elif await players_with_archived_records(session, [steamid64]):
                counters["already_archived"] += 1

        restorable = [sid for sid in chunk if sid not in permanent]
        archived_owners = await players_with_archived_records(session, restorable)
        if archived_owners:
            counters["restored_records"] = await restore_player_records(session, archived_owners)
            counters["restored_players"] = len(archived_owners)

        return counters

    # ========================================================================
    # Player discovery
    # ========================================================================

    async def sync_banned_players(self, steamids: Optional[Iterable[str]] = None) -> int:
        """
        Create flagged player rows for actively banned identities never seen
        in a record. `steamids` narrows the scan to one ban page.
        """
        now = self._clock()
        scope = None if steamids is None else sorted({str(s) for s in steamids if s})
        if scope is not None and not scope:
            return 0

        async def work(session: AsyncSession) -> int:
            stmt = (
                select(Ban.steamid64, func.max(Ban.player_name))
                .where(Ban.steamid64.is_not(None), active_ban_clause(now))
                .group_by(Ban.steamid64)
            )
            if scope is not None:
                stmt = stmt.where(Ban.steamid64.in_(scope))
            rows = (await session.execute(stmt)).all()
            created = 0
            for steamid64, player_name in rows:
                inserted = await insert_ignore(
                    session,
                    Player,
                    {
                        "steamid64": steamid64,
                        "player_name": player_name or "Unknown",
                        "is_banned": True,
                        "created_at": now,
                        "updated_at": now,
                    },
                    conflict_columns=["steamid64"],
                )
                created += int(inserted)
            return created

        created = await self._retry.run_in_transaction(work, operation_name="bans.sync_banned_players")
        if created:
            self.log.info("Created player rows for banned identities", extra={"created": created})
        return created

    # ========================================================================
    # Periodic sweep
    # ========================================================================

    def sweep_due(self) -> bool:
        if self._last_sweep_at is None:
            return True
        return self._clock() - self._last_sweep_at >= self._sweep_interval

    async def run_periodic_sweep(self, force: bool = False) -> Optional[Dict[str, int]]:
        """
        Re-validate every player whose state could be stale.

        Returns None without doing anything when a sweep is already running,
        or when `force` is False and the interval has not elapsed.
        """
        if self._sweep_running:
            self.log.debug("Ban sweep already running; skipping")
            return None
        if not force and not self.sweep_due():
            return None

        self._sweep_running = True
        started = time.monotonic()
        try:
            with LogContext(component="bans", operation="bans.sweep"):
                try:
                    await self.sync_banned_players()
                except Exception as exc:
                    self.log_error("bans.sync_banned_players", exc)

                candidates = await self._sweep_candidates()
                self.log.info("Ban sweep started", extra={"candidates": len(candidates)})
                counters = await self.reconcile_players(candidates)

            self._last_sweep_at = self._clock()
            self._last_sweep_duration = round(time.monotonic() - started, 3)
            return counters
        finally:
            self._sweep_running = False

    async def _sweep_candidates(self) -> Set[str]:
        now = self._clock()
        async with DatabaseService.get_session() as session:
            flagged = (
                await session.execute(select(Player.steamid64).where(Player.is_banned.is_(True)))
            ).scalars().all()
            archived = await players_with_archived_records(session)
            banned = (
                await session.execute(
                    select(distinct(Ban.steamid64)).where(
                        Ban.steamid64.is_not(None), active_ban_clause(now)
                    )
                )
            ).scalars().all()
        return set(flagged) | archived | set(banned)

    async def manual_update(self, steamids: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        """Operator trigger: reconcile the given players, or force a full sweep."""
        if steamids is not None:
            return await self.reconcile_players(steamids)

        counters = await self.run_periodic_sweep(force=True)
        if counters is None:
            return {"skipped": True, "reason": "sweep already running"}
        return counters

    # ========================================================================
    # Stats
    # ========================================================================

    def _record_pass(self, counters: Dict[str, int]) -> None:
        self._passes += 1
        for name, value in counters.items():
            self._totals[name] += value

    async def get_stats(self) -> Dict[str, Any]:
        now = self._clock()
        async with DatabaseService.get_session() as session:
            flagged = (
                await session.execute(
                    select(func.count()).select_from(Player).where(Player.is_banned.is_(True))
                )
            ).scalar_one()
            archived = (
                await session.execute(select(func.count()).select_from(ArchivedRecord))
            ).scalar_one()
            active_bans = (
                await session.execute(select(func.count()).select_from(Ban).where(active_ban_clause(now)))
            ).scalar_one()

        return {
            "totals": dict(self._totals),
            "passes": self._passes,
            "flagged_players": int(flagged),
            "archived_records": int(archived),
            "active_bans": int(active_bans),
            "sweep_running": self._sweep_running,
            "last_sweep_at": self._last_sweep_at.isoformat() if self._last_sweep_at else None,
            "last_sweep_duration_seconds": self._last_sweep_duration,
        }
