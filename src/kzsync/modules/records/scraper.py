"""
Record Scraper

Purpose
-------
Walk the remote authority's monotonically increasing record id space one
batch at a time and ingest every record found, idempotently.

Responsibilities
----------------
- Fetch `batch_size` consecutive ids strictly sequentially
- Insert found records in one all-or-nothing transaction per batch
- Maintain personal-best / world-record caches for new inserts only
- Two-speed cadence: active while catching up, idle once the id space is
  exhausted
- Persist the cursor and counters after every batch; recover on restart
- Launch the ban sync sub-task when it is due

Architecture Notes
------------------
**Cursor**: `cursor` is the last id considered done; the next batch is
`cursor + 1 .. cursor + batch_size`. On startup it comes from the
checkpoint, else from the highest remote id already stored (active or
archived), else 0.

**Progress rule**: when every id of a batch is "not found" and a record has
ever been ingested, the cursor returns to the last ingested id and the idle
interval applies. Otherwise the cursor moves to the batch end and the active
interval applies. A batch whose write transaction fails keeps the cursor,
so the same ids are fetched again.

**Failure handling**: a throttled, errored or malformed id is counted and
skipped; it never blocks the rest of the batch. Cache updates run in their
own transactions after the batch commits and only log on failure.

Configuration
-------------
- SCRAPER_BATCH_SIZE (default: 5)
- SCRAPER_ACTIVE_INTERVAL_SECONDS (default: 3.75)
- SCRAPER_IDLE_INTERVAL_SECONDS (default: 30)
- SCRAPER_CHECKPOINT_FILE
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from logging import Logger
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, select

from kzsync.core.checkpoint import Checkpoint, CheckpointStore
from kzsync.core.config.config import Config
from kzsync.core.database.base import utc_now
from kzsync.core.database.retry_policy import DatabaseRetryPolicy
from kzsync.core.database.service import DatabaseService
from kzsync.core.logging.logger import LogContext
from kzsync.core.remote import Found, GlobalApiClient, NotFound, Throttled
from kzsync.database.models import ArchivedRecord, Record
from kzsync.modules.records.ban_sync import BanSyncTask
from kzsync.modules.records.ingest import RecordIngestor, RecordRefs, update_best_caches
from kzsync.modules.records.lookup_cache import LookupCache
from kzsync.modules.records.normalize import NormalizedRecord, normalize_record
from kzsync.modules.records.stats import ScraperStats
from kzsync.modules.shared.base_service import BaseService


@dataclass
class BatchOutcome:
    start_id: int
    end_id: int
    found: int = 0
    inserted: int = 0
    skipped: int = 0
    not_found: int = 0
    errors: int = 0
    throttled: int = 0
    failed: bool = False
    idle: bool = False
    cursor: int = 0
    next_interval: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class RecordScraper(BaseService):
    """
    Batch-driven record ingestion loop.

    Public API
    ----------
    - initialize() -> restore cursor from checkpoint or storage
    - run_batch() -> BatchOutcome, or None when a batch is already running
    - run_forever(stop_event) -> loop until the event is set
    - get_stats() -> counters, cursor and cadence
    """

    def __init__(
        self,
        client: GlobalApiClient,
        *,
        retry_policy: Optional[DatabaseRetryPolicy] = None,
        checkpoint_store: Optional[CheckpointStore] = None,
        stats: Optional[ScraperStats] = None,
        cache: Optional[LookupCache] = None,
        ban_task: Optional[BanSyncTask] = None,
        batch_size: Optional[int] = None,
        active_interval: Optional[float] = None,
        idle_interval: Optional[float] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        super().__init__(logger)
        self._client = client
        self._retry = retry_policy or DatabaseRetryPolicy.from_config()
        self._checkpoints = checkpoint_store
        self.stats = stats or ScraperStats()
        self.cache = cache or LookupCache()
        self._ingestor = RecordIngestor(self.cache)
        self._ban_task = ban_task

        self._batch_size = batch_size or int(Config.SCRAPER_BATCH_SIZE)
        self.validate_positive_int(self._batch_size, "batch_size")
        self._active_interval = (
            active_interval if active_interval is not None else float(Config.SCRAPER_ACTIVE_INTERVAL_SECONDS)
        )
        self._idle_interval = (
            idle_interval if idle_interval is not None else float(Config.SCRAPER_IDLE_INTERVAL_SECONDS)
        )

        self._cursor = 0
        self._last_successful_id = 0
        self._next_interval = self._active_interval
        self._initialized = False
        self._batch_running = False
        self._ban_future: Optional[asyncio.Task] = None

    # ========================================================================
    # State
    # ========================================================================

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def next_id(self) -> int:
        return self._cursor + 1

    @property
    def last_successful_id(self) -> int:
        return self._last_successful_id

    @property
    def next_interval(self) -> float:
        return self._next_interval

    @property
    def is_running(self) -> bool:
        return self._batch_running

    async def initialize(self) -> None:
        """Restore the cursor: checkpoint first, storage second."""
        checkpoint = self._checkpoints.load() if self._checkpoints else None

        if checkpoint is not None:
            self._cursor = checkpoint.last_record_id
            self._last_successful_id = checkpoint.last_successful_id or await self._max_stored_id()
            self.stats.restore(checkpoint.stats)
            if self._ban_task is not None and checkpoint.last_ban_sync is not None:
                self._ban_task.last_run = checkpoint.last_ban_sync
            source = "checkpoint"
        else:
            self._cursor = await self._max_stored_id()
            self._last_successful_id = self._cursor
            source = "database"

        self.stats.last_successful_id = self._last_successful_id
        self._initialized = True
        self.log.info(
            "Scraper cursor restored",
            extra={
                "source": source,
                "cursor": self._cursor,
                "last_successful_id": self._last_successful_id,
            },
        )

    async def _max_stored_id(self) -> int:
        async with DatabaseService.get_session() as session:
            active = (await session.execute(select(func.max(Record.original_id)))).scalar()
            archived = (await session.execute(select(func.max(ArchivedRecord.original_id)))).scalar()
        return int(max(active or 0, archived or 0))

    # ========================================================================
    # Batch
    # ========================================================================

    async def run_batch(self) -> Optional[BatchOutcome]:
        if self._batch_running:
            self.log.debug("Batch already running; skipping")
            return None
        if not self._initialized:
            await self.initialize()

        self._batch_running = True
        try:
            with LogContext(component="records", operation="records.batch"):
                return await self._run_batch()
        finally:
            self._batch_running = False

    async def _run_batch(self) -> BatchOutcome:
        start_id = self._cursor + 1
        end_id = self._cursor + self._batch_size
        outcome = BatchOutcome(start_id=start_id, end_id=end_id)

        found = await self._fetch_range(start_id, end_id, outcome)
        outcome.found = len(found)

        if found:
            inserted = await self._ingest(found, outcome)
            if outcome.failed:
                self._finish(outcome, advance=False)
                return outcome
            await self._update_caches(inserted)
            self._last_successful_id = max(
                self._last_successful_id, max(record.original_id for record in found)
            )

        exhausted = outcome.not_found == self._batch_size
        if exhausted and self._last_successful_id > 0:
            self._cursor = self._last_successful_id
            outcome.idle = True
        else:
            self._cursor = end_id
        self._finish(outcome, advance=True)
        return outcome

    async def _fetch_range(
        self, start_id: int, end_id: int, outcome: BatchOutcome
    ) -> List[NormalizedRecord]:
        found: List[NormalizedRecord] = []
        for record_id in range(start_id, end_id + 1):
            result = await self._client.fetch_record(record_id)

            if isinstance(result, Found):
                try:
                    found.append(normalize_record(result.data))
                except (ValueError, TypeError) as exc:
                    outcome.errors += 1
                    self.log.warning(
                        "Malformed record payload; skipping",
                        extra={"record_id": record_id, "error": str(exc)},
                    )
            elif isinstance(result, NotFound):
                outcome.not_found += 1
            elif isinstance(result, Throttled):
                outcome.throttled += 1
            else:
                outcome.errors += 1
                self.log.warning(
                    "Record fetch failed; skipping",
                    extra={"record_id": record_id, "error": result.message},
                )
        return found

    async def _ingest(
        self, found: Sequence[NormalizedRecord], outcome: BatchOutcome
    ) -> List[Tuple[NormalizedRecord, RecordRefs]]:
        try:
            result = await self._retry.run_in_transaction(
                lambda session: self._ingestor.ingest_batch(session, found),
                operation_name="records.ingest_batch",
                context={"start_id": outcome.start_id, "records": len(found)},
            )
        except Exception as exc:
            outcome.failed = True
            outcome.errors += len(found)
            self.log_error("records.ingest_batch", exc, start_id=outcome.start_id)
            return []

        self.cache.merge(result.resolved)
        outcome.inserted = len(result.inserted)
        outcome.skipped = result.skipped
        return result.inserted

    async def _update_caches(self, inserted: Sequence[Tuple[NormalizedRecord, RecordRefs]]) -> None:
        for record, refs in inserted:
            try:
                await self._retry.run_in_transaction(
                    lambda session, record=record, refs=refs: update_best_caches(session, record, refs),
                    operation_name="records.update_caches",
                    context={"original_id": record.original_id},
                )
            except Exception as exc:
                self.log.warning(
                    "Best-time cache update failed",
                    extra={
                        "original_id": record.original_id,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                )

    def _finish(self, outcome: BatchOutcome, *, advance: bool) -> None:
        stats = self.stats
        stats.batches += 1
        stats.not_found += outcome.not_found
        stats.errors += outcome.errors
        stats.throttled += outcome.throttled
        if advance:
            stats.processed += outcome.inserted + outcome.skipped
            stats.inserted += outcome.inserted
            stats.skipped += outcome.skipped
        stats.last_successful_id = self._last_successful_id

        self._next_interval = self._idle_interval if outcome.idle else self._active_interval
        outcome.cursor = self._cursor
        outcome.next_interval = self._next_interval

        self.log.info("Batch complete", extra=outcome.to_dict())
        self._save_checkpoint()

    def _save_checkpoint(self) -> None:
        if self._checkpoints is None:
            return
        self._checkpoints.save(
            Checkpoint(
                last_record_id=self._cursor,
                last_successful_id=self._last_successful_id,
                last_update=utc_now(),
                last_ban_sync=self._ban_task.last_run if self._ban_task else None,
                stats=self.stats.counters(),
            )
        )

    # ========================================================================
    # Loop
    # ========================================================================

    def _maybe_start_ban_sync(self) -> None:
        task = self._ban_task
        if task is None or task.is_running or not task.is_due():
            return
        if self._ban_future is not None and not self._ban_future.done():
            return
        self._ban_future = asyncio.create_task(task.maybe_run(), name="kzsync-ban-sync")
        self._ban_future.add_done_callback(self._on_ban_sync_done)

    def _on_ban_sync_done(self, future: asyncio.Task) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            self.log_error("bans.sync", exc)

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        if not self._initialized:
            await self.initialize()
        self.log.info(
            "Record scraper started",
            extra={"cursor": self._cursor, "batch_size": self._batch_size},
        )

        while not stop_event.is_set():
            self._maybe_start_ban_sync()
            try:
                await self.run_batch()
            except Exception as exc:
                self.log_error("records.batch", exc, cursor=self._cursor)
                self._next_interval = self._active_interval

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._next_interval)
            except asyncio.TimeoutError:
                pass

        if self._ban_future is not None and not self._ban_future.done():
            await asyncio.gather(self._ban_future, return_exceptions=True)
        self.log.info("Record scraper stopped", extra=self.stats.counters())

    def get_stats(self) -> Dict[str, Any]:
        data = self.stats.to_dict(self.cache.sizes())
        data.update(
            {
                "cursor": self._cursor,
                "next_id": self.next_id,
                "batch_size": self._batch_size,
                "next_interval_seconds": self._next_interval,
                "batch_running": self._batch_running,
                "last_ban_sync": (
                    self._ban_task.last_run.isoformat()
                    if self._ban_task is not None and self._ban_task.last_run
                    else None
                ),
            }
        )
        return data
