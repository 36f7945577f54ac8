"""
Ban sync sub-task of the scraper.

Every BAN_SYNC_INTERVAL_SECONDS: fetch the most recent ban page, upsert it,
and hand the touched players to the reconciler. Requests go through the
scraper's GlobalApiClient, so both tasks share one pacing lock and one rate
budget.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from kzsync.core.config.config import Config
from kzsync.core.database.base import utc_now
from kzsync.core.database.retry_policy import DatabaseRetryPolicy
from kzsync.core.logging.logger import LogContext, get_logger
from kzsync.core.remote import Found, GlobalApiClient, NotFound
from kzsync.modules.bans.ingest import BanIngestService
from kzsync.modules.bans.reconciler import BanStatusReconciler

logger = get_logger(__name__)

MAX_BAN_PAGE_SIZE = 1000


class BanSyncTask:
    def __init__(
        self,
        client: GlobalApiClient,
        reconciler: BanStatusReconciler,
        retry_policy: Optional[DatabaseRetryPolicy] = None,
        *,
        ingest: Optional[BanIngestService] = None,
        interval_seconds: Optional[float] = None,
        page_size: Optional[int] = None,
        last_run: Optional[datetime] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._client = client
        self._reconciler = reconciler
        self._retry = retry_policy or DatabaseRetryPolicy.from_config()
        self._ingest = ingest or BanIngestService()
        self._interval = timedelta(
            seconds=interval_seconds
            if interval_seconds is not None
            else float(Config.BAN_SYNC_INTERVAL_SECONDS)
        )
        self._page_size = min(page_size or int(Config.BAN_SYNC_PAGE_SIZE), MAX_BAN_PAGE_SIZE)
        self._clock = clock

        self.last_run: Optional[datetime] = last_run
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def is_due(self) -> bool:
        if self.last_run is None:
            return True
        return self._clock() - self.last_run >= self._interval

    async def maybe_run(self, force: bool = False) -> Optional[Dict[str, Any]]:
        """
        One sync pass, unless one is running or the interval has not elapsed.

        Returns None when skipped, otherwise a summary dict. Failures are
        logged and reported in the summary; they never raise.
        """
        if self._running:
            return None
        if not force and not self.is_due():
            return None

        self._running = True
        try:
            with LogContext(component="bans", operation="bans.sync"):
                return await self._run()
        finally:
            self._running = False

    async def _run(self) -> Dict[str, Any]:
        summary: Dict[str, Any] = {"fetched": 0, "upserted": 0, "invalid": 0, "reconciled": None}

        result = await self._client.fetch_bans(limit=self._page_size, offset=0)
        # The attempt counts toward the interval even when it fails
        self.last_run = self._clock()

        if isinstance(result, NotFound):
            logger.info("Ban page empty")
            return summary
        if not isinstance(result, Found):
            logger.warning("Ban page fetch failed", extra={"result": type(result).__name__})
            summary["error"] = type(result).__name__
            return summary

        rows, prepared = self._ingest.prepare(result.data)
        summary["fetched"] = len(result.data)
        summary["invalid"] = prepared.invalid

        try:
            summary["upserted"] = await self._retry.run_in_transaction(
                lambda session: self._ingest.upsert(session, rows),
                operation_name="bans.upsert_page",
                context={"bans": len(rows)},
            )
        except Exception as exc:
            logger.error(
                "Ban page upsert failed",
                extra={"error": str(exc), "error_type": type(exc).__name__},
                exc_info=True,
            )
            summary["error"] = type(exc).__name__
            return summary

        try:
            await self._reconciler.sync_banned_players(prepared.steamids)
        except Exception as exc:
            logger.error(
                "Creating players for banned identities failed",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )

        summary["reconciled"] = await self._reconciler.reconcile_players(prepared.steamids)
        logger.info(
            "Ban sync complete",
            extra={
                "fetched": summary["fetched"],
                "upserted": summary["upserted"],
                "players": len(prepared.steamids),
            },
        )
        return summary
