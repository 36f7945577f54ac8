"""
kzsync - Worker Entry Point
===========================

Bootstrap
---------
- Config validation
- Database initialization (fatal failure keeps storage subsystems stopped)
- Remote client, scraper, ban reconciler, quarantine engine
- Background loops until SIGINT/SIGTERM
- Graceful shutdown
"""

from __future__ import annotations

import asyncio
import signal
import sys
from dataclasses import dataclass, field
from typing import List, Optional

from kzsync.control import ControlSurface
from kzsync.core.checkpoint import CheckpointStore
from kzsync.core.config.config import Config
from kzsync.core.database.bootstrap import (
    create_retry_policy,
    initialize_database_subsystem,
    shutdown_database_subsystem,
)
from kzsync.core.database.service import DatabaseInitializationError
from kzsync.core.logging.logger import get_logger, shutdown_logging
from kzsync.core.remote import GlobalApiClient
from kzsync.modules.bans.reconciler import BanStatusReconciler
from kzsync.modules.quarantine.engine import QuarantineEngine
from kzsync.modules.records.ban_sync import BanSyncTask
from kzsync.modules.records.scraper import RecordScraper

logger = get_logger(__name__)

# How often the sweep loop checks whether a sweep is due
SWEEP_POLL_SECONDS = 60.0


@dataclass
class Runtime:
    client: Optional[GlobalApiClient] = None
    scraper: Optional[RecordScraper] = None
    reconciler: Optional[BanStatusReconciler] = None
    quarantine: Optional[QuarantineEngine] = None
    control: ControlSurface = field(default_factory=ControlSurface)
    tasks: List[asyncio.Task] = field(default_factory=list)


# ============================================================================
# Application Bootstrap
# ============================================================================


async def _startup() -> Runtime:
    """Initialize infrastructure and build the subsystems."""
    logger.info("========== KZSYNC INITIALIZATION START ==========")
    runtime = Runtime()

    try:
        Config.validate()
        logger.info("✓ Configuration validated")
    except Exception as exc:
        logger.critical(f"Configuration validation failed: {exc}")
        raise

    try:
        await initialize_database_subsystem(verify_health=True, create_schema=True)
        logger.info("✓ Database subsystem initialized")
    except DatabaseInitializationError as exc:
        logger.critical(
            f"Database unavailable; storage subsystems will not start: {exc}",
            exc_info=True,
        )
        return runtime

    retry_policy = create_retry_policy()
    runtime.client = GlobalApiClient()
    runtime.reconciler = BanStatusReconciler(retry_policy)
    runtime.quarantine = QuarantineEngine(retry_policy=retry_policy)

    ban_task = None
    if Config.BAN_SYNC_ENABLED:
        ban_task = BanSyncTask(runtime.client, runtime.reconciler, retry_policy)
        logger.info("✓ Ban sync enabled")

    if Config.SCRAPER_ENABLED:
        runtime.scraper = RecordScraper(
            runtime.client,
            retry_policy=retry_policy,
            checkpoint_store=CheckpointStore(Config.SCRAPER_CHECKPOINT_FILE),
            ban_task=ban_task,
        )
        await runtime.scraper.initialize()
        logger.info("✓ Record scraper initialized")

    runtime.control = ControlSurface(
        scraper=runtime.scraper,
        reconciler=runtime.reconciler,
        quarantine=runtime.quarantine,
    )
    logger.info("========== KZSYNC INITIALIZED ==========")
    return runtime


async def _sweep_loop(reconciler: BanStatusReconciler, stop_event: asyncio.Event) -> None:
    while not stop_event.is_set():
        try:
            await reconciler.run_periodic_sweep()
        except Exception as exc:
            logger.error(f"Ban sweep failed: {exc}", exc_info=True)
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=SWEEP_POLL_SECONDS)
        except asyncio.TimeoutError:
            pass


# ============================================================================
# Application Shutdown
# ============================================================================


async def _shutdown(runtime: Optional[Runtime]) -> None:
    logger.info("========== KZSYNC SHUTDOWN START ==========")

    if runtime is not None:
        for task in runtime.tasks:
            if not task.done():
                task.cancel()
        if runtime.tasks:
            await asyncio.gather(*runtime.tasks, return_exceptions=True)

        if runtime.client is not None:
            try:
                await runtime.client.aclose()
                logger.info("✓ Remote client closed")
            except Exception as exc:
                logger.error(f"Error while closing remote client: {exc}", exc_info=True)

    await shutdown_database_subsystem()
    logger.info("========== SHUTDOWN COMPLETE ==========")


# ============================================================================
# Application Entrypoint
# ============================================================================


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            logger.debug(f"{sig.name} handler not supported on this platform")


async def main() -> None:
    """
    Lifecycle:
        1. Validate configuration
        2. Initialize storage and subsystems
        3. Run scraper and ban sweep until stopped
        4. Shut down gracefully
    """
    runtime: Optional[Runtime] = None
    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)

    try:
        runtime = await _startup()

        if runtime.scraper is not None:
            runtime.tasks.append(
                asyncio.create_task(runtime.scraper.run_forever(stop_event), name="kzsync-scraper")
            )
        if runtime.reconciler is not None:
            runtime.tasks.append(
                asyncio.create_task(_sweep_loop(runtime.reconciler, stop_event), name="kzsync-ban-sweep")
            )

        if not runtime.tasks:
            logger.warning("No subsystems running; exiting")
            return

        await stop_event.wait()
        logger.info("Stop requested; waiting for in-flight work")
        await asyncio.gather(*runtime.tasks, return_exceptions=True)

    except asyncio.CancelledError:
        logger.warning("Asyncio task cancellation received; shutting down gracefully.")
        raise

    finally:
        await _shutdown(runtime)


def run() -> None:
    """Console script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Worker manually stopped via keyboard interrupt.")
    except Exception as exc:
        logger.critical(f"Startup failure: {exc}", exc_info=True)
        sys.exit(1)
    finally:
        shutdown_logging()


if __name__ == "__main__":
    run()
