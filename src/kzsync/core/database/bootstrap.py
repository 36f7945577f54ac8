"""
Database Subsystem Bootstrap

Purpose
-------
Single entry point for initializing and shutting down the database subsystem
with health verification, plus the factory for the lock-retry policy.

Architecture Notes
------------------
**Bootstrap Sequence**:
1. `initialize_database_subsystem()` called during worker startup
2. DatabaseService initializes engine and session factory
3. Optional health check verifies connectivity with a timeout
4. Optional schema creation from model metadata
5. Returns on success or raises DatabaseInitializationError

A DatabaseInitializationError is the "fatal" error class: the entry point
logs it and keeps storage-backed subsystems stopped without crashing the
host process.

Configuration
-------------
- DATABASE_URL
- DATABASE_BOOTSTRAP_HEALTH_TIMEOUT_SECONDS (default: 5.0)
- DATABASE_RETRY_* (see retry_policy)
"""

from __future__ import annotations

import asyncio

from kzsync.core.config.config import Config
from kzsync.core.database.retry_policy import DatabaseRetryPolicy
from kzsync.core.database.service import DatabaseInitializationError, DatabaseService
from kzsync.core.logging.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# Subsystem Lifecycle
# ============================================================================


async def initialize_database_subsystem(
    *,
    verify_health: bool = True,
    create_schema: bool = False,
) -> None:
    """
    Initialize the database subsystem.

    Parameters
    ----------
    verify_health : bool, default=True
        Run a timed `SELECT 1` after initialization.
    create_schema : bool, default=False
        Create missing tables from model metadata.

    Raises
    ------
    DatabaseInitializationError
        If initialization fails or the health check fails/times out.
    """
    logger.info("Initializing database subsystem")

    await DatabaseService.initialize()

    if verify_health:
        health_timeout = float(getattr(Config, "DATABASE_BOOTSTRAP_HEALTH_TIMEOUT_SECONDS", 5.0))
        try:
            healthy = await asyncio.wait_for(DatabaseService.health_check(), timeout=health_timeout)
        except asyncio.TimeoutError as exc:
            logger.error(
                "Database health check timed out during bootstrap",
                extra={"timeout_seconds": health_timeout},
            )
            raise DatabaseInitializationError(
                f"Database health check timed out after {health_timeout}s"
            ) from exc

        if not healthy:
            logger.error("Database health check failed during bootstrap")
            raise DatabaseInitializationError(
                "Database is unreachable or unhealthy after initialization"
            )

    if create_schema:
        try:
            await DatabaseService.create_schema()
        except Exception as exc:
            raise DatabaseInitializationError(f"Schema creation failed: {exc}") from exc

    logger.info(
        "Database subsystem initialized",
        extra={"health_checked": verify_health, "schema_created": create_schema},
    )


async def shutdown_database_subsystem() -> None:
    """Dispose the engine; errors are logged, never raised, during shutdown."""
    logger.info("Shutting down database subsystem")
    try:
        await DatabaseService.shutdown()
    except Exception as exc:
        logger.error(
            "Error during database subsystem shutdown",
            extra={"error": str(exc), "error_type": type(exc).__name__},
            exc_info=True,
        )


# ============================================================================
# Component Factory Methods
# ============================================================================


def create_retry_policy() -> DatabaseRetryPolicy:
    """Create a DatabaseRetryPolicy configured from Config."""
    policy = DatabaseRetryPolicy.from_config()
    logger.debug(
        "Created DatabaseRetryPolicy from config",
        extra={
            "max_attempts": policy.config.max_attempts,
            "initial_backoff_ms": policy.config.initial_backoff_ms,
            "max_backoff_ms": policy.config.max_backoff_ms,
            "jitter_ms": policy.config.jitter_ms,
        },
    )
    return policy
