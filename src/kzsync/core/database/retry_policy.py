"""
Database Retry Policy - lock contention handling.

Purpose
-------
Storage-side configuration of the shared RetryPolicy: classify deadlocks and
lock-wait timeouts as retryable, build the policy from Config, and run a
whole transaction per attempt.

Architecture Notes
------------------
**Retry Classification**:
- Retryable: deadlock and lock-wait-timeout errors on PostgreSQL (SQLSTATE
  40P01, 55P03, 40001), MySQL (errno 1205, 1213) and SQLite ("database is
  locked").
- Everything else propagates on the first failure.

**Transaction Ownership**:
- `run_in_transaction` opens a fresh `DatabaseService.get_transaction()` for
  every attempt; a failed attempt is rolled back before the backoff sleep.

Configuration
-------------
- DATABASE_RETRY_MAX_ATTEMPTS (default: 5)
- DATABASE_RETRY_INITIAL_BACKOFF_MS (default: 500)
- DATABASE_RETRY_MAX_BACKOFF_MS (default: 8000)
- DATABASE_RETRY_JITTER_MS (default: 500)
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from kzsync.core.config.config import Config
from kzsync.core.database.service import DatabaseService
from kzsync.core.exceptions import StorageLockError
from kzsync.core.retry import RetryConfig, RetryPolicy, SleepFunc

T = TypeVar("T")

_LOCK_SQLSTATES = frozenset({"40P01", "55P03", "40001"})
_LOCK_MYSQL_ERRNOS = frozenset({1205, 1213})
_LOCK_MESSAGES = (
    "deadlock",
    "lock wait timeout",
    "lock timeout",
    "database is locked",
    "could not obtain lock",
)


def is_lock_contention(exc: BaseException) -> bool:
    """True for deadlocks and lock-wait timeouts on any supported backend."""
    if not isinstance(exc, DBAPIError):
        return False

    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _LOCK_SQLSTATES:
        return True

    args = getattr(orig, "args", ()) or ()
    if args and isinstance(args[0], int) and args[0] in _LOCK_MYSQL_ERRNOS:
        return True

    message = str(orig if orig is not None else exc).lower()
    return any(fragment in message for fragment in _LOCK_MESSAGES)


def lock_retry_config_from_config() -> RetryConfig:
    return RetryConfig(
        max_attempts=int(getattr(Config, "DATABASE_RETRY_MAX_ATTEMPTS", 5)),
        initial_backoff_ms=int(getattr(Config, "DATABASE_RETRY_INITIAL_BACKOFF_MS", 500)),
        max_backoff_ms=int(getattr(Config, "DATABASE_RETRY_MAX_BACKOFF_MS", 8000)),
        jitter_ms=int(getattr(Config, "DATABASE_RETRY_JITTER_MS", 500)),
        retryable=is_lock_contention,
    )


class DatabaseRetryPolicy(RetryPolicy):
    """
    RetryPolicy bound to lock-contention classification.

    Usage
    -----
    >>> policy = DatabaseRetryPolicy.from_config()
    >>> inserted = await policy.run_in_transaction(
    ...     lambda session: ingest(session, records),
    ...     operation_name="records.ingest_batch",
    ... )
    """

    @classmethod
    def from_config(cls, *, sleep: Optional[SleepFunc] = None) -> "DatabaseRetryPolicy":
        return cls(lock_retry_config_from_config(), sleep=sleep)

    async def run_in_transaction(
        self,
        work: Callable[[AsyncSession], Awaitable[T]],
        *,
        operation_name: str,
        context: Optional[dict[str, Any]] = None,
    ) -> T:
        """
        Run `work` inside its own transaction, retrying on lock contention.

        Raises
        ------
        StorageLockError
            When contention outlasts the retry budget.
        """

        async def attempt() -> T:
            async with DatabaseService.get_transaction() as session:
                return await work(session)

        try:
            return await self.execute(attempt, operation_name=operation_name, context=context)
        except DBAPIError as exc:
            if is_lock_contention(exc):
                raise StorageLockError(operation_name, self.config.max_attempts, exc) from exc
            raise
