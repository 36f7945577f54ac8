"""
Unit Tests for RetryPolicy and lock-contention classification
=============================================================

Test Coverage
-------------
- Backoff computation (exponential and fixed)
- Retry until success, give-up after max attempts
- Non-retryable errors propagate on the first failure
- Lock-contention detection across backends
"""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from kzsync.core.database.retry_policy import is_lock_contention
from kzsync.core.retry import RetryConfig, RetryPolicy


class FlakyError(Exception):
    pass


def _policy(max_attempts=3, multiplier=2.0, sleep=None) -> RetryPolicy:
    return RetryPolicy(
        RetryConfig(
            max_attempts=max_attempts,
            initial_backoff_ms=100,
            max_backoff_ms=1000,
            jitter_ms=0,
            multiplier=multiplier,
            retryable=lambda exc: isinstance(exc, FlakyError),
        ),
        sleep=sleep or AsyncMock(),
    )


class _DriverError(Exception):
    def __init__(self, *args, sqlstate=None):
        super().__init__(*args)
        self.sqlstate = sqlstate


# ============================================================================
# BACKOFF
# ============================================================================


class TestBackoff:
    """Backoff schedule."""

    def test_exponential_backoff_is_capped(self):
        """Backoff doubles per attempt and never exceeds the cap."""
        policy = _policy()

        assert policy.compute_backoff_ms(1) == 100
        assert policy.compute_backoff_ms(2) == 200
        assert policy.compute_backoff_ms(3) == 400
        assert policy.compute_backoff_ms(10) == 1000

    def test_multiplier_one_gives_fixed_cooldown(self):
        """A multiplier of 1 keeps every wait at the initial backoff."""
        policy = _policy(multiplier=1.0)

        assert [policy.compute_backoff_ms(n) for n in (1, 2, 3)] == [100, 100, 100]

    def test_jitter_stays_within_bound(self):
        policy = RetryPolicy(RetryConfig(max_attempts=2, initial_backoff_ms=50, max_backoff_ms=50, jitter_ms=10))

        for _ in range(20):
            assert 50 <= policy.compute_backoff_ms(1) <= 60


# ============================================================================
# EXECUTION
# ============================================================================


class TestExecute:
    """Retry loop behavior."""

    async def test_retries_until_success(self):
        """Retryable failures are retried and the eventual result returned."""
        # Arrange
        sleep = AsyncMock()
        policy = _policy(sleep=sleep)
        operation = AsyncMock(side_effect=[FlakyError(), FlakyError(), "done"])

        # Act
        result = await policy.execute(operation, operation_name="test.flaky")

        # Assert
        assert result == "done"
        assert operation.await_count == 3
        assert [call.args[0] for call in sleep.await_args_list] == [0.1, 0.2]

    async def test_gives_up_after_max_attempts(self):
        """The last retryable error propagates once attempts are exhausted."""
        policy = _policy(max_attempts=2)
        operation = AsyncMock(side_effect=FlakyError("still failing"))

        with pytest.raises(FlakyError):
            await policy.execute(operation, operation_name="test.exhausted")

        assert operation.await_count == 2

    async def test_non_retryable_error_is_not_retried(self):
        """Errors outside the predicate propagate on the first failure."""
        sleep = AsyncMock()
        policy = _policy(sleep=sleep)
        operation = AsyncMock(side_effect=ValueError("bad input"))

        with pytest.raises(ValueError):
            await policy.execute(operation, operation_name="test.fatal")

        assert operation.await_count == 1
        sleep.assert_not_awaited()


# ============================================================================
# LOCK CONTENTION
# ============================================================================


class TestLockContention:
    """Storage errors classified as lock contention."""

    def test_sqlite_database_locked(self):
        exc = OperationalError("INSERT", {}, _DriverError("database is locked"))
        assert is_lock_contention(exc) is True

    def test_postgres_deadlock_sqlstate(self):
        exc = OperationalError("UPDATE", {}, _DriverError("deadlock", sqlstate="40P01"))
        assert is_lock_contention(exc) is True

    def test_mysql_lock_wait_errno(self):
        exc = OperationalError("UPDATE", {}, _DriverError(1205, "Lock wait timeout exceeded"))
        assert is_lock_contention(exc) is True

    def test_other_database_errors_are_not_contention(self):
        exc = OperationalError("SELECT", {}, _DriverError("no such table: kz_records"))
        assert is_lock_contention(exc) is False

    def test_non_database_errors_are_not_contention(self):
        assert is_lock_contention(RuntimeError("database is locked")) is False
