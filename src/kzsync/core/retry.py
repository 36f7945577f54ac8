"""
Retry Policy - Infrastructure Resilience

Purpose
-------
One reusable retry abstraction for every transient failure in kzsync:
storage lock contention (deadlock, lock-wait timeout) and remote authority
throttling/transport errors share this class and differ only in their
configuration.

Responsibilities
----------------
- Execute async operations with retry logic
- Classify errors through a caller-supplied retryable predicate
- Implement exponential (or fixed) backoff with jitter
- Emit structured logs for each failed attempt and for the final give-up

Non-Responsibilities
--------------------
- Transaction management (the operation owns its transaction)
- Deciding what a failure means for the caller (skip, count, abort)

Architecture Notes
------------------
**Backoff Strategy**:
- delay(attempt) = min(initial * multiplier ^ (attempt - 1), max) + random(0, jitter)
- multiplier=1 gives a fixed cooldown (used for remote throttling)

**Transaction Ownership**:
- Retry the operation that *creates* the transaction, never work inside an
  open transaction, so every attempt starts from a clean rollback.

Usage Example
-------------
>>> policy = RetryPolicy(
...     RetryConfig(
...         max_attempts=5,
...         initial_backoff_ms=500,
...         max_backoff_ms=8000,
...         jitter_ms=500,
...         retryable=is_lock_contention,
...     )
... )
>>> await policy.execute(archive_player, operation_name="bans.archive_player")
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from kzsync.core.logging.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

RetryablePredicate = Callable[[BaseException], bool]
SleepFunc = Callable[[float], Awaitable[Any]]


# ============================================================================
# Configuration
# ============================================================================


@dataclass(frozen=True)
class RetryConfig:
    """
    Retry behavior.

    Attributes
    ----------
    max_attempts : int
        Maximum number of attempts (including the initial attempt).
    initial_backoff_ms : int
        Backoff after the first failed attempt.
    max_backoff_ms : int
        Upper bound of the exponential part of the backoff.
    jitter_ms : int
        Maximum random jitter added to every backoff.
    multiplier : float
        Growth factor per attempt; 1.0 means a fixed cooldown.
    retryable : Callable[[BaseException], bool]
        Predicate deciding whether an exception is worth another attempt.
    """

    max_attempts: int
    initial_backoff_ms: int
    max_backoff_ms: int
    jitter_ms: int = 0
    multiplier: float = 2.0
    retryable: RetryablePredicate = lambda exc: False


# ============================================================================
# Retry Policy
# ============================================================================


class RetryPolicy:
    """
    Execute async operations with retry semantics.

    Public API
    ----------
    - execute(operation, operation_name, context) -> Execute with retries
    - compute_backoff_ms(attempt) -> Backoff for a given 1-indexed attempt
    """

    def __init__(self, config: RetryConfig, *, sleep: Optional[SleepFunc] = None) -> None:
        self._config = config
        self._sleep: SleepFunc = sleep or asyncio.sleep

    @property
    def config(self) -> RetryConfig:
        return self._config

    def is_retryable(self, exc: BaseException) -> bool:
        return bool(self._config.retryable(exc))

    def compute_backoff_ms(self, attempt: int) -> int:
        exponent = max(attempt - 1, 0)
        base = self._config.initial_backoff_ms * (self._config.multiplier**exponent)
        capped = min(int(base), self._config.max_backoff_ms)

        jitter = random.randint(0, self._config.jitter_ms) if self._config.jitter_ms > 0 else 0
        return capped + jitter

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str,
        context: Optional[dict[str, Any]] = None,
    ) -> T:
        """
        Execute an async operation, retrying retryable failures.

        Parameters
        ----------
        operation : Callable[[], Awaitable[T]]
            Zero-argument async callable.
        operation_name : str
            Stable identifier for logs (e.g., "records.ingest_batch").
        context : Optional[dict[str, Any]]
            Additional structured context for logs.

        Raises
        ------
        BaseException
            The last exception when retries are exhausted, or the first
            non-retryable exception.
        """
        ctx_extra = context.copy() if context else {}
        ctx_extra["operation"] = operation_name

        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except Exception as exc:
                retryable = self.is_retryable(exc)
                will_retry = retryable and attempt < self._config.max_attempts

                if not will_retry:
                    log = logger.warning if retryable else logger.debug
                    log(
                        "Operation retries exhausted or not retryable",
                        extra={
                            **ctx_extra,
                            "attempt": attempt,
                            "error_type": type(exc).__name__,
                            "retryable": retryable,
                            "max_attempts": self._config.max_attempts,
                        },
                    )
                    raise

                backoff_ms = self.compute_backoff_ms(attempt)
                logger.info(
                    "Operation failed; backing off before retry",
                    extra={
                        **ctx_extra,
                        "attempt": attempt,
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                        "backoff_ms": backoff_ms,
                    },
                )
                await self._sleep(backoff_ms / 1000.0)
