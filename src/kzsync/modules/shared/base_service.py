"""
Base Service Foundation

Purpose
-------
Common base for the kzsync subsystems (scraper, ban reconciler, quarantine
engine): structured logging helpers and input validation.

Design Notes
------------
What this class does NOT do:
- Manage database transactions (DatabaseService / DatabaseRetryPolicy)
- Hold process-wide state; every subsystem owns its own counters
"""

from __future__ import annotations

from logging import Logger
from typing import Any, Optional

from kzsync.core.logging.logger import get_logger


class BaseService:
    """
    Base class for all subsystem services.

    Args:
        logger: Structured logger; defaults to the subclass module logger
    """

    def __init__(self, logger: Optional[Logger] = None) -> None:
        self.log = logger or get_logger(type(self).__module__)

    def log_error(self, operation: str, error: Exception, **context: Any) -> None:
        """
        Log a service error with full context.

        Args:
            operation: Name of the operation that failed
            error: The exception that occurred
            **context: Additional context data
        """
        self.log.error(
            f"Service error during {operation}: {error}",
            extra={
                "operation": operation,
                "error_type": type(error).__name__,
                "error_message": str(error),
                **context,
            },
        )

    def validate_positive_int(self, value: int, name: str) -> None:
        from .exceptions import ValidationError

        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            raise ValidationError(name, f"{name} must be a positive integer, got {value}")

    def validate_range(self, value: int, name: str, min_val: int, max_val: int) -> None:
        from .exceptions import ValidationError

        if not (min_val <= value <= max_val):
            raise ValidationError(
                name,
                f"{name} must be between {min_val} and {max_val}, got {value}",
            )
