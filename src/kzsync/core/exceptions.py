"""
Infrastructure exceptions for kzsync.

Purpose
-------
Define the structured exception hierarchy for infrastructure-level concerns:
storage lock contention, remote authority failures and checkpoint
persistence.

Design Notes
------------
- All infrastructure exceptions inherit from `KzSyncInfrastructureException`.
- Each exception carries:
  - `message`: human-readable description
  - `details`: additional structured context (dict)
  - `severity`: `ErrorSeverity` value for logging/alerting
  - `is_retryable`: whether the operation can be retried
  - `error_code`: short, stable identifier for programmatic use
- Expected steady-state outcomes (a remote "not found", a restore of a row
  that is not quarantined) are values, not exceptions.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    """Error severity levels for logging and alerting."""

    DEBUG = "debug"  # Expected, not concerning (e.g., remote not found)
    INFO = "info"  # Normal operation (e.g., invalid rule skipped)
    WARNING = "warning"  # Concerning but handled (e.g., retryable errors)
    ERROR = "error"  # Unexpected errors requiring attention
    CRITICAL = "critical"  # System-level failures requiring immediate action


class KzSyncInfrastructureException(Exception):
    """
    Base exception for all kzsync infrastructure-level errors.

    Args:
        message: Human-readable error message
        details: Additional structured data about the error
        severity: Error severity level for logging handlers
        is_retryable: Whether the operation can be retried
        error_code: Optional code for programmatic handling
    """

    DEFAULT_SEVERITY: ErrorSeverity = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[ErrorSeverity] = None,
        is_retryable: Optional[bool] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.message: str = message
        self.details: Dict[str, Any] = details or {}
        self.severity: ErrorSeverity = severity or self.DEFAULT_SEVERITY
        self.is_retryable: bool = (
            is_retryable if is_retryable is not None else self.DEFAULT_RETRYABLE
        )
        self.error_code: str = error_code or self.__class__.__name__
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
        }

    def __str__(self) -> str:
        details_str = f" | Details: {self.details}" if self.details else ""
        return f"[{self.error_code}] {self.message}{details_str}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"details={self.details!r}, "
            f"severity={self.severity.value!r}, "
            f"is_retryable={self.is_retryable!r}"
            ")"
        )


class StorageLockError(KzSyncInfrastructureException):
    """
    Raised when lock contention outlasts the retry budget.

    The enclosing transaction has already been rolled back when this is
    raised; callers count it and move on.
    """

    DEFAULT_SEVERITY = ErrorSeverity.WARNING
    DEFAULT_RETRYABLE = True

    def __init__(self, operation: str, attempts: int, original_error: Exception) -> None:
        self.operation = operation
        self.attempts = attempts
        self.original_error = original_error
        super().__init__(
            f"Lock contention during {operation} after {attempts} attempts",
            details={
                "operation": operation,
                "attempts": attempts,
                "error": str(original_error),
            },
            error_code="STORAGE_LOCK",
        )


class RemoteApiError(KzSyncInfrastructureException):
    """
    Raised when the remote authority answers with an unexpected error.

    Args:
        path: Request path relative to the API base URL
        status_code: HTTP status, or None for transport failures
        message: Short description
    """

    DEFAULT_SEVERITY = ErrorSeverity.WARNING
    DEFAULT_RETRYABLE = True

    def __init__(self, path: str, message: str, status_code: Optional[int] = None) -> None:
        self.path = path
        self.status_code = status_code
        super().__init__(
            f"Remote API error for {path}: {message}",
            details={"path": path, "status_code": status_code},
            error_code="REMOTE_API_ERROR",
        )


class RemoteThrottledError(RemoteApiError):
    """Raised internally on HTTP 429; retried with a fixed cooldown."""

    def __init__(self, path: str) -> None:
        super().__init__(path, "throttled by remote authority", status_code=429)
        self.error_code = "REMOTE_THROTTLED"


class CheckpointError(KzSyncInfrastructureException):
    """Raised when a checkpoint document cannot be read or written."""

    DEFAULT_SEVERITY = ErrorSeverity.WARNING

    def __init__(self, path: str, original_error: Exception) -> None:
        self.path = path
        self.original_error = original_error
        super().__init__(
            f"Checkpoint error for {path}: {original_error}",
            details={"path": path, "error_type": type(original_error).__name__},
            error_code="CHECKPOINT_ERROR",
        )

