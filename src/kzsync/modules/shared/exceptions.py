"""
Domain exceptions for kzsync.

Purpose
-------
Structured errors raised by the subsystems for bad operator input and
rule-data problems. Infrastructure failures (storage, remote authority,
checkpoint) live in `kzsync.core.exceptions`.

Design Notes
------------
- All domain exceptions inherit from `KzSyncDomainException`.
- Each exception carries `message`, `details`, `severity`, `is_retryable`
  and `error_code`, mirroring the infrastructure hierarchy.
- The control surface turns these into `{"success": False, "error": ...}`
  answers; they never stop a background loop.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from kzsync.core.exceptions import ErrorSeverity


class KzSyncDomainException(Exception):
    """
    Base exception for all kzsync domain-level errors.

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


class NotFoundError(KzSyncDomainException):
    """
    Raised when a requested entity does not exist.

    Args:
        resource_type: Type of resource (e.g., "quarantined record")
        identifier: Identifier used for lookup
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, resource_type: str, identifier: Optional[Any] = None) -> None:
        self.resource_type = resource_type
        self.identifier = identifier
        message = f"{resource_type} not found"
        if identifier is not None:
            message += f": {identifier}"
        super().__init__(
            message,
            details={"resource_type": resource_type, "identifier": identifier},
            error_code="NOT_FOUND",
        )


class ValidationError(KzSyncDomainException):
    """Raised when operator input fails validation."""

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(
            message,
            details={"field": field},
            error_code="VALIDATION_ERROR",
        )


class FilterValidationError(KzSyncDomainException):
    """
    Raised when a quarantine filter definition is unusable.

    The engine catches this per filter: the filter is excluded and reported
    as a configuration error, other filters still run.
    """

    DEFAULT_SEVERITY = ErrorSeverity.WARNING

    def __init__(self, filter_id: Optional[str], problems: List[str]) -> None:
        self.filter_id = filter_id
        self.problems = problems
        super().__init__(
            f"Invalid filter {filter_id or '<unnamed>'}: {'; '.join(problems)}",
            details={"filter_id": filter_id, "problems": problems},
            error_code="INVALID_FILTER",
        )


class UnknownVariantError(ValidationError):
    """Raised when a game variant name is not one of the known partitions."""

    def __init__(self, game: str, allowed: List[str]) -> None:
        self.game = game
        super().__init__("game", f"Unknown game variant {game!r}; expected one of {', '.join(allowed)}")
        self.error_code = "UNKNOWN_VARIANT"


class InvalidOperationError(KzSyncDomainException):
    """
    Raised when an operation is not valid in the current state.

    Args:
        action: The action that was attempted
        reason: Why the action is invalid
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, action: str, reason: str) -> None:
        self.action = action
        self.reason = reason
        super().__init__(
            f"Cannot {action}: {reason}",
            details={"action": action, "reason": reason},
            error_code="INVALID_OPERATION",
        )
