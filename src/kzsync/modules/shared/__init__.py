"""Shared building blocks for kzsync subsystems."""

from kzsync.modules.shared.base_service import BaseService
from kzsync.modules.shared.exceptions import (
    FilterValidationError,
    InvalidOperationError,
    KzSyncDomainException,
    NotFoundError,
    UnknownVariantError,
    ValidationError,
)

__all__ = [
    "BaseService",
    "KzSyncDomainException",
    "NotFoundError",
    "ValidationError",
    "FilterValidationError",
    "UnknownVariantError",
    "InvalidOperationError",
]
