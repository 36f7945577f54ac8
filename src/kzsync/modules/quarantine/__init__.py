"""Quarantine of suspect jumpstats through operator-defined rules."""

from kzsync.modules.quarantine.engine import QuarantineEngine
from kzsync.modules.quarantine.filters import (
    SUPPORTED_OPERATORS,
    Condition,
    FilterSet,
    QuarantineFilter,
    load_filters,
    parse_filter,
    validate_filter,
)
from kzsync.modules.quarantine.variants import SCALE_FACTORS, VARIANTS, GameVariant

__all__ = [
    "QuarantineEngine",
    "Condition",
    "FilterSet",
    "QuarantineFilter",
    "GameVariant",
    "SCALE_FACTORS",
    "SUPPORTED_OPERATORS",
    "VARIANTS",
    "load_filters",
    "parse_filter",
    "validate_filter",
]
