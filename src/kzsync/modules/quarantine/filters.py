"""
Quarantine filter definitions.

Rules live in an operator-edited YAML (or JSON) document:

    version: 1
    filters:
      - id: cs2-lj-too-far
        name: "CS2 longjump over 300 units"
        game: cs2              # cs2 | csgo | csgo128 | csgo64 | all (default)
        jump_type: 0           # optional discriminator
        mode: 2                # optional discriminator
        enabled: true
        priority: 10           # higher runs first
        conditions:
          - {field: distance, operator: ">", value: 300}

The document is read fresh on every call, so edits apply without restart.
An invalid filter is never silently accepted: it is excluded with a warning
and, when enabled, reported as a configuration error.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from kzsync.core.logging.logger import get_logger
from kzsync.modules.quarantine.variants import GAME_TAGS, KNOWN_FIELDS
from kzsync.modules.shared.exceptions import FilterValidationError

logger = get_logger(__name__)

NULL_OPERATORS = frozenset({"IS NULL", "IS NOT NULL"})
LIST_OPERATORS = frozenset({"IN", "NOT IN"})
PATTERN_OPERATORS = frozenset({"LIKE", "NOT LIKE"})
COMPARISON_OPERATORS = frozenset({">", "<", ">=", "<=", "=", "!="})
SUPPORTED_OPERATORS = COMPARISON_OPERATORS | PATTERN_OPERATORS | LIST_OPERATORS | NULL_OPERATORS

REQUIRED_FILTER_KEYS = ("id", "name", "conditions")


@dataclass(frozen=True)
class Condition:
    field: str
    operator: str
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"field": self.field, "operator": self.operator}
        if self.operator not in NULL_OPERATORS:
            data["value"] = list(self.value) if isinstance(self.value, tuple) else self.value
        return data


@dataclass(frozen=True)
class QuarantineFilter:
    id: str
    name: str
    conditions: Tuple[Condition, ...]
    game: Optional[str] = None
    jump_type: Optional[int] = None
    mode: Optional[int] = None
    enabled: bool = True
    priority: int = 0
    description: Optional[str] = None

    def serialized_conditions(self) -> str:
        """Provenance snapshot stored with every quarantined row."""
        snapshot: Dict[str, Any] = {"conditions": [c.to_dict() for c in self.conditions]}
        if self.jump_type is not None:
            snapshot["jump_type"] = self.jump_type
        if self.mode is not None:
            snapshot["mode"] = self.mode
        return json.dumps(snapshot, sort_keys=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "game": self.game or "all",
            "jump_type": self.jump_type,
            "mode": self.mode,
            "enabled": self.enabled,
            "priority": self.priority,
            "conditions": [c.to_dict() for c in self.conditions],
        }


@dataclass
class InvalidFilter:
    raw: Any
    problems: List[str]

    @property
    def filter_id(self) -> Optional[str]:
        return str(self.raw["id"]) if isinstance(self.raw, dict) and self.raw.get("id") else None

    @property
    def enabled(self) -> bool:
        return not isinstance(self.raw, dict) or bool(self.raw.get("enabled", True))


@dataclass
class FilterSet:
    filters: List[QuarantineFilter] = field(default_factory=list)
    invalid: List[InvalidFilter] = field(default_factory=list)
    document_error: Optional[str] = None

    def enabled(self) -> List[QuarantineFilter]:
        """Valid enabled filters, highest priority first."""
        active = [f for f in self.filters if f.enabled]
        return sorted(active, key=lambda f: f.priority, reverse=True)

    def config_errors(self) -> List[Dict[str, Any]]:
        errors: List[Dict[str, Any]] = []
        if self.document_error:
            errors.append({"filter_id": None, "problems": [self.document_error]})
        for item in self.invalid:
            if item.enabled:
                errors.append({"filter_id": item.filter_id, "problems": item.problems})
        return errors


# ============================================================================
# Validation
# ============================================================================


def _validate_condition(index: int, raw: Any) -> List[str]:
    where = f"conditions[{index}]"
    if not isinstance(raw, dict):
        return [f"{where} must be a mapping"]

    problems: List[str] = []
    field_name = raw.get("field")
    operator = raw.get("operator")
    if not field_name or not operator:
        problems.append(f"{where} needs both field and operator")
        return problems

    operator = str(operator).upper().strip()
    if operator not in SUPPORTED_OPERATORS:
        problems.append(f"{where} uses unsupported operator {raw.get('operator')!r}")
    if field_name not in KNOWN_FIELDS:
        problems.append(f"{where} uses unknown field {field_name!r}")

    if operator in NULL_OPERATORS:
        return problems
    if "value" not in raw or raw.get("value") is None:
        problems.append(f"{where} operator {operator} needs a value")
    elif operator in LIST_OPERATORS:
        if not isinstance(raw["value"], (list, tuple)) or not raw["value"]:
            problems.append(f"{where} operator {operator} needs a non-empty list")
    elif isinstance(raw["value"], (list, tuple, dict)):
        problems.append(f"{where} operator {operator} needs a scalar value")
    return problems


def validate_filter(raw: Any) -> List[str]:
    """Every problem with a raw filter definition; empty means valid."""
    if not isinstance(raw, dict):
        return ["filter must be a mapping"]

    problems = [f"missing required field {key!r}" for key in REQUIRED_FILTER_KEYS if not raw.get(key)]

    conditions = raw.get("conditions")
    if conditions and not isinstance(conditions, list):
        problems.append("conditions must be a list")
    elif conditions:
        for index, condition in enumerate(conditions):
            problems.extend(_validate_condition(index, condition))

    game = raw.get("game")
    if game not in (None, "") and game not in GAME_TAGS:
        problems.append(f"unknown game {game!r}")

    for key in ("jump_type", "mode", "priority"):
        value = raw.get(key)
        if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
            problems.append(f"{key} must be an integer")

    return problems


def parse_filter(raw: Any) -> QuarantineFilter:
    """
    Build a QuarantineFilter from a raw mapping.

    Raises
    ------
    FilterValidationError
        When validate_filter reports any problem.
    """
    problems = validate_filter(raw)
    if problems:
        filter_id = str(raw.get("id")) if isinstance(raw, dict) and raw.get("id") else None
        raise FilterValidationError(filter_id, problems)

    conditions = tuple(
        Condition(
            field=c["field"],
            operator=str(c["operator"]).upper().strip(),
            value=tuple(c["value"]) if isinstance(c.get("value"), list) else c.get("value"),
        )
        for c in raw["conditions"]
    )
    return QuarantineFilter(
        id=str(raw["id"]),
        name=str(raw["name"]),
        conditions=conditions,
        game=raw.get("game") or None,
        jump_type=raw.get("jump_type"),
        mode=raw.get("mode"),
        enabled=bool(raw.get("enabled", True)),
        priority=int(raw.get("priority") or 0),
        description=raw.get("description"),
    )


# ============================================================================
# Loading
# ============================================================================


def read_filter_document(path: Union[str, Path]) -> List[Any]:
    """
    Raw filter entries from the rule document.

    Accepts `{version, filters: [...]}` or a bare list. Raises OSError or
    yaml.YAMLError when unreadable, ValueError on the wrong shape.
    """
    with Path(path).open("r", encoding="utf-8") as fh:
        document = yaml.safe_load(fh)

    if document is None:
        return []
    if isinstance(document, list):
        return document
    if isinstance(document, dict):
        filters = document.get("filters") or []
        if not isinstance(filters, list):
            raise ValueError("'filters' must be a list")
        return filters
    raise ValueError("filter document must be a mapping or a list")


def load_filters(path: Union[str, Path]) -> FilterSet:
    """Read and validate the rule document; never raises."""
    result = FilterSet()
    try:
        entries = read_filter_document(path)
    except FileNotFoundError:
        result.document_error = f"filter file not found: {path}"
        logger.warning("Quarantine filter file not found", extra={"path": str(path)})
        return result
    except (OSError, ValueError, yaml.YAMLError) as exc:
        result.document_error = f"filter file unreadable: {exc}"
        logger.warning(
            "Quarantine filter file unreadable",
            extra={"path": str(path), "error": str(exc)},
        )
        return result

    seen_ids = set()
    for raw in entries:
        try:
            parsed = parse_filter(raw)
        except FilterValidationError as exc:
            result.invalid.append(InvalidFilter(raw=raw, problems=exc.problems))
            logger.warning(
                "Dropping invalid quarantine filter",
                extra={"filter_id": exc.filter_id, "problems": exc.problems},
            )
            continue

        if parsed.id in seen_ids:
            problems = [f"duplicate filter id {parsed.id!r}"]
            result.invalid.append(InvalidFilter(raw=raw, problems=problems))
            logger.warning("Dropping duplicate quarantine filter", extra={"filter_id": parsed.id})
            continue
        seen_ids.add(parsed.id)
        result.filters.append(parsed)

    return result
