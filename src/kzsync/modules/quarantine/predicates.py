"""
SQL predicates for quarantine filters.

Values are written by rule authors in natural units and scaled here to the
stored integer representation before they are bound: a single value and
every member of an IN list alike. Null tests carry no value and are never
scaled; pattern operators compare text and are never scaled either.
"""

from __future__ import annotations

from typing import Any, List

from sqlalchemy import ColumnElement, and_, not_

from kzsync.modules.quarantine.filters import Condition, QuarantineFilter
from kzsync.modules.quarantine.variants import SCALE_FACTORS, GameVariant
from kzsync.modules.shared.exceptions import FilterValidationError
from kzsync.modules.shared.normalize import parse_timestamp


def scale_value(field: str, value: Any) -> Any:
    factor = SCALE_FACTORS.get(field)
    if factor is None:
        return value
    return int(round(float(value) * factor))


def _bind_value(field: str, value: Any) -> Any:
    if field == "created" and isinstance(value, str):
        return parse_timestamp(value)
    return scale_value(field, value)


def build_condition(variant: GameVariant, condition: Condition) -> ColumnElement[bool]:
    if condition.field not in variant.field_map:
        raise FilterValidationError(
            None, [f"field {condition.field!r} does not exist on {variant.name}"]
        )
    column = variant.column(condition.field)
    op = condition.operator

    if op == "IS NULL":
        return column.is_(None)
    if op == "IS NOT NULL":
        return column.is_not(None)
    if op == "LIKE":
        return column.like(str(condition.value))
    if op == "NOT LIKE":
        return not_(column.like(str(condition.value)))
    if op in ("IN", "NOT IN"):
        values = [_bind_value(condition.field, v) for v in condition.value]
        return column.in_(values) if op == "IN" else column.not_in(values)

    value = _bind_value(condition.field, condition.value)
    if op == ">":
        return column > value
    if op == "<":
        return column < value
    if op == ">=":
        return column >= value
    if op == "<=":
        return column <= value
    if op == "=":
        return column == value
    if op == "!=":
        return column != value
    raise FilterValidationError(None, [f"unsupported operator {op!r}"])


def build_where(variant: GameVariant, flt: QuarantineFilter) -> ColumnElement[bool]:
    """Discriminators first, then every condition, all ANDed."""
    clauses: List[ColumnElement[bool]] = []
    if flt.jump_type is not None:
        clauses.append(variant.column("jump_type") == flt.jump_type)
    if flt.mode is not None:
        clauses.append(variant.column("mode") == flt.mode)
    try:
        clauses.extend(build_condition(variant, condition) for condition in flt.conditions)
    except FilterValidationError as exc:
        raise FilterValidationError(flt.id, exc.problems) from exc
    except (TypeError, ValueError) as exc:
        raise FilterValidationError(flt.id, [f"value cannot be converted: {exc}"]) from exc
    return and_(*clauses)
