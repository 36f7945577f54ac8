"""
Coercion helpers for loosely typed remote payloads.

Remote ids arrive as numbers or strings, timestamps as ISO-8601 with or
without a zone, names with stray control characters. Everything is coerced
once, before it reaches a query.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_WHITESPACE_CONTROL = re.compile(r"[\t\r\n]+")

# 32-bit TIMESTAMP range on MySQL
MIN_RECORD_TIMESTAMP = datetime(1970, 1, 1, 0, 0, 1)
MAX_RECORD_TIMESTAMP = datetime(2038, 1, 19, 3, 14, 7)


def sanitize_string(value: Any, max_length: int, default: Optional[str] = None) -> Optional[str]:
    """Strip control characters, collapse tab/newline runs, trim and truncate."""
    if value is None:
        return default
    text = _WHITESPACE_CONTROL.sub(" ", str(value))
    text = _CONTROL_CHARS.sub("", text).strip()
    if not text:
        return default
    return text[:max_length]


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp into a naive UTC datetime.

    Returns None for empty values; raises ValueError for unparseable ones.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def convert_timestamp(value: Any) -> Optional[datetime]:
    """parse_timestamp clamped to the range a record timestamp column accepts."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    if parsed > MAX_RECORD_TIMESTAMP:
        return MAX_RECORD_TIMESTAMP
    if parsed < MIN_RECORD_TIMESTAMP:
        return MIN_RECORD_TIMESTAMP
    return parsed


def coerce_int(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def require(payload: Mapping[str, Any], key: str) -> Any:
    value = payload.get(key)
    if value is None or value == "":
        raise ValueError(f"payload missing {key!r}")
    return value
