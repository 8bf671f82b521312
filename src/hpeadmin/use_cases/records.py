"""Helpers for shaping API records before they are returned to callers."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Iterable

logger = logging.getLogger(__name__)

TYPE_TAG_KEY = "_type"

# fromisoformat on 3.10 only takes 3 or 6 fractional digits.
_FRACTION_RE = re.compile(r"(T\d{2}:\d{2}:\d{2})\.(\d+)")


def tag_records(records: Iterable[dict[str, Any]], type_name: str) -> list[dict[str, Any]]:
    """Return shallow copies of `records` stamped with a logical type name."""

    tagged: list[dict[str, Any]] = []
    for r in records:
        copy = dict(r)
        copy[TYPE_TAG_KEY] = type_name
        tagged.append(copy)
    return tagged


def parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO-8601 strings ('...Z' included) or epoch milliseconds into aware UTC datetimes."""

    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)

    s = str(value).strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    s = _FRACTION_RE.sub(lambda m: f"{m.group(1)}.{(m.group(2) + '000000')[:6]}", s, count=1)
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        logger.debug("Unparseable timestamp %r", value)
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
