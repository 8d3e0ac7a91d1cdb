"""
Conflict resolution strategies.

Pure functions over two record snapshots. A record's write time is its
``updated_at`` or, failing that, its ``created_at``.
"""

from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

Record = Mapping[str, Any]
Strategy = Callable[[Record, Record], dict[str, Any]]


def parse_timestamp(value: Any) -> datetime | None:
    """
    Parse a record timestamp.

    Accepts ``datetime`` objects, ISO-8601 strings (a trailing ``Z`` is fine)
    and numbers, read as POSIX seconds. Naive values are read as UTC.
    Anything else, or anything that fails to parse, yields ``None``.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, int | float):
        try:
            return datetime.fromtimestamp(value, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed


def record_timestamp(record: Record | None) -> datetime | None:
    if not record:
        return None
    return parse_timestamp(record.get("updated_at") or record.get("created_at"))


def last_write_wins(current: Record, incoming: Record) -> dict[str, Any]:
    """Later write wins; incoming wins when either side has no usable timestamp."""
    current_ts = record_timestamp(current)
    incoming_ts = record_timestamp(incoming)

    if current_ts is None or incoming_ts is None:
        return dict(incoming)
    return dict(incoming) if incoming_ts > current_ts else dict(current)


def first_write_wins(current: Record, incoming: Record) -> dict[str, Any]:
    """Earlier write wins; current wins when either side has no usable timestamp."""
    current_ts = record_timestamp(current)
    incoming_ts = record_timestamp(incoming)

    if current_ts is None or incoming_ts is None:
        return dict(current)
    return dict(current) if current_ts < incoming_ts else dict(incoming)


def merge_data(current: Record, incoming: Record) -> dict[str, Any]:
    """
    Merge incoming over current.

    ``None`` values in incoming never overwrite. Keys holding a mapping on
    both sides are merged one level deep.
    """
    merged = dict(current)

    for key, value in incoming.items():
        if value is None:
            continue
        existing = merged.get(key)
        if isinstance(value, Mapping) and isinstance(existing, Mapping):
            merged[key] = {**existing, **value}
        else:
            merged[key] = value

    return merged


STRATEGIES: dict[str, Strategy] = {
    "last_write_wins": last_write_wins,
    "first_write_wins": first_write_wins,
    "merge": merge_data,
}
