"""Utility helpers shared across modules."""

from __future__ import annotations

import time
from datetime import UTC, datetime

SIZE_UNITS = ("B", "KB", "MB", "GB")


def parse_graph_datetime(value: str) -> datetime:
    """Convert Graph ISO strings (with trailing Z) into aware UTC datetimes."""
    return datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Force a datetime into UTC without altering instant."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def today_iso() -> str:
    return utc_now().date().isoformat()


def epoch_millis() -> int:
    return int(time.time() * 1000)


def format_file_size(size_in_bytes: int) -> str:
    """Render a byte count with binary scaling, e.g. 1536 -> '1.5 KB'."""
    if not size_in_bytes:
        return "Unknown"

    size = float(size_in_bytes)
    unit_index = 0
    while size >= 1024 and unit_index < len(SIZE_UNITS) - 1:
        size /= 1024
        unit_index += 1

    rendered = f"{round(size, 2):.2f}".rstrip("0").rstrip(".")
    return f"{rendered} {SIZE_UNITS[unit_index]}"
