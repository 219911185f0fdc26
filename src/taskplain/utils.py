"""Provide utility helpers for timestamps."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_iso(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            if not isinstance(value, str):
                value = str(value)
            if value.endswith("Z"):
                value = value[:-1] + "+00:00"
            dt = datetime.fromisoformat(value)
        except ValueError:
            return None
    # If a naive timestamp slips in, assume UTC to avoid crashes.
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _timestamp_ms(value: Any) -> int:
    """Return epoch milliseconds for *value*, or ``0`` when it cannot be parsed."""
    dt = _parse_iso(value)
    if dt is None:
        return 0
    return int(dt.timestamp() * 1000)
