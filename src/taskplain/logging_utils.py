"""Configure logging and summarize validation events."""

import json
import sys
from typing import Any

from loguru import logger

from .constants import DEFAULT_LOG_LEVEL


def configure_logging(level: str = DEFAULT_LOG_LEVEL) -> None:
    """Configure loguru logger with the specified level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{module}</cyan>:<cyan>{line}</cyan>\n"
            "{message}"
        ),
    )


def summarize_event(event: Any, max_issues: int = 3) -> dict[str, Any]:
    """Render a compact, JSON-friendly summary of a validation stream event.

    Args:
        event: A ``ValidationStreamEvent`` (or None).
        max_issues: Maximum number of issue codes to list per severity.

    Returns:
        A dictionary suitable for logging or serialization.
    """
    if event is None:
        return {"event": None}

    errors = list(getattr(event, "errors", []) or [])
    warnings = list(getattr(event, "warnings", []) or [])
    d: dict[str, Any] = {
        "stage": getattr(event, "stage", None),
        "file": getattr(event, "file", None),
        "index": getattr(event, "index", None),
        "ok": bool(getattr(event, "ok", False)),
        "errors_n": len(errors),
        "warnings_n": len(warnings),
    }
    if errors:
        d["error_codes"] = [issue.code for issue in errors[:max_issues]]
        first = str(errors[0].message)
        d["first_error"] = (first[:240] + "…") if len(first) > 240 else first
    if warnings:
        d["warning_codes"] = [issue.code for issue in warnings[:max_issues]]
    return d


def pretty(obj: Any, *, indent: int = 2) -> str:
    """Serialize an object as JSON for readable logs.

    Args:
        obj: Object to serialize.
        indent: Indentation level for JSON output.

    Returns:
        A JSON string when possible; otherwise `str(obj)`.
    """
    try:
        return json.dumps(obj, indent=indent, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(obj)
