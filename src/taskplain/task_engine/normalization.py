"""Tolerant normalization of raw front matter before schema validation.

Hand-edited task files drift: states spelled ``in_progress``, priorities given
as numbers, comma strings where lists are expected.  Everything that can be
coerced safely is coerced here, and each coercion is reported as a
:class:`NormalizationWarning` so the validate command can surface it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from ..utils import _now_iso
from .model import (
    DEFAULT_AMBIGUITY,
    DEFAULT_EXECUTOR,
    DEFAULT_ISOLATION,
    DEFAULT_SIZE,
    META_KEY_ORDER,
    TASK_ID_RE,
    ExecutorTier,
    IsolationScope,
    TaskAmbiguity,
    TaskPriority,
    TaskSize,
    TaskState,
)


@dataclass(frozen=True)
class NormalizationWarning:
    code: str
    message: str
    field: Optional[str] = None


_STATE_ALIASES = {
    "in_progress": "in-progress",
    "inprogress": "in-progress",
    "in progress": "in-progress",
    "cancelled": "canceled",
}

_KNOWN_KEYS = set(META_KEY_ORDER)


def normalize_meta_input(data: dict[str, Any]) -> tuple[dict[str, Any], list[NormalizationWarning]]:
    """Return a normalized copy of *data* and the notices raised on the way."""
    warnings: list[NormalizationWarning] = []
    meta = dict(data)

    _migrate_legacy_dispatch_fields(meta, warnings)

    if "parent" in meta and meta["parent"] in (None, ""):
        del meta["parent"]
        warnings.append(NormalizationWarning("parent_removed", "parent was null → treated as absent", "parent"))

    if isinstance(meta.get("state"), str):
        normalized_state = _normalize_state(meta["state"])
        if normalized_state != meta["state"]:
            warnings.append(
                NormalizationWarning(
                    "state_normalized",
                    f"state '{normalized_state}' normalized from '{meta['state']}'",
                    "state",
                )
            )
            meta["state"] = normalized_state

    raw_priority = meta.get("priority")
    if isinstance(raw_priority, (str, int)) and not isinstance(raw_priority, bool):
        normalized_priority = _normalize_priority(raw_priority)
        if normalized_priority != raw_priority:
            meta["priority"] = normalized_priority
            warnings.append(
                NormalizationWarning("priority_normalized", f"priority normalized to '{normalized_priority}'", "priority")
            )

    _normalize_blocked(meta, warnings)
    _normalize_commit_message(meta, warnings)

    for key in ("labels", "assignees"):
        if key in meta:
            normalized_list = _normalize_string_list(meta[key], key, warnings)
            if normalized_list is None:
                del meta[key]
            else:
                meta[key] = normalized_list

    meta["size"] = _enum_or_default(meta.get("size"), TaskSize.values(), DEFAULT_SIZE.value, "size", warnings)
    meta["ambiguity"] = _enum_or_default(
        meta.get("ambiguity"), TaskAmbiguity.values(), DEFAULT_AMBIGUITY.value, "ambiguity", warnings
    )
    meta["executor"] = _enum_or_default(
        meta.get("executor"), ExecutorTier.values(), DEFAULT_EXECUTOR.value, "executor", warnings
    )
    meta["isolation"] = _enum_or_default(
        meta.get("isolation"), IsolationScope.values(), DEFAULT_ISOLATION.value, "isolation", warnings
    )

    for key, lower in (("touches", False), ("depends_on", True), ("blocks", True)):
        if key not in meta:
            continue
        normalized_list = _normalize_string_list(meta[key], key, warnings)
        if normalized_list is None:
            del meta[key]
            continue
        if lower:
            normalized_list = _dedupe([entry.lower() for entry in normalized_list])
            invalid = [entry for entry in normalized_list if not TASK_ID_RE.match(entry)]
            if invalid:
                warnings.append(
                    NormalizationWarning(f"{key}_invalid_id", f"{key} contains invalid ids: {', '.join(invalid)}", key)
                )
        meta[key] = normalized_list

    _collect_dispatch_warnings(meta, warnings)
    _default_timestamps(meta, warnings)

    for key in meta:
        if key not in _KNOWN_KEYS:
            warnings.append(NormalizationWarning("unknown_meta_key", f"Unknown metadata key '{key}' preserved", key))

    if isinstance(meta.get("blocked"), str) and meta.get("state") in ("done", "canceled"):
        warnings.append(
            NormalizationWarning("blocked_terminal_state", "blocked present while state is done/canceled", "blocked")
        )

    return meta, warnings


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _normalize_state(value: str) -> str:
    trimmed = value.strip().lower()
    if trimmed in _STATE_ALIASES:
        return _STATE_ALIASES[trimmed]
    canonical = "-".join(trimmed.replace("_", "-").split())
    if canonical in _STATE_ALIASES:
        return _STATE_ALIASES[canonical]
    if trimmed in TaskState.values():
        return trimmed
    return value


def _normalize_priority(value: str | int) -> str | int:
    order = TaskPriority.values()
    if isinstance(value, int):
        return order[value] if 0 <= value < len(order) else value
    trimmed = value.strip().lower()
    if trimmed in order:
        return trimmed
    if trimmed.isdigit() and int(trimmed) < len(order):
        return order[int(trimmed)]
    return value


def _normalize_blocked(meta: dict[str, Any], warnings: list[NormalizationWarning]) -> None:
    if "blocked" not in meta:
        return
    value = meta["blocked"]
    if value is None or isinstance(value, bool):
        meta["blocked"] = ""
        warnings.append(
            NormalizationWarning("blocked_coerced", "blocked true/null coerced to empty string", "blocked")
        )
        return
    if isinstance(value, str):
        trimmed = value.rstrip()
        if trimmed != value:
            meta["blocked"] = trimmed
            warnings.append(
                NormalizationWarning("blocked_trimmed", "blocked message had trailing whitespace removed", "blocked")
            )
    # Anything else is left for the schema to reject.


def _normalize_commit_message(meta: dict[str, Any], warnings: list[NormalizationWarning]) -> None:
    if "commit_message" not in meta:
        return
    value = meta["commit_message"]
    if value is None:
        del meta["commit_message"]
        warnings.append(
            NormalizationWarning("commit_message_null", "commit_message was null → treated as absent", "commit_message")
        )
        return
    if not isinstance(value, str):
        return
    trimmed = value.strip()
    if not trimmed:
        del meta["commit_message"]
        warnings.append(
            NormalizationWarning("commit_message_empty", "commit_message was blank and removed", "commit_message")
        )
        return
    if trimmed != value:
        meta["commit_message"] = trimmed
        warnings.append(
            NormalizationWarning(
                "commit_message_trimmed", "commit_message had surrounding whitespace removed", "commit_message"
            )
        )


def _migrate_legacy_dispatch_fields(meta: dict[str, Any], warnings: list[NormalizationWarning]) -> None:
    legacy = (
        ("decision_readiness", "ambiguity", TaskAmbiguity.values()),
        ("agent_fit", "executor", ExecutorTier.values()),
    )
    for old_key, new_key, allowed in legacy:
        if not isinstance(meta.get(old_key), str):
            continue
        raw = meta.pop(old_key)
        normalized = raw.strip().lower()
        if normalized in allowed:
            meta.setdefault(new_key, normalized)
            warnings.append(
                NormalizationWarning(f"{old_key}_migrated", f"{old_key} → {new_key} ({normalized})", old_key)
            )
        else:
            warnings.append(
                NormalizationWarning(f"{old_key}_unmapped", f"{old_key} '{raw}' not recognized", old_key)
            )


def _enum_or_default(
    value: Any,
    allowed: list[str],
    fallback: str,
    field: str,
    warnings: list[NormalizationWarning],
) -> str:
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in allowed:
            return normalized
        warnings.append(
            NormalizationWarning(f"{field}_invalid", f"{field} '{value}' not recognized → defaulted to {fallback}", field)
        )
    elif value is not None:
        warnings.append(
            NormalizationWarning(f"{field}_invalid_type", f"{field} expected string → defaulted to {fallback}", field)
        )
    return fallback


def _normalize_string_list(value: Any, field: str, warnings: list[NormalizationWarning]) -> Optional[list[str]]:
    if value is None:
        return None
    if isinstance(value, str):
        items: list[Any] = [part.strip() for part in value.split(",") if part.strip()]
        if not items:
            return None
        warnings.append(NormalizationWarning(f"{field}_coerced", f"{field} string coerced into array", field))
    elif isinstance(value, list):
        items = value
    else:
        warnings.append(
            NormalizationWarning(f"{field}_invalid_type", f"{field} expected array or comma string", field)
        )
        return None

    cleaned: list[str] = []
    for index, item in enumerate(items):
        if not isinstance(item, str):
            warnings.append(
                NormalizationWarning(f"{field}_coerced", f"{field}[{index}] was not a string and was dropped", field)
            )
            continue
        trimmed = item.strip()
        if not trimmed:
            warnings.append(
                NormalizationWarning(f"{field}_empty_entry", f"{field}[{index}] was empty and removed", field)
            )
            continue
        cleaned.append(trimmed)
    unique = _dedupe(cleaned)
    if isinstance(value, list) and unique != value:
        warnings.append(NormalizationWarning(f"{field}_normalized", f"{field} normalized (trimmed, deduped)", field))
    return unique or None


def _dedupe(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))


def _collect_dispatch_warnings(meta: dict[str, Any], warnings: list[NormalizationWarning]) -> None:
    if meta.get("size") == "xl" and meta.get("isolation") in ("isolated", "module"):
        warnings.append(
            NormalizationWarning(
                "size_isolation_mismatch", "size 'xl' rarely stays isolated/module. Double-check isolation", "size"
            )
        )
    if meta.get("executor") == "simple" and meta.get("ambiguity") == "high":
        warnings.append(
            NormalizationWarning(
                "executor_ambiguity_mismatch", "executor 'simple' with ambiguity 'high' may need escalation", "executor"
            )
        )


def _default_timestamps(meta: dict[str, Any], warnings: list[NormalizationWarning]) -> None:
    if not meta.get("created_at"):
        meta["created_at"] = _now_iso()
        warnings.append(
            NormalizationWarning("created_at_missing", "created_at missing → defaulted to now", "created_at")
        )
    if not meta.get("updated_at"):
        meta["updated_at"] = meta["created_at"]
        warnings.append(
            NormalizationWarning("updated_at_missing", "updated_at missing → defaulted to created_at", "updated_at")
        )
    if not meta.get("last_activity_at"):
        meta["last_activity_at"] = meta["updated_at"]
        warnings.append(
            NormalizationWarning(
                "last_activity_missing", "last_activity_at missing → defaulted to updated_at", "last_activity_at"
            )
        )
