"""Naming conventions for task files on disk."""

from __future__ import annotations

from ..constants import STATE_PREFIXES
from .model import TaskKind, TaskState


def state_dir_name(state: TaskState) -> str:
    return STATE_PREFIXES[state.value]


def active_name(kind: TaskKind, task_id: str) -> str:
    """Active files are named ``<kind>-<id>.md``; done files add a ``YYYY-MM-DD `` prefix."""
    return f"{kind.value}-{task_id}.md"
