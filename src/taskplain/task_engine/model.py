"""Task document model for the task graph engine.

Task metadata lives in the YAML front matter of a markdown file; the body
carries the free-text sections.  Metadata is validated with pydantic so the
same schema guards file reads and per-document validation.

The parent of a task is *not* stored on the task.  It is derived from the
``children`` list of exactly one other task (see :mod:`.hierarchy`).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ..constants import COMMIT_MESSAGE_CUTOFF
from ..utils import _parse_iso


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class _OrderedEnum(str, Enum):
    """String enum whose declaration order is meaningful."""

    @property
    def rank(self) -> int:
        return list(type(self)).index(self)

    @classmethod
    def values(cls) -> list[str]:
        return [member.value for member in cls]


class TaskState(_OrderedEnum):
    """Lifecycle bucket.  Transitions between any two states are allowed."""

    IDEA = "idea"
    READY = "ready"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    CANCELED = "canceled"


class TaskKind(_OrderedEnum):
    EPIC = "epic"
    STORY = "story"
    TASK = "task"


class TaskPriority(_OrderedEnum):
    """Priority; ``urgent`` ranks highest."""

    NONE = "none"
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class TaskSize(_OrderedEnum):
    TINY = "tiny"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    XL = "xl"


class TaskAmbiguity(_OrderedEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ExecutorTier(_OrderedEnum):
    SIMPLE = "simple"
    STANDARD = "standard"
    EXPERT = "expert"
    HUMAN_REVIEW = "human_review"


class IsolationScope(_OrderedEnum):
    """How far a task's changes reach. ``isolated`` is the narrowest."""

    ISOLATED = "isolated"
    MODULE = "module"
    SHARED = "shared"
    GLOBAL = "global"


DEFAULT_SIZE = TaskSize.MEDIUM
DEFAULT_AMBIGUITY = TaskAmbiguity.LOW
DEFAULT_EXECUTOR = ExecutorTier.STANDARD
DEFAULT_ISOLATION = IsolationScope.MODULE

TASK_ID_RE = re.compile(r"^[a-z0-9-]+$")

# Canonical front matter key order used when serializing.
META_KEY_ORDER = [
    "id",
    "title",
    "kind",
    "parent",
    "children",
    "state",
    "blocked",
    "commit_message",
    "priority",
    "size",
    "ambiguity",
    "executor",
    "isolation",
    "touches",
    "depends_on",
    "blocks",
    "assignees",
    "labels",
    "created_at",
    "updated_at",
    "completed_at",
    "last_activity_at",
]


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------

OVERVIEW_HEADING = "## Overview"
ACCEPTANCE_CRITERIA_HEADING = "## Acceptance Criteria"
TECHNICAL_APPROACH_HEADING = "## Technical Approach"
POST_IMPLEMENTATION_HEADING = "## Post-Implementation Insights"

REQUIRED_HEADINGS = (
    OVERVIEW_HEADING,
    ACCEPTANCE_CRITERIA_HEADING,
    TECHNICAL_APPROACH_HEADING,
)


def required_headings_for_state(state: TaskState) -> list[str]:
    if state == TaskState.DONE:
        return [*REQUIRED_HEADINGS, POST_IMPLEMENTATION_HEADING]
    return list(REQUIRED_HEADINGS)


# ---------------------------------------------------------------------------
# Metadata schema
# ---------------------------------------------------------------------------

class TaskMeta(BaseModel):
    """Front matter of a task document.

    Unknown keys are kept (``extra="allow"``) so a round trip never drops
    data; normalization reports them as notices.
    """

    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1, pattern=TASK_ID_RE.pattern)
    title: str = Field(min_length=1)
    kind: TaskKind
    children: Optional[list[str]] = None
    state: TaskState
    priority: TaskPriority = TaskPriority.NORMAL
    blocked: Optional[str] = None
    commit_message: Optional[str] = None
    size: TaskSize = DEFAULT_SIZE
    ambiguity: TaskAmbiguity = DEFAULT_AMBIGUITY
    executor: ExecutorTier = DEFAULT_EXECUTOR
    isolation: IsolationScope = DEFAULT_ISOLATION
    touches: list[str] = Field(default_factory=list)
    depends_on: list[str] = Field(default_factory=list)
    blocks: list[str] = Field(default_factory=list)
    assignees: list[str] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list)
    created_at: str
    updated_at: str
    completed_at: Optional[str] = None
    last_activity_at: Optional[str] = None

    @field_validator("created_at", "updated_at", "completed_at", "last_activity_at", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: Any) -> Any:
        if value is None:
            return None
        dt = _parse_iso(value)
        if dt is None:
            raise ValueError(f"invalid datetime '{value}'")
        return dt.isoformat()

    @field_validator("children", "touches", "depends_on", "blocks", "assignees", "labels")
    @classmethod
    def _non_empty_items(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        if value is None:
            return None
        for item in value:
            if not item:
                raise ValueError("entries must be non-empty strings")
        return value

    @model_validator(mode="after")
    def _commit_message_when_done(self) -> "TaskMeta":
        if self.state != TaskState.DONE:
            return self
        completion = _parse_iso(self.completed_at) or _parse_iso(self.updated_at)
        cutoff = _parse_iso(COMMIT_MESSAGE_CUTOFF)
        if completion is not None and cutoff is not None and completion < cutoff:
            return self
        if not (self.commit_message or "").strip():
            raise ValueError("commit_message is required when state is done")
        return self

    @property
    def legacy_parent(self) -> Optional[str]:
        """Value of a leftover ``parent`` key, if the file still carries one."""
        extra = self.model_extra or {}
        value = extra.get("parent")
        return str(value) if value else None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict in canonical key order, omitting unset optionals."""
        raw = self.model_dump(mode="json", exclude_none=True)
        ordered: dict[str, Any] = {}
        for key in META_KEY_ORDER:
            if key in raw:
                ordered[key] = raw.pop(key)
        ordered.update(raw)
        return ordered


@dataclass(frozen=True)
class TaskDoc:
    """A parsed task document: metadata, markdown body, and source path."""

    meta: TaskMeta
    body: str
    path: str

    @property
    def id(self) -> str:
        return self.meta.id

    @property
    def kind(self) -> TaskKind:
        return self.meta.kind

    @property
    def state(self) -> TaskState:
        return self.meta.state

    @property
    def title(self) -> str:
        return self.meta.title

    @property
    def children(self) -> list[str]:
        return list(self.meta.children or [])


def describe_schema_error(exc: ValidationError) -> str:
    """Flatten a pydantic error into one ``field: message`` line per problem."""
    parts: list[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "meta"
        parts.append(f"{location}: {error.get('msg', 'invalid')}")
    return "; ".join(parts)
