from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import pytest

from taskplain.constants import STATE_PREFIXES, TASKS_DIR_NAME
from taskplain.task_engine.model import TaskDoc, TaskMeta
from taskplain.task_engine.task_file import write_task_file

BODY = (
    "## Overview\n\nSomething worth doing.\n\n"
    "## Acceptance Criteria\n\n- [ ] It works\n\n"
    "## Technical Approach\n\nDo the thing.\n"
)
DONE_BODY = (
    "## Overview\n\nSomething worth doing.\n\n"
    "## Acceptance Criteria\n\n- [x] It works\n\n"
    "## Technical Approach\n\nDo the thing.\n\n"
    "## Post-Implementation Insights\n\nWent fine.\n"
)

# Before the commit_message cutoff, so done tasks need no commit message.
DEFAULT_TS = "2025-01-01T00:00:00+00:00"


def build_doc(
    task_id: str,
    kind: str = "task",
    state: str = "ready",
    *,
    root: Path | str = "/repo",
    body: str | None = None,
    **fields: Any,
) -> TaskDoc:
    meta: dict[str, Any] = {
        "id": task_id,
        "title": fields.pop("title", task_id.replace("-", " ").title()),
        "kind": kind,
        "state": state,
        "created_at": DEFAULT_TS,
        "updated_at": DEFAULT_TS,
        "last_activity_at": DEFAULT_TS,
    }
    meta.update(fields)
    name = f"{kind}-{task_id}.md"
    if state == "done":
        name = f"2025-01-01 {name}"
    path = Path(root) / TASKS_DIR_NAME / STATE_PREFIXES[state] / name
    if body is None:
        body = DONE_BODY if state == "done" else BODY
    return TaskDoc(meta=TaskMeta.model_validate(meta), body=body, path=str(path))


@pytest.fixture
def make_doc() -> Callable[..., TaskDoc]:
    return build_doc


@pytest.fixture
def write_task(tmp_path: Path) -> Callable[..., TaskDoc]:
    """Write a valid task file under ``tmp_path/tasks`` and return its document."""

    def _write(task_id: str, kind: str = "task", state: str = "ready", **fields: Any) -> TaskDoc:
        doc = build_doc(task_id, kind, state, root=tmp_path, **fields)
        write_task_file(doc.path, doc)
        return doc

    return _write
