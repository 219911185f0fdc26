"""Task engine: the entry point for validate / next / tree.

Every call loads a fresh snapshot from disk, builds the hierarchy index and
ranking context for it, answers the query, and throws everything away.
Nothing is cached between calls.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from loguru import logger

from ..constants import DEFAULT_MIN_PARALLEL_FILES
from .dispatch import NextOptions, NextResult, NextService
from .hierarchy import build_hierarchy_index
from .model import TaskDoc
from .ranking import build_ranking_context, sort_tasks
from .reporter import ValidationCollection, ValidationStreamEvent, collect_validation_issues
from .store import LoadedTasks, TaskStore
from .validation import ValidationService


@dataclass
class TreeNode:
    doc: TaskDoc
    children: list["TreeNode"] = field(default_factory=list)

    def _summary(self) -> dict[str, Any]:
        return {
            "id": self.doc.id,
            "title": self.doc.title,
            "kind": self.doc.kind.value,
            "state": self.doc.state.value,
            "children": [],
        }

    def to_dict(self) -> dict[str, Any]:
        payload = self._summary()
        stack = [(self, payload)]
        while stack:
            node, target = stack.pop()
            for child in node.children:
                child_payload = child._summary()
                target["children"].append(child_payload)
                stack.append((child, child_payload))
        return payload


class TaskEngine:
    """Validate, rank, and inspect the tasks of one project.

    Parameters
    ----------
    project_dir:
        Repository root containing ``tasks/``.
    """

    def __init__(self, project_dir: Path, validator: Optional[ValidationService] = None) -> None:
        self.project_dir = project_dir
        self.store = TaskStore(project_dir)
        self.validator = validator or ValidationService()

    def _load(self) -> LoadedTasks:
        loaded = self.store.load_all()
        for failure in loaded.failures:
            logger.warning("Skipping unreadable task file {}: {}", failure.file, failure.reason)
        return loaded

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def validate(
        self,
        *,
        max_concurrency: Optional[int] = None,
        min_parallel_files: int = DEFAULT_MIN_PARALLEL_FILES,
        strict: bool = False,
        on_event: Optional[Callable[[ValidationStreamEvent], None]] = None,
    ) -> ValidationCollection:
        files = self.store.list_task_files()
        logger.debug("Found {} task file(s) under {}", len(files), self.store.tasks_root)
        return collect_validation_issues(
            files,
            self.store.read,
            self.validator,
            max_concurrency=max_concurrency,
            min_parallel_files=min_parallel_files,
            on_event=on_event,
            strict=strict,
        )

    def next(self, options: NextOptions) -> NextResult:
        docs = self._load().docs
        return NextService(docs).evaluate(options)

    def tree(self) -> list[TreeNode]:
        return build_tree(self._load().docs)


def build_tree(docs: Sequence[TaskDoc]) -> list[TreeNode]:
    """Hierarchy forest: roots in ranking order, children in declared order.

    Built with an explicit stack, so arbitrarily long (malformed) chains do not
    hit the recursion limit.  Cycle members are never reachable from a root and
    are left out.
    """
    index = build_hierarchy_index(docs).index
    roots = sort_tasks(index.roots(docs), build_ranking_context(docs))
    seen: set[str] = set()
    forest: list[TreeNode] = []
    for root in roots:
        if root.id in seen:
            continue
        seen.add(root.id)
        node = TreeNode(root)
        forest.append(node)
        stack = [node]
        while stack:
            current = stack.pop()
            for child in index.children_of(current.doc.id):
                if child.id in seen:
                    continue
                seen.add(child.id)
                child_node = TreeNode(child)
                current.children.append(child_node)
                stack.append(child_node)
    return forest
