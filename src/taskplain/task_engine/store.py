"""File-based task store.

Task documents live one per file under ``tasks/<state-bucket>/*.md``.  The
store only enumerates and loads them; every command invocation loads a fresh
snapshot and nothing is cached between invocations.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from ..constants import TASK_FILE_SUFFIX, TASKS_DIR_NAME
from ..exceptions import TaskFileError
from .model import TaskDoc
from .normalization import NormalizationWarning
from .task_file import TaskFileReadResult, read_task_file


@dataclass(frozen=True)
class LoadFailure:
    """A task file that could not be loaded."""

    file: str
    reason: str


@dataclass
class LoadedTasks:
    docs: list[TaskDoc]
    failures: list[LoadFailure]
    warnings: dict[str, list[NormalizationWarning]]


class TaskStore:
    """Read-only view over the task documents of one project.

    Parameters
    ----------
    project_dir:
        Repository root containing the ``tasks/`` directory.
    """

    def __init__(self, project_dir: Path) -> None:
        self.project_dir = project_dir
        self.tasks_root = project_dir / TASKS_DIR_NAME

    def list_task_files(self) -> list[str]:
        """Return every ``tasks/<bucket>/*.md`` path, sorted.

        A missing ``tasks/`` directory is treated as an empty set.
        """
        if not self.tasks_root.is_dir():
            return []
        files: list[str] = []
        for bucket in self.tasks_root.iterdir():
            if not bucket.is_dir():
                continue
            for entry in bucket.iterdir():
                if entry.is_file() and entry.name.endswith(TASK_FILE_SUFFIX):
                    files.append(str(entry))
        files.sort()
        return files

    def read(self, file_path: str) -> TaskFileReadResult:
        return read_task_file(file_path)

    def load_all(self) -> LoadedTasks:
        """Load every task file, collecting per-file failures instead of raising."""
        docs: list[TaskDoc] = []
        failures: list[LoadFailure] = []
        warnings: dict[str, list[NormalizationWarning]] = {}
        for file_path in self.list_task_files():
            try:
                result = self.read(file_path)
            except TaskFileError as exc:
                logger.debug("Failed to load {}: {}", file_path, exc.reason)
                failures.append(LoadFailure(file=exc.file, reason=exc.reason))
                continue
            docs.append(result.doc)
            if result.warnings:
                warnings[file_path] = list(result.warnings)
        return LoadedTasks(docs=docs, failures=failures, warnings=warnings)
