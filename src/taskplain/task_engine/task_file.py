"""Read and write task documents (YAML front matter + markdown body)."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from ..exceptions import TaskFileError
from ..io_utils import _atomic_write_text
from .model import TaskDoc, TaskMeta, describe_schema_error
from .normalization import NormalizationWarning, normalize_meta_input

_FRONT_MATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.S)


@dataclass
class TaskFileReadResult:
    doc: TaskDoc
    warnings: list[NormalizationWarning] = field(default_factory=list)


def split_front_matter(text: str) -> tuple[dict[str, Any], str]:
    """Split *text* into its front matter mapping and body.

    Raises:
        ValueError: If the front matter block is missing or is not a mapping.
        yaml.YAMLError: If the front matter is not valid YAML.
    """
    match = _FRONT_MATTER_RE.match(text)
    if not match:
        raise ValueError("missing front matter block")
    data = yaml.safe_load(match.group(1))
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"front matter must be a mapping, got {type(data).__name__}")
    return data, text[match.end():]


def parse_task_text(text: str, path: str) -> TaskFileReadResult:
    try:
        raw, body = split_front_matter(text)
    except yaml.YAMLError as exc:
        raise TaskFileError(path, f"invalid YAML front matter: {exc}") from exc
    except ValueError as exc:
        raise TaskFileError(path, str(exc)) from exc

    normalized, warnings = normalize_meta_input(raw)
    try:
        meta = TaskMeta.model_validate(normalized)
    except ValidationError as exc:
        raise TaskFileError(path, describe_schema_error(exc)) from exc
    return TaskFileReadResult(doc=TaskDoc(meta=meta, body=body.rstrip(), path=path), warnings=warnings)


def read_task_file(path: str | Path) -> TaskFileReadResult:
    """Load one task document.

    Raises:
        TaskFileError: If the file cannot be read, parsed, or fails the schema.
    """
    file_path = str(path)
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise TaskFileError(file_path, f"read failed: {exc.__class__.__name__}: {exc}") from exc
    return parse_task_text(text, file_path)


def serialize_task_doc(doc: TaskDoc) -> str:
    """Render *doc* deterministically: canonical key order, single trailing newline."""
    front = yaml.safe_dump(
        doc.meta.to_dict(),
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
        width=10_000,
    ).strip()
    body = doc.body if doc.body.endswith("\n") else f"{doc.body}\n"
    separator = "" if body.startswith("\n") else "\n"
    return f"---\n{front}\n---\n{separator}{body}"


def write_task_file(path: str | Path, doc: TaskDoc) -> None:
    _atomic_write_text(Path(path), serialize_task_doc(doc))
