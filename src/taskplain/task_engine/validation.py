"""Per-document and cross-document validation of task documents.

Per-document rules look at one file in isolation: schema, required headings,
acceptance criteria format, and the filename/directory convention.

Cross-document rules run once over every successfully parsed document and
use the hierarchy index: duplicate ids, child/parent kind rules, cycles,
depth, done parents with unfinished descendants, and dangling references.
Hierarchy-consistency heuristics are reported separately as warnings.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

from pydantic import ValidationError

from ..constants import MAX_HIERARCHY_DEPTH
from .hierarchy import HierarchyIndex, build_hierarchy_index, iter_descendants, walk_ancestors
from .model import (
    ACCEPTANCE_CRITERIA_HEADING,
    TASK_ID_RE,
    TaskDoc,
    TaskKind,
    TaskMeta,
    TaskState,
    describe_schema_error,
    required_headings_for_state,
)
from .paths import active_name, state_dir_name

ERROR = "error"
WARNING = "warning"

_COMMENT_RE = re.compile(r"<!--.*?-->", re.S)
_EMPTY_CHECKBOX_RE = re.compile(r"^[-*]\s+\[(?: |x|X)\]\s*$")
_CHECKBOX_RE = re.compile(r"^[-*]\s+\[(?: |x|X)\]\s+.+$")
_CHECKED_RE = re.compile(r"^[-*]\s+\[[xX]\]\s+.+$")
_DONE_PREFIX_RE = re.compile(r"^\d{4}-\d{2}-\d{2} ")

# Allowed child kind per parent kind.
_CHILD_KIND = {TaskKind.EPIC: TaskKind.STORY, TaskKind.STORY: TaskKind.TASK}
_PARENT_KIND = {TaskKind.STORY: TaskKind.EPIC, TaskKind.TASK: TaskKind.STORY}


@dataclass(frozen=True)
class ValidationIssue:
    code: str
    message: str
    file: str
    severity: str = ERROR
    field: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if data["field"] is None:
            del data["field"]
        return data


@dataclass
class ValidationResult:
    ok: bool
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)


def promote_warnings(warnings: Iterable[ValidationIssue]) -> list[ValidationIssue]:
    """Strict mode: the same findings, reported as errors."""
    return [replace(issue, severity=ERROR) for issue in warnings]


class ValidationService:
    """Stateless validator; safe to share across worker threads."""

    # ------------------------------------------------------------------
    # Per-document
    # ------------------------------------------------------------------

    def validate(self, doc: TaskDoc) -> ValidationResult:
        errors = self.validate_document(doc)
        return ValidationResult(ok=not errors, errors=errors)

    def validate_document(self, doc: TaskDoc) -> list[ValidationIssue]:
        errors: list[ValidationIssue] = []
        path = doc.path

        # Documents built in memory can bypass the schema; re-check them.
        try:
            TaskMeta.model_validate(doc.meta.model_dump())
        except ValidationError as exc:
            errors.append(ValidationIssue("schema", describe_schema_error(exc), path))

        body = _COMMENT_RE.sub("", doc.body).replace("\r\n", "\n")
        for heading in required_headings_for_state(doc.state):
            pattern = re.compile(rf"^{re.escape(heading)}\s*$", re.M)
            if not pattern.search(body):
                errors.append(ValidationIssue("heading", f"Missing required heading: {heading}", path))

        errors.extend(self._check_acceptance_criteria(doc))
        errors.extend(self._check_location(doc))
        return errors

    def _check_acceptance_criteria(self, doc: TaskDoc) -> list[ValidationIssue]:
        content = extract_section(doc.body, ACCEPTANCE_CRITERIA_HEADING)
        if content is None:
            return []
        lines = [line.strip() for line in _COMMENT_RE.sub("", content).splitlines()]
        # Bare template checkboxes ("- [ ]") do not count as criteria.
        items = [line for line in lines if line and not _EMPTY_CHECKBOX_RE.match(line)]
        if not items:
            return [
                ValidationIssue(
                    "acceptance_criteria_empty",
                    "Acceptance Criteria must include at least one checkbox item.",
                    doc.path,
                )
            ]

        issues: list[ValidationIssue] = []
        if any(not _CHECKBOX_RE.match(line) for line in items):
            issues.append(
                ValidationIssue(
                    "acceptance_criteria_format",
                    "Acceptance Criteria must be a list of checkbox bullet points (e.g., '- [ ] Description').",
                    doc.path,
                )
            )
        if doc.state not in (TaskState.DONE, TaskState.CANCELED) and all(_CHECKED_RE.match(line) for line in items):
            issues.append(
                ValidationIssue(
                    "all_acceptance_criteria_completed",
                    "All acceptance criteria checkboxes are completed. Task should be marked as done.",
                    doc.path,
                )
            )
        return issues

    def _check_location(self, doc: TaskDoc) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        file_path = Path(doc.path)
        dir_name = file_path.parent.name
        expected_dir = state_dir_name(doc.state)
        if dir_name != expected_dir:
            issues.append(
                ValidationIssue(
                    "path",
                    f"File resides in '{dir_name}' but state '{doc.state.value}' expects '{expected_dir}'",
                    doc.path,
                )
            )

        expected_name = active_name(doc.kind, doc.id)
        if doc.state == TaskState.DONE:
            if not file_path.name.endswith(expected_name) or not _DONE_PREFIX_RE.match(file_path.name):
                issues.append(
                    ValidationIssue(
                        "filename", "Done tasks must be prefixed with completion date (YYYY-MM-DD)", doc.path
                    )
                )
        elif file_path.name != expected_name:
            issues.append(
                ValidationIssue(
                    "filename", f"Expected filename '{expected_name}' for state '{doc.state.value}'", doc.path
                )
            )
        return issues

    # ------------------------------------------------------------------
    # Cross-document
    # ------------------------------------------------------------------

    def validate_cross_document(self, docs: Sequence[TaskDoc]) -> list[ValidationIssue]:
        errors: list[ValidationIssue] = []
        by_id: dict[str, TaskDoc] = {}
        for doc in docs:
            if doc.id in by_id:
                errors.append(ValidationIssue("duplicate_id", f"Duplicate task id '{doc.id}' detected", doc.path))
            else:
                by_id[doc.id] = doc

        built = build_hierarchy_index(docs)
        index, issues = built.index, built.issues

        for doc in docs:
            legacy = doc.meta.legacy_parent
            if legacy:
                errors.append(
                    ValidationIssue(
                        "legacy_parent_metadata",
                        f"Task '{doc.id}' still declares legacy parent '{legacy}'; "
                        "list it in the parent's children instead.",
                        doc.path,
                        field="parent",
                    )
                )
            if doc.meta.children and doc.kind == TaskKind.TASK:
                errors.append(
                    ValidationIssue(
                        "invalid_children_kind", f"Task '{doc.id}' cannot declare children", doc.path, field="children"
                    )
                )

        for ref in issues.missing_children:
            errors.append(
                ValidationIssue(
                    "missing_child_reference",
                    f"Parent '{ref.parent_id}' references missing child '{ref.child_id}'",
                    by_id[ref.parent_id].path,
                    field="children",
                )
            )
        for ref in issues.duplicate_children:
            errors.append(
                ValidationIssue(
                    "duplicate_child_reference",
                    f"Parent '{ref.parent_id}' lists child '{ref.child_id}' more than once",
                    by_id[ref.parent_id].path,
                    field="children",
                )
            )
        for claim in issues.conflicting_claims:
            errors.append(
                ValidationIssue(
                    "conflicting_parent",
                    f"Child '{claim.child_id}' is already listed by '{claim.claimed_by}'; "
                    f"the listing in '{claim.rejected_parent_id}' is ignored",
                    by_id[claim.rejected_parent_id].path,
                    field="children",
                )
            )

        errors.extend(self._check_child_kinds(index, by_id))
        errors.extend(self._check_ancestry(docs, index, by_id))
        errors.extend(self._check_done_parents(docs, index))

        for doc in docs:
            errors.extend(self._check_references(doc, by_id, "depends_on", "missing_dependency"))
            errors.extend(self._check_references(doc, by_id, "blocks", "missing_block_target"))
        return errors

    def _check_child_kinds(self, index: HierarchyIndex, by_id: dict[str, TaskDoc]) -> list[ValidationIssue]:
        errors: list[ValidationIssue] = []
        for parent_id, children in index.children_by_id.items():
            parent = by_id.get(parent_id)
            if parent is None:
                continue
            allowed = _CHILD_KIND.get(parent.kind)
            if allowed is None:
                # Reported as invalid_children_kind.
                continue
            for child in children:
                if child.kind != allowed:
                    errors.append(
                        ValidationIssue(
                            "invalid_child_kind",
                            f"{parent.kind.value.capitalize()} '{parent_id}' can only list {allowed.value} children; "
                            f"found '{child.id}' ({child.kind.value})",
                            parent.path,
                            field="children",
                        )
                    )
        return errors

    def _check_ancestry(
        self,
        docs: Sequence[TaskDoc],
        index: HierarchyIndex,
        by_id: dict[str, TaskDoc],
    ) -> list[ValidationIssue]:
        errors: list[ValidationIssue] = []
        for doc in docs:
            parent_id = index.parent_of(doc.id)
            if parent_id is None:
                continue
            parent = by_id[parent_id]

            if doc.kind == TaskKind.EPIC:
                errors.append(
                    ValidationIssue("invalid_parent_kind", f"Epic '{doc.id}' cannot have a parent", doc.path)
                )
            elif parent.kind != _PARENT_KIND[doc.kind]:
                errors.append(
                    ValidationIssue(
                        "invalid_parent_kind",
                        f"{doc.kind.value.capitalize()} '{doc.id}' must have a {_PARENT_KIND[doc.kind].value} parent",
                        doc.path,
                    )
                )

            ancestors, cycle = walk_ancestors(doc.id, index.parent_by_id)
            if cycle:
                errors.append(
                    ValidationIssue("cycle", f"Parent cycle detected starting at '{doc.id}'", doc.path)
                )
            depth = len(ancestors) + 1
            if depth > MAX_HIERARCHY_DEPTH:
                errors.append(
                    ValidationIssue(
                        "depth_exceeded",
                        f"Hierarchy depth for '{doc.id}' is {depth}; maximum is {MAX_HIERARCHY_DEPTH}",
                        doc.path,
                    )
                )
        return errors

    def _check_done_parents(self, docs: Sequence[TaskDoc], index: HierarchyIndex) -> list[ValidationIssue]:
        errors: list[ValidationIssue] = []
        for doc in docs:
            if doc.state != TaskState.DONE or doc.id not in index.children_by_id:
                continue
            for descendant in iter_descendants(doc.id, index):
                if descendant.state != TaskState.DONE:
                    errors.append(
                        ValidationIssue(
                            "incomplete_descendant",
                            f"Cannot mark '{doc.id}' done while descendant '{descendant.id}' "
                            f"is {descendant.state.value}",
                            doc.path,
                        )
                    )
                    break
        return errors

    def _check_references(
        self,
        doc: TaskDoc,
        by_id: dict[str, TaskDoc],
        field_name: str,
        missing_code: str,
    ) -> list[ValidationIssue]:
        errors: list[ValidationIssue] = []
        seen: set[str] = set()
        for target in getattr(doc.meta, field_name):
            if not TASK_ID_RE.match(target):
                errors.append(
                    ValidationIssue(
                        f"{field_name}_invalid_id",
                        f"{field_name} entry '{target}' is not a valid task id",
                        doc.path,
                        field=field_name,
                    )
                )
                continue
            if target == doc.id:
                errors.append(
                    ValidationIssue(
                        f"{field_name}_self_reference",
                        f"{field_name} cannot include the task itself ({target})",
                        doc.path,
                        field=field_name,
                    )
                )
                continue
            if target not in by_id:
                errors.append(
                    ValidationIssue(
                        missing_code, f"{field_name} references missing task '{target}'", doc.path, field=field_name
                    )
                )
            if target in seen:
                errors.append(
                    ValidationIssue(
                        f"{field_name}_duplicate",
                        f"{field_name} contains duplicate reference '{target}'",
                        doc.path,
                        field=field_name,
                    )
                )
            seen.add(target)
        return errors

    # ------------------------------------------------------------------
    # Heuristics
    # ------------------------------------------------------------------

    def detect_parent_child_state_warnings(self, docs: Sequence[TaskDoc]) -> list[ValidationIssue]:
        """Flag parent/child state combinations that usually mean drift.

        These never fail validation on their own; strict mode promotes them.
        """
        warnings: list[ValidationIssue] = []
        if not docs:
            return warnings
        index = build_hierarchy_index(docs).index
        by_id: dict[str, TaskDoc] = {}
        for doc in docs:
            by_id.setdefault(doc.id, doc)

        for parent_id, children in index.children_by_id.items():
            parent = by_id.get(parent_id)
            if parent is None or not children:
                continue

            if parent.state == TaskState.IDEA:
                done = [child.id for child in children if child.state == TaskState.DONE]
                if done:
                    warnings.append(
                        ValidationIssue(
                            "state_anomaly",
                            f"Parent '{parent_id}' is in idea but has completed children ({', '.join(done)}).\n"
                            "    Hint: Consider promoting the parent or adjusting children.",
                            parent.path,
                            severity=WARNING,
                        )
                    )
                active = [child.id for child in children if child.state == TaskState.IN_PROGRESS]
                if active:
                    warnings.append(
                        ValidationIssue(
                            "state_progression",
                            f"Parent '{parent_id}' is in idea but child {', '.join(active)} is in-progress.\n"
                            "    Hint: Consider promoting the parent to reflect active work.",
                            parent.path,
                            severity=WARNING,
                        )
                    )

            if parent.state == TaskState.CANCELED:
                active = [
                    f"{child.id}:{child.state.value}"
                    for child in children
                    if child.state in (TaskState.READY, TaskState.IN_PROGRESS)
                ]
                if active:
                    warnings.append(
                        ValidationIssue(
                            "inconsistent_cancellation",
                            f"Parent '{parent_id}' is canceled but has active children ({', '.join(active)}).\n"
                            "    Hint: Consider canceling children or restoring the parent.",
                            parent.path,
                            severity=WARNING,
                        )
                    )
        return warnings

    def validate_all(self, docs: Sequence[TaskDoc], strict: bool = False) -> ValidationResult:
        """Run every rule over *docs* in one synchronous pass."""
        errors: list[ValidationIssue] = []
        for doc in docs:
            errors.extend(self.validate_document(doc))
        errors.extend(self.validate_cross_document(docs))

        warnings = self.detect_parent_child_state_warnings(docs)
        if strict:
            errors.extend(promote_warnings(warnings))
            warnings = []
        return ValidationResult(ok=not errors, errors=errors, warnings=warnings)


def extract_section(body: str, heading: str) -> Optional[str]:
    """Return the text under *heading* up to the next ``##`` heading, or ``None``."""
    pattern = re.compile(rf"^{re.escape(heading)}\s*\n(.*?)(?=^##\s+|\Z)", re.M | re.S)
    match = pattern.search(body)
    if not match:
        return None
    return match.group(1).rstrip()
