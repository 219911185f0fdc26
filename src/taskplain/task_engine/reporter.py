"""Streaming validation over a bounded thread pool with in-order delivery.

Each file is read and validated by a worker that writes its outcome into its
own slot of a pre-sized list; no other shared state is touched while the pool
runs.  The calling thread is the only consumer: it walks the slots by index
and emits the event for file *i* only after the event for file *i - 1*.

Because emission is strictly ordered, one slow or hung file read holds back
the events of every file after it, even when those have already finished.
This is intentional: the event stream is identical from run to run.
"""

from __future__ import annotations

import concurrent.futures
import os
import time
from dataclasses import dataclass, field
from typing import Callable, Literal, Optional, Sequence

from loguru import logger

from ..constants import DEFAULT_MIN_PARALLEL_FILES
from ..exceptions import TaskFileError
from .model import TaskDoc
from .task_file import TaskFileReadResult
from .validation import WARNING, ValidationIssue, ValidationService, promote_warnings

ValidationStage = Literal["parse", "document", "collection"]


@dataclass(frozen=True)
class ValidationStreamEvent:
    stage: ValidationStage
    file: str
    index: int
    errors: list[ValidationIssue]
    warnings: list[ValidationIssue]
    ok: bool


@dataclass
class ValidationSummary:
    files_checked: int
    docs_parsed: int
    parse_errors: int
    errors: int
    warnings: int
    elapsed_ms: int
    ok: bool


@dataclass
class ValidationCollection:
    docs: list[TaskDoc] = field(default_factory=list)
    errors: list[ValidationIssue] = field(default_factory=list)
    parse_errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    files_checked: int = 0
    elapsed_ms: int = 0

    @property
    def ok(self) -> bool:
        return not self.errors and not self.parse_errors

    def summary(self) -> ValidationSummary:
        return ValidationSummary(
            files_checked=self.files_checked,
            docs_parsed=len(self.docs),
            parse_errors=len(self.parse_errors),
            errors=len(self.errors),
            warnings=len(self.warnings),
            elapsed_ms=self.elapsed_ms,
            ok=self.ok,
        )


@dataclass
class _FileOutcome:
    stage: ValidationStage
    doc: Optional[TaskDoc]
    errors: list[ValidationIssue]
    warnings: list[ValidationIssue]


def effective_concurrency(
    file_count: int,
    max_concurrency: Optional[int] = None,
    min_parallel_files: int = DEFAULT_MIN_PARALLEL_FILES,
) -> int:
    """Worker count for *file_count* files.

    Below *min_parallel_files* the pool is skipped entirely.
    """
    if max_concurrency is not None and max_concurrency < 1:
        raise ValueError("max_concurrency must be >= 1")
    if min_parallel_files < 0:
        raise ValueError("min_parallel_files must be >= 0")
    if file_count < min_parallel_files:
        return 1
    requested = max_concurrency if max_concurrency is not None else (os.cpu_count() or 1)
    return max(1, min(requested, file_count))


def collect_validation_issues(
    files: Sequence[str],
    load: Callable[[str], TaskFileReadResult],
    validator: ValidationService,
    *,
    max_concurrency: Optional[int] = None,
    min_parallel_files: int = DEFAULT_MIN_PARALLEL_FILES,
    on_event: Optional[Callable[[ValidationStreamEvent], None]] = None,
    strict: bool = False,
) -> ValidationCollection:
    """Validate *files* and stream one event per file, in file order.

    Args:
        files: Task file paths, already in the order events should be emitted.
        load: Reads one file; raises :class:`TaskFileError` on failure.
        validator: Per-document and cross-document rules.
        max_concurrency: Worker pool size (default: CPU count).
        min_parallel_files: Below this many files everything runs inline.
        on_event: Receives ``parse``/``document`` events in index order, then
            ``collection`` events grouped per file in file order.
        strict: Report warnings as errors.

    Returns:
        The parsed documents and every issue found.
    """
    started = time.monotonic()
    limit = effective_concurrency(len(files), max_concurrency, min_parallel_files)
    logger.debug("Validating {} files with {} worker(s)", len(files), limit)

    slots: list[Optional[_FileOutcome]] = [None] * len(files)

    def work(index: int) -> None:
        slots[index] = _validate_file(files[index], load, validator, strict)

    collection = ValidationCollection(files_checked=len(files))

    def drain(index: int) -> None:
        outcome = slots[index]
        if outcome is None:
            raise RuntimeError(f"no validation result recorded for {files[index]}")
        if outcome.doc is not None:
            collection.docs.append(outcome.doc)
        if outcome.stage == "parse":
            collection.parse_errors.extend(outcome.errors)
        else:
            collection.errors.extend(outcome.errors)
        collection.warnings.extend(outcome.warnings)
        if on_event is not None:
            on_event(
                ValidationStreamEvent(
                    stage=outcome.stage,
                    file=files[index],
                    index=index,
                    errors=outcome.errors,
                    warnings=outcome.warnings,
                    ok=not outcome.errors,
                )
            )
        slots[index] = None

    if limit == 1:
        # Inline - no pool overhead for small sets
        for index in range(len(files)):
            work(index)
            drain(index)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=limit) as executor:
            futures = [executor.submit(work, index) for index in range(len(files))]
            for index, future in enumerate(futures):
                future.result()
                drain(index)

    cross_errors = validator.validate_cross_document(collection.docs)
    cross_warnings = validator.detect_parent_child_state_warnings(collection.docs)
    if strict:
        cross_errors.extend(promote_warnings(cross_warnings))
        cross_warnings = []
    collection.errors.extend(cross_errors)
    collection.warnings.extend(cross_warnings)

    if on_event is not None:
        _emit_collection_events(files, cross_errors, cross_warnings, on_event)

    collection.elapsed_ms = int((time.monotonic() - started) * 1000)
    logger.debug(
        "Validation finished: {} parsed, {} parse errors, {} errors, {} warnings in {}ms",
        len(collection.docs),
        len(collection.parse_errors),
        len(collection.errors),
        len(collection.warnings),
        collection.elapsed_ms,
    )
    return collection


def _validate_file(
    file_path: str,
    load: Callable[[str], TaskFileReadResult],
    validator: ValidationService,
    strict: bool,
) -> _FileOutcome:
    try:
        result = load(file_path)
    except TaskFileError as exc:
        return _FileOutcome("parse", None, [ValidationIssue("parse", exc.reason, file_path)], [])
    except Exception as exc:
        logger.exception("Unexpected error reading {}: {}", file_path, exc)
        return _FileOutcome("parse", None, [ValidationIssue("parse", f"Unexpected error: {exc}", file_path)], [])

    errors = validator.validate(result.doc).errors
    warnings = [
        ValidationIssue(notice.code, notice.message, file_path, severity=WARNING, field=notice.field)
        for notice in result.warnings
    ]
    if strict:
        errors = [*errors, *promote_warnings(warnings)]
        warnings = []
    return _FileOutcome("document", result.doc, errors, warnings)


def group_issues_by_file(issues: Sequence[ValidationIssue]) -> dict[str, list[ValidationIssue]]:
    grouped: dict[str, list[ValidationIssue]] = {}
    for issue in issues:
        grouped.setdefault(issue.file, []).append(issue)
    return grouped


def _emit_collection_events(
    files: Sequence[str],
    errors: list[ValidationIssue],
    warnings: list[ValidationIssue],
    on_event: Callable[[ValidationStreamEvent], None],
) -> None:
    errors_by_file = group_issues_by_file(errors)
    warnings_by_file = group_issues_by_file(warnings)
    index_by_file = {file_path: index for index, file_path in enumerate(files)}

    ordered = [file_path for file_path in files if file_path in errors_by_file or file_path in warnings_by_file]
    # Documents whose path is not one of the listed files go last.
    extra = sorted((set(errors_by_file) | set(warnings_by_file)) - set(index_by_file))

    for file_path in [*ordered, *extra]:
        file_errors = errors_by_file.get(file_path, [])
        on_event(
            ValidationStreamEvent(
                stage="collection",
                file=file_path,
                index=index_by_file.get(file_path, len(files)),
                errors=file_errors,
                warnings=warnings_by_file.get(file_path, []),
                ok=not file_errors,
            )
        )
