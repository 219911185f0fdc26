"""Tests for the streaming validation reporter."""

from __future__ import annotations

import random
import threading
import time

import pytest

from taskplain.exceptions import TaskFileError
from taskplain.task_engine import reporter
from taskplain.task_engine.normalization import NormalizationWarning
from taskplain.task_engine.reporter import (
    ValidationStreamEvent,
    collect_validation_issues,
    effective_concurrency,
    group_issues_by_file,
)
from taskplain.task_engine.task_file import TaskFileReadResult
from taskplain.task_engine.validation import ValidationIssue, ValidationService

from conftest import build_doc


def _loader(results: dict, *, delays: dict | None = None):
    def load(path: str) -> TaskFileReadResult:
        if delays:
            time.sleep(delays.get(path, 0))
        outcome = results[path]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    return load


class TestEffectiveConcurrency:
    def test_small_sets_run_inline(self) -> None:
        assert effective_concurrency(10, max_concurrency=8, min_parallel_files=25) == 1

    def test_capped_by_file_count(self) -> None:
        assert effective_concurrency(30, max_concurrency=64, min_parallel_files=25) == 30
        assert effective_concurrency(30, max_concurrency=4, min_parallel_files=25) == 4

    def test_invalid_values(self) -> None:
        with pytest.raises(ValueError):
            effective_concurrency(30, max_concurrency=0)
        with pytest.raises(ValueError):
            effective_concurrency(30, min_parallel_files=-1)


class TestCollectValidationIssues:
    def test_events_emitted_in_file_order_despite_random_latency(self) -> None:
        rng = random.Random(1234)
        docs = [build_doc(f"t-{index:02d}") for index in range(50)]
        results = {doc.path: TaskFileReadResult(doc=doc) for doc in docs}
        delays = {doc.path: rng.uniform(0, 0.01) for doc in docs}
        files = [doc.path for doc in docs]

        seen: list[int] = []
        threads: set[int] = set()

        def on_event(event: ValidationStreamEvent) -> None:
            threads.add(threading.get_ident())
            if event.stage == "document":
                seen.append(event.index)

        collection = collect_validation_issues(
            files,
            _loader(results, delays=delays),
            ValidationService(),
            max_concurrency=8,
            min_parallel_files=1,
            on_event=on_event,
        )

        assert seen == list(range(50))
        # Emission happens on the calling thread only.
        assert threads == {threading.get_ident()}
        assert [doc.id for doc in collection.docs] == [doc.id for doc in docs]
        assert collection.ok

    def test_parse_failure_does_not_stop_other_files(self) -> None:
        docs = [build_doc(f"t-{index}") for index in range(4)]
        files = [doc.path for doc in docs]
        results: dict = {doc.path: TaskFileReadResult(doc=doc) for doc in docs}
        results[files[1]] = TaskFileError(files[1], "invalid YAML front matter: boom")

        events: list[ValidationStreamEvent] = []
        collection = collect_validation_issues(
            files,
            _loader(results),
            ValidationService(),
            max_concurrency=4,
            min_parallel_files=0,
            on_event=events.append,
        )

        assert [(event.index, event.stage, event.ok) for event in events] == [
            (0, "document", True),
            (1, "parse", False),
            (2, "document", True),
            (3, "document", True),
        ]
        assert [issue.code for issue in events[1].errors] == ["parse"]
        assert len(collection.docs) == 3
        assert len(collection.parse_errors) == 1
        summary = collection.summary()
        assert summary.files_checked == 4
        assert summary.docs_parsed == 3
        assert summary.parse_errors == 1
        assert summary.ok is False

    def test_unexpected_loader_error_is_reported_as_parse(self) -> None:
        doc = build_doc("only")
        collection = collect_validation_issues(
            [doc.path], _loader({doc.path: RuntimeError("disk on fire")}), ValidationService()
        )
        [issue] = collection.parse_errors
        assert issue.code == "parse"
        assert "disk on fire" in issue.message

    def test_collection_events_grouped_in_file_order(self) -> None:
        story = build_doc("s", "story", children=["t", "ghost"])
        task = build_doc("t", depends_on=["nope"])
        orphan = build_doc("orphan", blocks=["missing"])
        docs = [story, task, orphan]
        files = [doc.path for doc in docs]
        results = {doc.path: TaskFileReadResult(doc=doc) for doc in docs}

        events: list[ValidationStreamEvent] = []
        collection = collect_validation_issues(
            files, _loader(results), ValidationService(), on_event=events.append
        )

        collection_events = [event for event in events if event.stage == "collection"]
        assert [(event.file, event.index) for event in collection_events] == [
            (story.path, 0),
            (task.path, 1),
            (orphan.path, 2),
        ]
        assert [issue.code for issue in collection_events[0].errors] == ["missing_child_reference"]
        assert [issue.code for issue in collection_events[1].errors] == ["missing_dependency"]
        assert [issue.code for issue in collection_events[2].errors] == ["missing_block_target"]
        assert len(collection.errors) == 3
        assert not collection.ok

    def test_normalization_notices_become_document_warnings(self) -> None:
        doc = build_doc("alpha")
        notice = NormalizationWarning("state_normalized", "state normalized", "state")
        results = {doc.path: TaskFileReadResult(doc=doc, warnings=[notice])}

        events: list[ValidationStreamEvent] = []
        collection = collect_validation_issues([doc.path], _loader(results), ValidationService(), on_event=events.append)
        [event] = events
        assert event.ok
        assert [(issue.code, issue.severity, issue.field) for issue in event.warnings] == [
            ("state_normalized", "warning", "state")
        ]
        assert collection.ok
        assert collection.summary().warnings == 1

    def test_strict_mode_fails_on_warnings(self) -> None:
        parent = build_doc("s", "story", "canceled", children=["t"])
        child = build_doc("t")
        docs = [parent, child]
        results = {doc.path: TaskFileReadResult(doc=doc) for doc in docs}

        relaxed = collect_validation_issues([d.path for d in docs], _loader(results), ValidationService())
        assert relaxed.ok
        assert [issue.code for issue in relaxed.warnings] == ["inconsistent_cancellation"]

        strict = collect_validation_issues([d.path for d in docs], _loader(results), ValidationService(), strict=True)
        assert not strict.ok
        assert strict.warnings == []
        assert [issue.code for issue in strict.errors] == ["inconsistent_cancellation"]

    def test_missing_result_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        doc = build_doc("only")
        monkeypatch.setattr(reporter, "_validate_file", lambda *args: None)
        with pytest.raises(RuntimeError, match="no validation result recorded"):
            collect_validation_issues(
                [doc.path], _loader({doc.path: TaskFileReadResult(doc=doc)}), ValidationService()
            )


def test_group_issues_by_file() -> None:
    issues = [
        ValidationIssue("a", "m", "f1"),
        ValidationIssue("b", "m", "f2"),
        ValidationIssue("c", "m", "f1"),
    ]
    grouped = group_issues_by_file(issues)
    assert list(grouped) == ["f1", "f2"]
    assert [issue.code for issue in grouped["f1"]] == ["a", "c"]
