"""Tests for logging_utils module."""

from __future__ import annotations

import json
import sys

import pytest
from loguru import logger

from taskplain.logging_utils import configure_logging, pretty, summarize_event
from taskplain.task_engine.reporter import ValidationStreamEvent
from taskplain.task_engine.validation import ValidationIssue


class TestSummarizeEvent:
    """Test summarize_event function."""

    def test_none_event(self):
        assert summarize_event(None) == {"event": None}

    def test_clean_event(self):
        event = ValidationStreamEvent(
            stage="document", file="tasks/10-ready/task-a.md", index=0, errors=[], warnings=[], ok=True
        )
        assert summarize_event(event) == {
            "stage": "document",
            "file": "tasks/10-ready/task-a.md",
            "index": 0,
            "ok": True,
            "errors_n": 0,
            "warnings_n": 0,
        }

    def test_issue_codes_capped(self):
        errors = [ValidationIssue(f"code_{n}", f"message {n}", "f") for n in range(5)]
        warnings = [ValidationIssue("state_normalized", "w", "f", severity="warning")]
        event = ValidationStreamEvent(stage="collection", file="f", index=3, errors=errors, warnings=warnings, ok=False)

        result = summarize_event(event, max_issues=2)

        assert result["errors_n"] == 5
        assert result["error_codes"] == ["code_0", "code_1"]
        assert result["first_error"] == "message 0"
        assert result["warning_codes"] == ["state_normalized"]

    def test_long_first_error_truncated(self):
        event = ValidationStreamEvent(
            stage="parse", file="f", index=0, errors=[ValidationIssue("parse", "x" * 500, "f")], warnings=[], ok=False
        )
        first = summarize_event(event)["first_error"]
        assert len(first) == 241
        assert first.endswith("…")


class TestPretty:
    """Test pretty function."""

    def test_dict(self):
        data = {"key": "value", "number": 42}
        assert json.loads(pretty(data)) == data

    def test_non_serializable_uses_str(self):
        result = pretty({"obj": object()})
        assert "<object object" in result

    def test_custom_indent(self):
        assert pretty({"a": 1}, indent=4) == '{\n    "a": 1\n}'

    def test_circular_reference_falls_back(self):
        data: dict = {}
        data["self"] = data
        assert pretty(data) == str(data)


class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def _restore(self):
        yield
        logger.remove()
        logger.add(sys.stderr)

    def test_level_filters_messages(self, capsys):
        configure_logging("warning")
        logger.info("hidden message")
        logger.warning("visible message")
        err = capsys.readouterr().err
        assert "visible message" in err
        assert "hidden message" not in err

    def test_unknown_level_raises(self):
        with pytest.raises(ValueError):
            configure_logging("LOUD")
