"""Tests for the task engine (task_engine/engine.py) and store (task_engine/store.py)."""

from __future__ import annotations

from pathlib import Path

import pytest
from loguru import logger

from taskplain.task_engine.dispatch import NextOptions
from taskplain.task_engine.engine import TaskEngine, build_tree
from taskplain.task_engine.store import TaskStore

from conftest import build_doc


@pytest.fixture
def engine(tmp_path: Path) -> TaskEngine:
    return TaskEngine(tmp_path)


@pytest.fixture
def log_messages():
    messages: list[str] = []
    handler_id = logger.add(lambda message: messages.append(message.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)


def _write_raw(root: Path, relative: str, text: str) -> Path:
    path = root / "tasks" / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# Store tests
# ---------------------------------------------------------------------------

class TestTaskStore:
    def test_missing_tasks_dir_is_empty(self, tmp_path: Path) -> None:
        store = TaskStore(tmp_path)
        assert store.list_task_files() == []
        loaded = store.load_all()
        assert loaded.docs == []
        assert loaded.failures == []

    def test_lists_markdown_files_sorted(self, tmp_path: Path, write_task) -> None:
        write_task("beta")
        write_task("alpha", state="idea")
        _write_raw(tmp_path, "10-ready/notes.txt", "ignored")
        files = TaskStore(tmp_path).list_task_files()
        assert [Path(f).name for f in files] == ["task-alpha.md", "task-beta.md"]

    def test_load_all_collects_failures(self, tmp_path: Path, write_task) -> None:
        write_task("good")
        bad = _write_raw(tmp_path, "10-ready/task-bad.md", "---\nid: [unclosed\n---\nbody\n")
        loaded = TaskStore(tmp_path).load_all()
        assert [doc.id for doc in loaded.docs] == ["good"]
        [failure] = loaded.failures
        assert failure.file == str(bad)
        assert "invalid YAML" in failure.reason

    def test_normalization_warnings_kept_per_file(self, tmp_path: Path, write_task) -> None:
        doc = write_task("loud")
        text = Path(doc.path).read_text(encoding="utf-8").replace("state: ready", "state: Ready")
        Path(doc.path).write_text(text, encoding="utf-8")
        loaded = TaskStore(tmp_path).load_all()
        assert list(loaded.warnings) == [doc.path]


# ---------------------------------------------------------------------------
# Engine tests
# ---------------------------------------------------------------------------

class TestValidate:
    def test_clean_project(self, engine: TaskEngine, write_task) -> None:
        write_task("epic-one", "epic", children=["story-one"])
        write_task("story-one", "story", children=["task-one"])
        write_task("task-one")
        collection = engine.validate()
        assert collection.ok
        assert collection.files_checked == 3
        assert len(collection.docs) == 3

    def test_empty_project(self, engine: TaskEngine) -> None:
        collection = engine.validate()
        assert collection.ok
        assert collection.files_checked == 0

    def test_reports_cross_document_errors(self, engine: TaskEngine, write_task) -> None:
        write_task("lonely", depends_on=["ghost"])
        collection = engine.validate()
        assert not collection.ok
        assert [issue.code for issue in collection.errors] == ["missing_dependency"]

    def test_parallel_run_streams_every_file(self, engine: TaskEngine, write_task) -> None:
        for index in range(30):
            write_task(f"t-{index:02d}")
        indexes: list[int] = []
        collection = engine.validate(
            max_concurrency=4,
            min_parallel_files=1,
            on_event=lambda event: indexes.append(event.index),
        )
        assert indexes == list(range(30))
        assert collection.ok

    def test_parse_error_is_reported(self, engine: TaskEngine, tmp_path: Path, write_task) -> None:
        write_task("fine")
        _write_raw(tmp_path, "10-ready/task-broken.md", "no front matter here\n")
        collection = engine.validate()
        assert not collection.ok
        [issue] = collection.parse_errors
        assert issue.code == "parse"
        assert "missing front matter" in issue.message


class TestNext:
    def test_picks_highest_ranked_ready_task(self, engine: TaskEngine, write_task) -> None:
        write_task("later", priority="low")
        write_task("sooner", priority="urgent")
        write_task("someday", state="idea", priority="urgent")
        result = engine.next(NextOptions())
        assert [candidate.id for candidate in result.selected] == ["sooner"]

    def test_unreadable_file_is_skipped_and_logged(
        self, engine: TaskEngine, tmp_path: Path, write_task, log_messages
    ) -> None:
        write_task("fine")
        bad = _write_raw(tmp_path, "10-ready/task-bad.md", "---\n- not a mapping\n---\n")
        result = engine.next(NextOptions(count=5))
        assert [candidate.id for candidate in result.selected] == ["fine"]
        assert any(str(bad) in message and "Skipping" in message for message in log_messages)


class TestTree:
    def test_roots_ranked_children_in_declared_order(self, engine: TaskEngine, write_task) -> None:
        write_task("slow-epic", "epic", priority="low", children=["story-b", "story-a"])
        write_task("hot-epic", "epic", priority="urgent")
        write_task("story-a", "story", priority="urgent")
        write_task("story-b", "story", priority="low")
        roots = engine.tree()
        assert [node.doc.id for node in roots] == ["hot-epic", "slow-epic"]
        assert [child.doc.id for child in roots[1].children] == ["story-b", "story-a"]

    def test_to_dict(self, engine: TaskEngine, write_task) -> None:
        write_task("story", "story", children=["leaf"])
        write_task("leaf", title="The Leaf")
        [root] = engine.tree()
        assert root.to_dict() == {
            "id": "story",
            "title": "Story",
            "kind": "story",
            "state": "ready",
            "children": [
                {"id": "leaf", "title": "The Leaf", "kind": "task", "state": "ready", "children": []},
            ],
        }

    def test_cycle_members_are_not_roots(self, engine: TaskEngine, write_task) -> None:
        write_task("a", "story", children=["b"])
        write_task("b", "story", children=["a"])
        write_task("c")
        assert [node.doc.id for node in engine.tree()] == ["c"]


class TestBuildTree:
    def test_long_chain_builds_without_recursion(self) -> None:
        depth = 3000
        docs = [build_doc(f"n-{level}", "story", children=[f"n-{level + 1}"]) for level in range(depth)]
        docs.append(build_doc(f"n-{depth}"))

        [root] = build_tree(docs)
        node, length = root, 1
        while node.children:
            [node] = node.children
            length += 1
        assert length == depth + 1
        assert node.doc.id == f"n-{depth}"

        payload, length = root.to_dict(), 1
        while payload["children"]:
            [payload] = payload["children"]
            length += 1
        assert length == depth + 1

    def test_children_keep_declared_order(self) -> None:
        docs = [
            build_doc("story", "story", children=["c", "a", "b"]),
            build_doc("a", priority="urgent"),
            build_doc("b"),
            build_doc("c", priority="none"),
        ]
        [root] = build_tree(docs)
        assert [child["id"] for child in root.to_dict()["children"]] == ["c", "a", "b"]
