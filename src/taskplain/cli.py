from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from pathlib import Path
from typing import Any, Optional, TypeVar

from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from .config import load_taskplain_config, resolve_next_settings, resolve_validate_settings
from .constants import DEFAULT_LOG_LEVEL
from .exceptions import ConfigError
from .logging_utils import configure_logging, summarize_event
from .task_engine.dispatch import NextOptions, NextResult, next_result_payload
from .task_engine.engine import TaskEngine, TreeNode
from .task_engine.model import IsolationScope, TaskAmbiguity, TaskKind, TaskSize
from .task_engine.reporter import ValidationStreamEvent

E = TypeVar("E", bound=Enum)

_STATE_STYLES = {
    "idea": "dim",
    "ready": "cyan",
    "in-progress": "yellow",
    "done": "green",
    "canceled": "red",
}


def _resolve_project_dir(project_dir: Optional[str]) -> Path:
    return Path(project_dir).expanduser().resolve() if project_dir else Path.cwd().resolve()


def _load_config(project_dir: Path) -> dict[str, Any]:
    config, err = load_taskplain_config(project_dir)
    if err:
        raise ConfigError(err)
    return config


def _parse_enum_list(value: Optional[str], enum_cls: type[E], flag: str) -> Optional[frozenset[E]]:
    if value is None:
        return None
    items = [part.strip().lower() for part in value.split(",") if part.strip()]
    if not items:
        raise ValueError(f"{flag} requires at least one value")
    return frozenset(_parse_enum(item, enum_cls, flag) for item in items)


def _parse_enum(value: str, enum_cls: type[E], flag: str) -> E:
    try:
        return enum_cls(value.strip().lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValueError(f"{flag} must be one of: {allowed} (got '{value}')") from None


# ---------------------------------------------------------------------------
# validate
# ---------------------------------------------------------------------------

def _print_event(console: Console, event: ValidationStreamEvent, project_dir: Path) -> None:
    file_label = escape(_relative(event.file, project_dir))
    if event.ok and not event.warnings:
        if event.stage == "document":
            console.print(f"[green]✓[/green] {file_label}")
        return
    marker = "[red]✗[/red]" if not event.ok else "[yellow]![/yellow]"
    stage = "" if event.stage == "document" else f" [dim]({event.stage})[/dim]"
    console.print(f"{marker} {file_label}{stage}")
    for issue in event.errors:
        console.print(f"    [red]{issue.code}[/red] {escape(issue.message)}")
    for issue in event.warnings:
        console.print(f"    [yellow]{issue.code}[/yellow] {escape(issue.message)}")


def _relative(file_path: str, project_dir: Path) -> str:
    try:
        return str(Path(file_path).relative_to(project_dir))
    except ValueError:
        return file_path


def _validate(args: argparse.Namespace) -> int:
    project_dir = _resolve_project_dir(args.project_dir)
    settings = resolve_validate_settings(
        _load_config(project_dir),
        concurrency=args.concurrency,
        min_parallel=args.min_parallel,
        strict=True if args.strict else None,
    )
    engine = TaskEngine(project_dir)
    console = Console()
    events: list[ValidationStreamEvent] = []

    def on_event(event: ValidationStreamEvent) -> None:
        logger.trace("validation event {}", summarize_event(event))
        if args.output == "json":
            events.append(event)
        else:
            _print_event(console, event, project_dir)

    collection = engine.validate(
        max_concurrency=settings.concurrency,
        min_parallel_files=settings.min_parallel,
        strict=settings.strict,
        on_event=on_event,
    )
    summary = collection.summary()

    if args.output == "json":
        payload = {
            "ok": summary.ok,
            "strict": settings.strict,
            "summary": vars(summary),
            "events": [
                {
                    "stage": event.stage,
                    "file": event.file,
                    "index": event.index,
                    "ok": event.ok,
                    "errors": [issue.to_dict() for issue in event.errors],
                    "warnings": [issue.to_dict() for issue in event.warnings],
                }
                for event in events
            ],
        }
        sys.stdout.write(json.dumps(payload, indent=2) + "\n")
    else:
        style = "green" if summary.ok else "red"
        console.print(
            f"[{style}]{'OK' if summary.ok else 'FAILED'}[/{style}] "
            f"{summary.files_checked} files, {summary.docs_parsed} parsed, "
            f"{summary.parse_errors} parse errors, {summary.errors} errors, "
            f"{summary.warnings} warnings [dim]({summary.elapsed_ms}ms)[/dim]"
        )
    return 0 if summary.ok else 1


# ---------------------------------------------------------------------------
# next
# ---------------------------------------------------------------------------

def _next(args: argparse.Namespace) -> int:
    project_dir = _resolve_project_dir(args.project_dir)
    settings = resolve_next_settings(
        _load_config(project_dir),
        count=args.count,
        parallelize=args.parallelize,
        executor=args.executor,
        include_blocked=True if args.include_blocked else None,
    )
    kinds = _parse_enum_list(args.kinds, TaskKind, "--kinds")
    options = NextOptions(
        count=settings.count,
        kinds=kinds or frozenset({TaskKind.TASK}),
        executor_preference=settings.executor,
        max_size=_parse_enum(args.max_size, TaskSize, "--max-size") if args.max_size else None,
        ambiguity=_parse_enum_list(args.ambiguity, TaskAmbiguity, "--ambiguity"),
        isolation=_parse_enum_list(args.isolation, IsolationScope, "--isolation"),
        parent=args.parent.strip() if args.parent else None,
        parallelize=settings.parallelize,
        include_root_without_kind=kinds is None,
        include_blocked=settings.include_blocked,
    )
    result = TaskEngine(project_dir).next(options)

    if args.output == "ids":
        for candidate in result.selected:
            sys.stdout.write(f"{candidate.id}\n")
    elif args.output == "json":
        sys.stdout.write(json.dumps(next_result_payload(result, options), indent=2) + "\n")
    else:
        _print_next_table(Console(), result)
    return 0


def _print_next_table(console: Console, result: NextResult) -> None:
    if not result.candidates:
        console.print("[dim]No ready tasks match the provided filters.[/dim]")
        return
    selected_ids = {candidate.id for candidate in result.selected}
    table = Table(show_header=True)
    for column in ("RANK", "ID", "PRIO", "SIZE", "EXEC", "AMB", "ISO", "EPIC", "BLOCKED", "TOUCHES", "SEL"):
        table.add_column(column, style="cyan" if column == "ID" else None)
    for rank, candidate in enumerate(result.candidates, start=1):
        meta = candidate.doc.meta
        table.add_row(
            str(rank),
            candidate.id,
            meta.priority.value.upper(),
            meta.size.value.upper(),
            meta.executor.value.upper(),
            meta.ambiguity.value.upper(),
            meta.isolation.value.upper(),
            candidate.root_epic_id or "-",
            escape(meta.blocked or "blocked") if meta.blocked is not None else "-",
            escape(", ".join(candidate.touches)) or "-",
            "[green]✓[/green]" if candidate.id in selected_ids else "",
        )
    console.print(table)
    if result.skipped_due_to_conflicts:
        console.print("\n[bold]Conflicts[/bold]")
        for skip in result.skipped_due_to_conflicts:
            console.print(f"  [cyan]{skip.candidate.id}[/cyan] [dim]conflicts with [{', '.join(skip.conflicts_with)}][/dim]")


# ---------------------------------------------------------------------------
# tree
# ---------------------------------------------------------------------------

def _tree_label(node: TreeNode) -> str:
    state = node.doc.state.value
    style = _STATE_STYLES.get(state, "white")
    return (
        f"[cyan]{node.doc.id}[/cyan] {escape(node.doc.title)} "
        f"[dim]{node.doc.kind.value}[/dim] [{style}]{state}[/{style}]"
    )


def _add_tree_node(parent: Tree, node: TreeNode) -> None:
    stack = [(parent, node)]
    while stack:
        target, current = stack.pop()
        branch = target.add(_tree_label(current))
        # Reversed so siblings pop in declared order.
        stack.extend((branch, child) for child in reversed(current.children))


def _tree(args: argparse.Namespace) -> int:
    project_dir = _resolve_project_dir(args.project_dir)
    roots = TaskEngine(project_dir).tree()
    if args.output == "json":
        sys.stdout.write(json.dumps({"roots": [root.to_dict() for root in roots]}, indent=2) + "\n")
        return 0
    tree = Tree("[bold]Tasks[/bold]")
    for root in roots:
        _add_tree_node(tree, root)
    Console().print(tree)
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="taskplain", description="Validate and dispatch markdown task files")
    parser.add_argument("--project-dir", default=None, help="Repository root (default: current working directory)")
    parser.add_argument("--log-level", default=DEFAULT_LOG_LEVEL, help="Log level (default: INFO)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser("validate", help="Validate every task file")
    validate.add_argument("--output", default="human", choices=["human", "json"])
    validate.add_argument("--concurrency", type=int, default=None, help="Worker pool size (default: CPU count)")
    validate.add_argument(
        "--min-parallel", type=int, default=None, help="Validate inline below this many files (default: 25)"
    )
    validate.add_argument("--strict", action="store_true", help="Treat warnings as errors")
    validate.set_defaults(func=_validate)

    nxt = subparsers.add_parser("next", help="Rank ready tasks and pick the next ones")
    nxt.add_argument("--count", type=int, default=None)
    nxt.add_argument("--parallelize", type=int, default=None, help="Select up to N non-conflicting tasks")
    nxt.add_argument("--kinds", default=None, help="Comma-separated kinds (default: task)")
    nxt.add_argument("--executor", default=None, help="Preferred executor tier")
    nxt.add_argument("--max-size", default=None)
    nxt.add_argument("--ambiguity", default=None, help="Comma-separated ambiguity levels")
    nxt.add_argument("--isolation", default=None, help="Comma-separated isolation scopes")
    nxt.add_argument("--parent", default=None, help="Restrict to a subtree")
    nxt.add_argument("--include-blocked", action="store_true")
    nxt.add_argument("--output", default="ids", choices=["ids", "json", "human"])
    nxt.set_defaults(func=_next)

    tree = subparsers.add_parser("tree", help="Show the epic/story/task hierarchy")
    tree.add_argument("--output", default="human", choices=["human", "json"])
    tree.set_defaults(func=_tree)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, "func", None)
    if handler is None:
        parser.print_help()
        return 2
    try:
        configure_logging(args.log_level)
        return int(handler(args) or 0)
    except (ConfigError, ValueError) as exc:
        sys.stderr.write(f"error: {exc}\n")
        return 2


if __name__ == "__main__":
    sys.exit(main())
