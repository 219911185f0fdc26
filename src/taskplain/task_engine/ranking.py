"""Ranking context, readiness checks, and the task comparator.

A :class:`RankingContext` is a read-only snapshot built once per invocation
from the loaded document set.  It is safe to share across every ranking and
selection call made during that invocation and is discarded afterwards.
"""

from __future__ import annotations

import functools
from dataclasses import asdict, dataclass
from types import MappingProxyType
from typing import Any, Mapping, Optional, Sequence

from ..utils import _timestamp_ms
from .hierarchy import build_hierarchy_index
from .model import ExecutorTier, IsolationScope, TaskDoc, TaskKind, TaskState

_READY_STATES = frozenset({TaskState.READY})
_READY_STATES_WITH_IDEA = frozenset({TaskState.IDEA, TaskState.READY})

# Plain tasks before stories before epics.
_KIND_WEIGHT = {TaskKind.TASK: 0, TaskKind.STORY: 1, TaskKind.EPIC: 2}

# Missing from a declared order sorts last.
_UNORDERED = float("inf")


@dataclass(frozen=True)
class RankingContext:
    by_id: Mapping[str, TaskDoc]
    parent_by_id: Mapping[str, str]
    root_epic_by_id: Mapping[str, Optional[str]]
    epic_in_flight: frozenset[str]
    child_order_index: Mapping[str, Mapping[str, int]]

    def root_epic(self, task_id: str) -> Optional[str]:
        return self.root_epic_by_id.get(task_id)


@dataclass(frozen=True)
class ReadinessResult:
    ready: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class ScoreBreakdown:
    """Per-criterion values used by :func:`compare_tasks`.

    Higher ``priority`` and ``isolation`` win; every other number prefers the
    lower value.
    """

    priority: int
    epic_in_flight: bool
    size: int
    executor_index: int
    executor_distance: int
    ambiguity: int
    isolation: int
    updated_at_ms: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def build_ranking_context(tasks: Sequence[TaskDoc]) -> RankingContext:
    by_id: dict[str, TaskDoc] = {}
    for doc in tasks:
        by_id.setdefault(doc.id, doc)

    index = build_hierarchy_index(tasks).index
    root_epic_by_id: dict[str, Optional[str]] = {}
    for doc in tasks:
        _resolve_root_epic(doc.id, by_id, index.parent_by_id, root_epic_by_id)

    epic_in_flight: set[str] = set()
    for doc in tasks:
        if doc.state != TaskState.IN_PROGRESS:
            continue
        root = root_epic_by_id.get(doc.id)
        if root:
            epic_in_flight.add(root)

    return RankingContext(
        by_id=MappingProxyType(by_id),
        parent_by_id=index.parent_by_id,
        root_epic_by_id=MappingProxyType(root_epic_by_id),
        epic_in_flight=frozenset(epic_in_flight),
        child_order_index=index.order_index,
    )


def _resolve_root_epic(
    task_id: str,
    by_id: Mapping[str, TaskDoc],
    parent_by_id: Mapping[str, str],
    memo: dict[str, Optional[str]],
) -> Optional[str]:
    """Walk up from *task_id* to its nearest epic ancestor, memoizing the path.

    Iterative so that cyclic indexes terminate; a cycle with no epic on it
    resolves to ``None``.
    """
    path: list[str] = []
    seen: set[str] = set()
    current: Optional[str] = task_id
    root: Optional[str] = None
    while current is not None:
        if current in memo:
            root = memo[current]
            break
        if current in seen:
            break
        seen.add(current)
        path.append(current)
        doc = by_id.get(current)
        if doc is None:
            break
        if doc.kind == TaskKind.EPIC:
            root = doc.id
            break
        current = parent_by_id.get(current)
    for visited in path:
        memo[visited] = root
    return root


def is_task_ready(
    doc: TaskDoc,
    context: RankingContext,
    *,
    allow_blocked: bool = False,
    include_idea: bool = False,
) -> ReadinessResult:
    allowed = _READY_STATES_WITH_IDEA if include_idea else _READY_STATES
    if doc.state not in allowed:
        return ReadinessResult(False, f"state={doc.state.value}")

    blocked = doc.meta.blocked
    if not allow_blocked and isinstance(blocked, str):
        message = blocked.strip()
        return ReadinessResult(False, f"blocked:{message}" if message else "blocked")

    for dep_id in doc.meta.depends_on:
        dependency = context.by_id.get(dep_id)
        if dependency is None:
            return ReadinessResult(False, f"missing dependency {dep_id}")
        if dependency.state != TaskState.DONE:
            return ReadinessResult(False, f"dependency {dep_id} is {dependency.state.value}")

    return ReadinessResult(True)


def compute_score_breakdown(
    doc: TaskDoc,
    context: RankingContext,
    executor_preference: Optional[ExecutorTier] = None,
) -> ScoreBreakdown:
    meta = doc.meta
    root = context.root_epic(doc.id)
    executor_index = meta.executor.rank
    if executor_preference is None:
        executor_distance = executor_index
    else:
        executor_distance = abs(executor_index - executor_preference.rank)
    # isolated scores highest
    isolation = len(IsolationScope) - 1 - meta.isolation.rank
    return ScoreBreakdown(
        priority=meta.priority.rank,
        epic_in_flight=bool(root) and root in context.epic_in_flight,
        size=meta.size.rank,
        executor_index=executor_index,
        executor_distance=executor_distance,
        ambiguity=meta.ambiguity.rank,
        isolation=isolation,
        updated_at_ms=_timestamp_ms(meta.updated_at),
    )


def _cmp(a: Any, b: Any) -> int:
    return (a > b) - (a < b)


def _sign(value: int) -> int:
    return _cmp(value, 0)


def _declared_order(a: TaskDoc, b: TaskDoc, context: RankingContext) -> int:
    parent_a = context.parent_by_id.get(a.id)
    if not parent_a or parent_a != context.parent_by_id.get(b.id):
        return 0
    order = context.child_order_index.get(parent_a)
    if not order:
        return 0
    return _cmp(order.get(a.id, _UNORDERED), order.get(b.id, _UNORDERED))


def compare_tasks(
    a: TaskDoc,
    b: TaskDoc,
    context: RankingContext,
    executor_preference: Optional[ExecutorTier] = None,
) -> int:
    """Three-way comparison; negative means *a* should be dispatched first.

    Siblings under a parent that declares an order keep that order.  All
    other pairs fall through :func:`_compare_heuristics`.  Use
    :func:`sort_tasks` to order more than two tasks: pairwise results are not
    transitive once declared order and heuristics mix.
    """
    declared = _declared_order(a, b, context)
    if declared:
        return declared
    return _compare_heuristics(a, b, context, executor_preference)


def _compare_heuristics(
    a: TaskDoc,
    b: TaskDoc,
    context: RankingContext,
    executor_preference: Optional[ExecutorTier],
) -> int:
    score_a = compute_score_breakdown(a, context, executor_preference)
    score_b = compute_score_breakdown(b, context, executor_preference)

    if executor_preference is not None and score_a.executor_distance != score_b.executor_distance:
        return _cmp(score_a.executor_distance, score_b.executor_distance)

    if score_a.priority != score_b.priority:
        isolation_gap = score_a.isolation - score_b.isolation
        priority_gap = score_a.priority - score_b.priority
        # A small priority gap yields to a larger opposite isolation gap.
        if (
            isolation_gap != 0
            and _sign(isolation_gap) != _sign(priority_gap)
            and abs(isolation_gap) >= abs(priority_gap)
        ):
            return _cmp(score_b.isolation, score_a.isolation)
        return _cmp(score_b.priority, score_a.priority)

    if score_a.epic_in_flight != score_b.epic_in_flight:
        return -1 if score_a.epic_in_flight else 1

    if score_a.size != score_b.size:
        return _cmp(score_a.size, score_b.size)

    kind_a = _KIND_WEIGHT[a.kind]
    kind_b = _KIND_WEIGHT[b.kind]
    if kind_a != kind_b:
        return _cmp(kind_a, kind_b)

    if score_a.isolation != score_b.isolation:
        return _cmp(score_b.isolation, score_a.isolation)

    if score_a.executor_distance != score_b.executor_distance:
        return _cmp(score_a.executor_distance, score_b.executor_distance)

    if score_a.executor_index != score_b.executor_index:
        return _cmp(score_a.executor_index, score_b.executor_index)

    if score_a.ambiguity != score_b.ambiguity:
        return _cmp(score_a.ambiguity, score_b.ambiguity)

    if score_a.updated_at_ms != score_b.updated_at_ms:
        return _cmp(score_a.updated_at_ms, score_b.updated_at_ms)

    title_order = _cmp(a.title.lower(), b.title.lower())
    if title_order:
        return title_order
    return _cmp(a.id, b.id)


def sort_tasks(
    tasks: Sequence[TaskDoc],
    context: RankingContext,
    executor_preference: Optional[ExecutorTier] = None,
) -> list[TaskDoc]:
    """Return *tasks* in dispatch order.  The input is not modified.

    Tasks are ranked by the heuristics alone, then every group of siblings
    whose parent declares an order is rewritten in declared order inside the
    positions the group already holds.  The heuristic sort starts from a fixed
    id order, so the result never depends on how *tasks* was listed.
    """
    key = functools.cmp_to_key(
        lambda a, b: _compare_heuristics(a, b, context, executor_preference)
    )
    ordered = sorted(sorted(tasks, key=lambda doc: (doc.id, doc.path)), key=key)
    return _restore_declared_order(ordered, context)


def _restore_declared_order(ordered: list[TaskDoc], context: RankingContext) -> list[TaskDoc]:
    positions_by_parent: dict[str, list[int]] = {}
    for position, doc in enumerate(ordered):
        parent_id = context.parent_by_id.get(doc.id)
        if parent_id and context.child_order_index.get(parent_id):
            positions_by_parent.setdefault(parent_id, []).append(position)

    result = list(ordered)
    for parent_id, positions in positions_by_parent.items():
        order = context.child_order_index[parent_id]
        siblings = sorted(
            (ordered[position] for position in positions),
            key=lambda doc: order.get(doc.id, _UNORDERED),
        )
        for position, doc in zip(positions, siblings):
            result[position] = doc
    return result
