"""Pick the next task(s) to dispatch.

:class:`NextService` filters the ready pool, orders it with
:func:`~.ranking.sort_tasks`, and optionally packs a set of candidates
whose ``touches`` globs do not overlap so they can run in parallel.

The packer is a single greedy pass over the ranked list: a candidate is taken
when it conflicts with nothing already taken, otherwise it is recorded as
skipped together with the ids it collides with.  It never backtracks.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from loguru import logger

from ..constants import (
    DEFAULT_NEXT_COUNT,
    GLOBAL_TOUCH_TOKEN,
    RANKING_RATIONALE,
    RANKING_RULES_VERSION,
)
from .model import ExecutorTier, IsolationScope, TaskAmbiguity, TaskDoc, TaskKind, TaskSize
from .ranking import (
    RankingContext,
    ScoreBreakdown,
    build_ranking_context,
    compute_score_breakdown,
    is_task_ready,
    sort_tasks,
)

_DOUBLE_STAR_RE = re.compile(r"\*\*")
_TRAILING_STAR_RE = re.compile(r"\*+$")
_SLASHES_RE = re.compile(r"/+")


@dataclass
class NextOptions:
    count: int = DEFAULT_NEXT_COUNT
    kinds: frozenset[TaskKind] = frozenset({TaskKind.TASK})
    executor_preference: Optional[ExecutorTier] = None
    max_size: Optional[TaskSize] = None
    ambiguity: Optional[frozenset[TaskAmbiguity]] = None
    isolation: Optional[frozenset[IsolationScope]] = None
    parent: Optional[str] = None
    parallelize: Optional[int] = None
    # Roots of any kind are eligible unless the caller chose kinds explicitly.
    include_root_without_kind: bool = False
    include_blocked: bool = False

    def __post_init__(self) -> None:
        if self.count < 1:
            raise ValueError("count must be a positive integer")
        if self.parallelize is not None and self.parallelize < 1:
            raise ValueError("parallelize must be a positive integer")
        if not self.kinds:
            raise ValueError("kinds must not be empty")


@dataclass(frozen=True)
class RankedCandidate:
    doc: TaskDoc
    root_epic_id: Optional[str]
    epic_in_flight: bool
    score: ScoreBreakdown
    touch_tokens: tuple[str, ...]
    touches: tuple[str, ...]

    @property
    def id(self) -> str:
        return self.doc.id


@dataclass(frozen=True)
class ConflictSkip:
    candidate: RankedCandidate
    conflicts_with: list[str]


@dataclass
class NextResult:
    candidates: list[RankedCandidate] = field(default_factory=list)
    selected: list[RankedCandidate] = field(default_factory=list)
    skipped_due_to_conflicts: list[ConflictSkip] = field(default_factory=list)


class NextService:
    """Ranking and selection over one loaded document set."""

    def __init__(self, tasks: Sequence[TaskDoc], context: Optional[RankingContext] = None) -> None:
        self.tasks = list(tasks)
        self.context = context if context is not None else build_ranking_context(self.tasks)

    def evaluate(self, options: NextOptions) -> NextResult:
        ranked = self.rank(options)
        skipped: list[ConflictSkip] = []
        if options.parallelize:
            selected, skipped = select_parallel_safe(ranked, options.parallelize)
        else:
            selected = ranked[: options.count]

        # Selected and skipped entries all lie in the examined prefix of the ranking.
        examined = len(selected) + len(skipped)
        limit = max(options.count, options.parallelize or 0)
        candidates = ranked[: max(limit, examined)]
        logger.debug(
            "Ranked {} eligible task(s); selected {}, skipped {} on conflicts",
            len(ranked),
            len(selected),
            len(skipped),
        )
        return NextResult(candidates=candidates, selected=selected, skipped_due_to_conflicts=skipped)

    def eligible(self, options: NextOptions) -> list[TaskDoc]:
        """Ready tasks that pass every filter in *options*, unordered."""
        size_limit = options.max_size.rank if options.max_size is not None else None
        result: list[TaskDoc] = []
        for doc in self.tasks:
            has_parent = self.context.parent_by_id.get(doc.id) is not None
            if doc.kind not in options.kinds and (has_parent or not options.include_root_without_kind):
                continue
            if not is_task_ready(doc, self.context, allow_blocked=options.include_blocked).ready:
                continue
            if size_limit is not None and doc.meta.size.rank > size_limit:
                continue
            if options.ambiguity and doc.meta.ambiguity not in options.ambiguity:
                continue
            if options.isolation and doc.meta.isolation not in options.isolation:
                continue
            if options.parent and not self.matches_parent_filter(doc, options.parent):
                continue
            result.append(doc)
        return result

    def rank(self, options: NextOptions) -> list[RankedCandidate]:
        ordered = sort_tasks(self.eligible(options), self.context, options.executor_preference)
        ranked: list[RankedCandidate] = []
        for doc in ordered:
            root = self.context.root_epic(doc.id)
            ranked.append(
                RankedCandidate(
                    doc=doc,
                    root_epic_id=root,
                    epic_in_flight=bool(root) and root in self.context.epic_in_flight,
                    score=compute_score_breakdown(doc, self.context, options.executor_preference),
                    touch_tokens=tuple(build_touch_tokens(doc)),
                    touches=tuple(doc.meta.touches),
                )
            )
        return ranked

    def matches_parent_filter(self, doc: TaskDoc, parent_id: str) -> bool:
        """True when *doc* is *parent_id* itself or one of its descendants."""
        if doc.id == parent_id:
            return True
        seen = {doc.id}
        current = self.context.parent_by_id.get(doc.id)
        while current is not None and current not in seen:
            if current == parent_id:
                return True
            seen.add(current)
            current = self.context.parent_by_id.get(current)
        return False


# ---------------------------------------------------------------------------
# Conflict packing
# ---------------------------------------------------------------------------

def select_parallel_safe(
    candidates: Sequence[RankedCandidate],
    limit: int,
) -> tuple[list[RankedCandidate], list[ConflictSkip]]:
    """Greedily take up to *limit* mutually non-conflicting candidates, in order."""
    selected: list[RankedCandidate] = []
    skipped: list[ConflictSkip] = []
    for candidate in candidates:
        if len(selected) >= limit:
            break
        conflicts = find_conflicts(candidate, selected)
        if conflicts:
            skipped.append(ConflictSkip(candidate=candidate, conflicts_with=conflicts))
            continue
        selected.append(candidate)
    return selected, skipped


def find_conflicts(candidate: RankedCandidate, selected: Sequence[RankedCandidate]) -> list[str]:
    if not candidate.touch_tokens:
        return []
    return [
        existing.id
        for existing in selected
        if patterns_overlap(candidate.touch_tokens, existing.touch_tokens)
    ]


def normalize_touch_pattern(pattern: str) -> str:
    normalized = _DOUBLE_STAR_RE.sub("*", pattern.strip())
    normalized = _TRAILING_STAR_RE.sub("", normalized)
    normalized = _SLASHES_RE.sub("/", normalized)
    if normalized.endswith("/"):
        normalized = normalized[:-1]
    return normalized or GLOBAL_TOUCH_TOKEN


def build_touch_tokens(doc: TaskDoc) -> list[str]:
    """Conflict tokens for *doc*.

    Without ``touches``, ``shared``/``global`` isolation conflicts with
    everything and narrower isolation conflicts with nothing.
    """
    raw = [pattern for pattern in doc.meta.touches if pattern.strip()]
    if not raw:
        if doc.meta.isolation in (IsolationScope.SHARED, IsolationScope.GLOBAL):
            return [GLOBAL_TOUCH_TOKEN]
        return []
    return list(dict.fromkeys(normalize_touch_pattern(pattern) for pattern in raw))


def tokens_conflict(a: str, b: str) -> bool:
    if a == GLOBAL_TOUCH_TOKEN or b == GLOBAL_TOUCH_TOKEN:
        return True
    return a.startswith(b) or b.startswith(a)


def patterns_overlap(a: Sequence[str], b: Sequence[str]) -> bool:
    return any(tokens_conflict(token_a, token_b) for token_a in a for token_b in b)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def candidate_to_dict(candidate: RankedCandidate, rank: Optional[int]) -> dict[str, Any]:
    meta = candidate.doc.meta
    return {
        "rank": rank,
        "id": meta.id,
        "title": meta.title,
        "kind": meta.kind.value,
        "state": meta.state.value,
        "priority": meta.priority.value,
        "size": meta.size.value,
        "executor": meta.executor.value,
        "ambiguity": meta.ambiguity.value,
        "isolation": meta.isolation.value,
        "epic_root": candidate.root_epic_id,
        "epic_in_flight": candidate.epic_in_flight,
        "touches": list(candidate.touches),
        "blocked": meta.blocked,
        "score_breakdown": candidate.score.to_dict(),
    }


def next_result_payload(result: NextResult, options: NextOptions) -> dict[str, Any]:
    """JSON-ready explanation of a :class:`NextResult`."""
    rank_by_id = {candidate.id: index + 1 for index, candidate in enumerate(result.candidates)}
    return {
        "rules_version": RANKING_RULES_VERSION,
        "parameters": {
            "count": options.count,
            "parallelize": options.parallelize,
            "kinds": sorted(kind.value for kind in options.kinds),
            "executor": options.executor_preference.value if options.executor_preference else None,
            "max_size": options.max_size.value if options.max_size else None,
            "ambiguity": sorted(value.value for value in options.ambiguity) if options.ambiguity else None,
            "isolation": sorted(value.value for value in options.isolation) if options.isolation else None,
            "parent": options.parent,
            "include_blocked": options.include_blocked,
        },
        "rationale": RANKING_RATIONALE,
        "candidates": [candidate_to_dict(candidate, index + 1) for index, candidate in enumerate(result.candidates)],
        "selected": [candidate_to_dict(candidate, rank_by_id.get(candidate.id)) for candidate in result.selected],
        "skipped_due_to_conflicts": [
            {
                "id": skip.candidate.id,
                "rank": rank_by_id.get(skip.candidate.id),
                "conflicts_with": list(skip.conflicts_with),
            }
            for skip in result.skipped_due_to_conflicts
        ],
    }
