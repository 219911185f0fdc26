"""Derive the parent/child hierarchy from parent-owned ``children`` lists.

Children never store a back-reference; the parent of a task is whichever task
lists it in its ``children`` array.  :func:`build_hierarchy_index` turns the
flat document set into lookup maps once per invocation.

The builder does not reject malformed graphs.  Cycles, depth violations, and
conflicting claims are left in (or recorded next to) the index so that
validation can report them; every consumer must therefore tolerate cycles.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Sequence

from .model import TaskDoc


@dataclass(frozen=True)
class ChildReference:
    parent_id: str
    child_id: str


@dataclass(frozen=True)
class ConflictingClaim:
    """A child listed by more than one parent.  The first claim is kept."""

    child_id: str
    claimed_by: str
    rejected_parent_id: str


@dataclass
class HierarchyIssues:
    missing_children: list[ChildReference] = field(default_factory=list)
    duplicate_children: list[ChildReference] = field(default_factory=list)
    conflicting_claims: list[ConflictingClaim] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.missing_children or self.duplicate_children or self.conflicting_claims)


@dataclass(frozen=True)
class HierarchyIndex:
    """Immutable parent/child lookup built by :func:`build_hierarchy_index`."""

    parent_by_id: Mapping[str, str]
    children_by_id: Mapping[str, tuple[TaskDoc, ...]]
    order_index: Mapping[str, Mapping[str, int]]

    def parent_of(self, task_id: str) -> Optional[str]:
        return self.parent_by_id.get(task_id)

    def children_of(self, parent_id: str) -> list[TaskDoc]:
        """Children in the order the parent declares them."""
        return list(self.children_by_id.get(parent_id, ()))

    def position(self, parent_id: str, child_id: str) -> Optional[int]:
        order = self.order_index.get(parent_id)
        if order is None:
            return None
        return order.get(child_id)

    def roots(self, tasks: Sequence[TaskDoc]) -> list[TaskDoc]:
        return [doc for doc in tasks if doc.id not in self.parent_by_id]


@dataclass(frozen=True)
class HierarchyBuildResult:
    index: HierarchyIndex
    issues: HierarchyIssues


def build_hierarchy_index(tasks: Sequence[TaskDoc]) -> HierarchyBuildResult:
    """Build the hierarchy index from *tasks*.

    Parents are visited in input order.  A listed child is recorded only if it
    exists and no earlier parent has claimed it; later claims are reported in
    ``issues.conflicting_claims`` and otherwise ignored.
    """
    by_id: dict[str, TaskDoc] = {}
    for doc in tasks:
        by_id.setdefault(doc.id, doc)

    parent_by_id: dict[str, str] = {}
    children_by_id: dict[str, tuple[TaskDoc, ...]] = {}
    order_index: dict[str, Mapping[str, int]] = {}
    issues = HierarchyIssues()

    for doc in tasks:
        children = doc.meta.children
        if not children:
            continue
        if doc.id in children_by_id:
            # Duplicate parent id; the first document owns the ordering.
            continue

        seen: set[str] = set()
        ordered: list[TaskDoc] = []
        positions: dict[str, int] = {}
        for child_id in children:
            if child_id in seen:
                issues.duplicate_children.append(ChildReference(doc.id, child_id))
                continue
            seen.add(child_id)

            child = by_id.get(child_id)
            if child is None:
                issues.missing_children.append(ChildReference(doc.id, child_id))
                continue

            existing = parent_by_id.get(child_id)
            if existing is not None:
                issues.conflicting_claims.append(ConflictingClaim(child_id, existing, doc.id))
                continue

            parent_by_id[child_id] = doc.id
            positions[child_id] = len(ordered)
            ordered.append(child)

        children_by_id[doc.id] = tuple(ordered)
        order_index[doc.id] = MappingProxyType(positions)

    index = HierarchyIndex(
        parent_by_id=MappingProxyType(parent_by_id),
        children_by_id=MappingProxyType(children_by_id),
        order_index=MappingProxyType(order_index),
    )
    return HierarchyBuildResult(index=index, issues=issues)


def walk_ancestors(task_id: str, parent_by_id: Mapping[str, str]) -> tuple[list[str], bool]:
    """Return ``(ancestors, cycle_detected)`` for *task_id*, nearest first.

    The walk stops as soon as an id repeats, so it terminates on cyclic
    indexes.
    """
    ancestors: list[str] = []
    seen = {task_id}
    current = task_id
    while True:
        parent_id = parent_by_id.get(current)
        if parent_id is None:
            return ancestors, False
        if parent_id in seen:
            return ancestors, True
        seen.add(parent_id)
        ancestors.append(parent_id)
        current = parent_id


def iter_descendants(parent_id: str, index: HierarchyIndex) -> list[TaskDoc]:
    """Breadth-first descendants of *parent_id*; each id is visited once."""
    result: list[TaskDoc] = []
    seen = {parent_id}
    queue: deque[TaskDoc] = deque(index.children_by_id.get(parent_id, ()))
    while queue:
        child = queue.popleft()
        if child.id in seen:
            continue
        seen.add(child.id)
        result.append(child)
        queue.extend(index.children_by_id.get(child.id, ()))
    return result
