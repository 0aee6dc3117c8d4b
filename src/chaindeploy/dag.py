# dag.py
from __future__ import annotations

from collections import deque
from typing import Dict, Iterable, List, Set, Tuple

from .errors import CyclicDependency
from .model import ExecutionPlan, Step
from .registry import StepRegistry


def build_dag(
    steps: Iterable[Step],
    registry: StepRegistry,
) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build a DAG over a closed set of steps.

    Edge dep -> step means dep must be deployed BEFORE step.
    Dependency tags are expanded through the registry; a step that ends up
    depending on itself (through a group tag) keeps its self-edge and is
    reported as a cycle by topo_levels.
    """
    steps = list(steps)
    name_set = {s.name for s in steps}
    adj: Dict[str, Set[str]] = {n: set() for n in name_set}
    indeg: Dict[str, int] = {n: 0 for n in name_set}

    for step in steps:
        for dep in registry.dependencies_of(step):
            if dep.name not in name_set:
                # closure was computed from the same registry, so this is a caller bug
                raise ValueError(f"'{dep.name}' (needed by '{step.name}') is outside the planned set")
            if step.name not in adj[dep.name]:
                adj[dep.name].add(step.name)
                indeg[step.name] += 1

    return adj, indeg


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Kahn's algorithm, one "level" at a time.
    Steps within a level do not depend on each other.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted(n for n, d in indeg.items() if d == 0))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level_size = len(q)
        level: List[str] = []

        for _ in range(level_size):
            node = q.popleft()
            level.append(node)
            processed += 1

            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)

        levels.append(sorted(level))

    if processed != len(indeg):
        raise CyclicDependency(sorted(n for n, d in indeg.items() if d > 0))

    return levels


def plan(registry: StepRegistry, tags: Iterable[str]) -> ExecutionPlan:
    """
    Requested tags -> dependency closure -> topological order.

    Raises UnknownStep or CyclicDependency; never runs anything.
    """
    closure = registry.transitive_closure(tags)
    adj, indeg = build_dag(closure, registry)
    levels = topo_levels(adj, indeg)
    order = tuple(name for level in levels for name in level)
    return ExecutionPlan(order=order, layers=tuple(tuple(level) for level in levels))
