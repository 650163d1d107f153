"""Dependency ordering — cycles, topological order, levels and wavefront batches.

All traversals are iterative and keep their visit state local to the call, so
analyses are independent of each other and safe to run from several threads
against the same graph. Iteration follows adjacency insertion order and the
order of the supplied entity list, which makes every result deterministic.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from dxmigrate.models.graph import DependencyGraph, EntityNode, MigrationOrder

WHITE, GRAY, BLACK = 0, 1, 2


@dataclass
class OrderValidation:
    valid: bool
    errors: list[str] = field(default_factory=list)


def detect_cycles(graph: DependencyGraph, entities: Optional[Iterable[str]] = None) -> list[list[str]]:
    """Report every cycle reachable from `entities` (default: all nodes).

    Three-color DFS. Each back edge to a node on the active path yields the
    path slice from that node to the current one, closed by repeating the
    first element: ``["a", "b", "c", "a"]``.
    """
    starts = list(graph) if entities is None else list(entities)
    color: dict[str, int] = {}
    cycles: list[list[str]] = []

    for start in starts:
        if color.get(start, WHITE) != WHITE:
            continue

        path = [start]
        color[start] = GRAY
        stack = [(start, iter(graph.depends_on(start)))]

        while stack:
            node, deps = stack[-1]
            dep = next(deps, None)

            if dep is None:
                stack.pop()
                path.pop()
                color[node] = BLACK
                continue

            state = color.get(dep, WHITE)
            if state == GRAY:
                cycles.append(path[path.index(dep):] + [dep])
            elif state == WHITE:
                color[dep] = GRAY
                path.append(dep)
                stack.append((dep, iter(graph.depends_on(dep))))

    return cycles


def topological_order(graph: DependencyGraph, entities: Optional[Iterable[str]] = None) -> list[str]:
    """Post-order DFS: prerequisites come before their dependents.

    A node revisited while still in progress (a cycle) is treated as already
    satisfied, so the result is always total but does not honour every edge
    of a cycle.
    """
    starts = list(graph) if entities is None else list(entities)
    visited: set[str] = set()
    in_progress: set[str] = set()
    result: list[str] = []

    for start in starts:
        if start in visited or start in in_progress:
            continue

        in_progress.add(start)
        stack = [(start, iter(graph.depends_on(start)))]

        while stack:
            node, deps = stack[-1]
            dep = next(deps, None)

            if dep is None:
                stack.pop()
                in_progress.discard(node)
                visited.add(node)
                result.append(node)
                continue

            if dep in visited or dep in in_progress:
                continue

            in_progress.add(dep)
            stack.append((dep, iter(graph.depends_on(dep))))

    return result


def assign_levels(graph: DependencyGraph, order: Iterable[str]) -> dict[int, list[str]]:
    """Annotate nodes with ``1 + max(level of prerequisites)`` and group by level.

    A prerequisite found in progress on the current path counts as level 0
    for that occurrence only and is not memoized from it.
    """
    entities = list(dict.fromkeys(order))
    memo: dict[str, int] = {}

    for start in entities:
        if start in memo:
            continue

        in_progress = {start}
        # frame: [node, dependency iterator, highest prerequisite level so far]
        stack: list[list] = [[start, iter(graph.depends_on(start)), -1]]

        while stack:
            frame = stack[-1]
            node, deps = frame[0], frame[1]
            dep = next(deps, None)

            if dep is None:
                stack.pop()
                in_progress.discard(node)
                level = frame[2] + 1
                memo[node] = level
                if node in graph:
                    graph[node].level = level
                if stack:
                    stack[-1][2] = max(stack[-1][2], level)
                continue

            if dep in memo:
                frame[2] = max(frame[2], memo[dep])
            elif dep in in_progress:
                frame[2] = max(frame[2], 0)
            else:
                in_progress.add(dep)
                stack.append([dep, iter(graph.depends_on(dep)), -1])

    levels: dict[int, list[str]] = {}
    for name in entities:
        levels.setdefault(memo[name], []).append(name)
    return dict(sorted(levels.items()))


def group_into_batches(graph: DependencyGraph, order: Iterable[str]) -> list[list[str]]:
    """Split `order` into wavefront batches.

    An entity joins the current batch once every prerequisite inside the
    working set sits in an earlier batch. When a scan places nothing, the
    remainder is cyclic and is flushed as one final batch.
    """
    remaining = list(dict.fromkeys(order))
    working = set(remaining)
    placed: set[str] = set()
    batches: list[list[str]] = []

    while remaining:
        batch = [
            name for name in remaining
            if all(dep in placed for dep in graph.depends_on(name) if dep in working)
        ]
        if not batch:
            batch = list(remaining)

        placed.update(batch)
        batches.append(batch)
        remaining = [name for name in remaining if name not in placed]

    return batches


def validate_custom_order(graph: DependencyGraph, proposed: Iterable[str]) -> OrderValidation:
    """Check that no entity is positioned before one of its prerequisites."""
    sequence = list(proposed)
    errors: list[str] = []
    position: dict[str, int] = {}

    for index, name in enumerate(sequence):
        if name in position:
            errors.append(f"{name} appears more than once")
            continue
        position[name] = index

    for name, pos in position.items():
        for dep in graph.depends_on(name):
            dep_pos = position.get(dep)
            if dep_pos is not None and pos < dep_pos:
                errors.append(f"{name} is positioned before its dependency {dep}")

    return OrderValidation(valid=not errors, errors=errors)


def calculate_order(graph: DependencyGraph, selected: Iterable[str]) -> MigrationOrder:
    """Full analysis of `selected`: cycles, order, levels and warnings.

    The analysis runs on a copy of the graph restricted to the selection, so
    the input graph is never modified.
    """
    names = list(dict.fromkeys(selected))
    keep = set(names)
    sub = graph.subgraph(names)
    warnings: list[str] = []

    cycles = detect_cycles(sub, names)
    for cycle in cycles:
        warnings.append(f"Circular dependency detected: {' → '.join(cycle)}")

    order = topological_order(sub, names)

    for name in names:
        missing = [dep for dep in graph.depends_on(name) if dep not in keep]
        if missing:
            warnings.append(f"{name} depends on unselected entities: {', '.join(missing)}")
        external = sub[name].external_refs
        if external:
            warnings.append(
                f"{name} has relations to system collections: {', '.join(external)}. "
                "Ensure ID mapping is handled."
            )

    levels = assign_levels(sub, order)

    return MigrationOrder(
        order=order,
        cycles=cycles,
        warnings=warnings,
        levels=levels,
        dependencies=sub,
    )


def can_migrate(name: str, migrated: Iterable[str], graph: DependencyGraph) -> bool:
    done = set(migrated)
    return all(dep in done for dep in graph.depends_on(name))


def next_migratable(
    remaining: Iterable[str], migrated: Iterable[str], graph: DependencyGraph
) -> list[str]:
    done = set(migrated)
    return [name for name in remaining if can_migrate(name, done, graph)]


def format_dependency_info(node: EntityNode) -> str:
    parts = []
    if node.depends_on:
        parts.append(f"Depends on: {', '.join(node.depends_on)}")
    if node.depended_by:
        parts.append(f"Required by: {', '.join(node.depended_by)}")
    parts.append(f"Level: {node.level}")
    return " | ".join(parts)
