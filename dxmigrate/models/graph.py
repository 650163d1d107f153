"""Dependency graph data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional


@dataclass(frozen=True)
class Edge:
    """`dependent` cannot be created before `prerequisite`."""

    dependent: str
    prerequisite: str


@dataclass
class EntityNode:
    name: str
    depends_on: list[str] = field(default_factory=list)
    depended_by: list[str] = field(default_factory=list)
    level: int = 0
    # References into the reserved (system) namespace; never graph edges.
    external_refs: list[str] = field(default_factory=list)


class DependencyGraph:
    """Mapping of entity name to node. Adjacency lists keep insertion order."""

    def __init__(self) -> None:
        self.nodes: dict[str, EntityNode] = {}

    def add_node(self, name: str) -> EntityNode:
        node = self.nodes.get(name)
        if node is None:
            node = EntityNode(name=name)
            self.nodes[name] = node
        return node

    def add_edge(self, dependent: str, prerequisite: str) -> None:
        dep_node = self.add_node(dependent)
        pre_node = self.add_node(prerequisite)
        if dependent == prerequisite:
            return
        if prerequisite not in dep_node.depends_on:
            dep_node.depends_on.append(prerequisite)
        if dependent not in pre_node.depended_by:
            pre_node.depended_by.append(dependent)

    def add_external_ref(self, name: str, ref: str) -> None:
        node = self.add_node(name)
        if ref not in node.external_refs:
            node.external_refs.append(ref)

    def get(self, name: str) -> Optional[EntityNode]:
        return self.nodes.get(name)

    def depends_on(self, name: str) -> list[str]:
        node = self.nodes.get(name)
        return node.depends_on if node else []

    def depended_by(self, name: str) -> list[str]:
        node = self.nodes.get(name)
        return node.depended_by if node else []

    def edges(self) -> list[Edge]:
        return [
            Edge(dependent=node.name, prerequisite=dep)
            for node in self.nodes.values()
            for dep in node.depends_on
        ]

    def subgraph(self, selected: Iterable[str]) -> "DependencyGraph":
        """Copy restricted to `selected`; edges leaving the selection are dropped."""
        names = list(dict.fromkeys(selected))
        keep = set(names)
        sub = DependencyGraph()
        for name in names:
            sub.add_node(name)
            original = self.nodes.get(name)
            if original is not None:
                sub.nodes[name].external_refs = list(original.external_refs)
        for name in names:
            for dep in self.depends_on(name):
                if dep in keep:
                    sub.add_edge(name, dep)
        return sub

    def __contains__(self, name: object) -> bool:
        return name in self.nodes

    def __getitem__(self, name: str) -> EntityNode:
        return self.nodes[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)


@dataclass
class MigrationOrder:
    """Result of one dependency analysis. Read-only to consumers."""

    order: list[str]
    cycles: list[list[str]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    levels: dict[int, list[str]] = field(default_factory=dict)
    dependencies: DependencyGraph = field(default_factory=DependencyGraph)
