"""Dependency graph builder."""

from __future__ import annotations

from typing import Any, Iterable, Union

from dxmigrate.analysis.relations import (
    DEFAULT_RESERVED_PREFIX,
    Relation,
    is_reserved,
    normalize_relations,
)
from dxmigrate.models.graph import DependencyGraph


def entity_name(entity: Union[str, dict[str, Any]]) -> str:
    """Accept plain names or collection payloads (``{"collection": ...}``)."""
    if isinstance(entity, dict):
        return entity.get("collection") or entity.get("name") or ""
    return entity


def build_graph(
    entities: Iterable[Union[str, dict[str, Any]]],
    relations: Iterable[Union[Relation, dict[str, Any]]],
    reserved_prefix: str = DEFAULT_RESERVED_PREFIX,
) -> DependencyGraph:
    """Build a graph with one node per non-reserved entity.

    Nodes are created for every listed entity and every entity seen on a
    retained edge, in that order. References to reserved entities are
    recorded on the dependent node, not as edges.
    """
    graph = DependencyGraph()

    for entity in entities:
        name = entity_name(entity)
        if name and not is_reserved(name, reserved_prefix):
            graph.add_node(name)

    normalized = normalize_relations(relations, reserved_prefix)
    for edge in normalized.edges:
        graph.add_edge(edge.dependent, edge.prerequisite)
    for edge in normalized.external:
        graph.add_external_ref(edge.dependent, edge.prerequisite)

    return graph
