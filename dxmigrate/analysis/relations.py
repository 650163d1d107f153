"""Relation normalizer — reduce raw relation descriptors to dependency edges.

Directus describes every relation from its many-to-one side: ``collection``
holds a foreign key ``field`` pointing at ``related_collection``. The many side
is the dependent. Descriptors may also carry an explicit ``kind`` of ``o2m``
(used by offline schema files), which reverses the direction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional, Union

from pydantic import BaseModel

from dxmigrate.models.graph import Edge

DEFAULT_RESERVED_PREFIX = "directus_"


class RelationKind(str, Enum):
    MANY_TO_ONE = "m2o"
    ONE_TO_MANY = "o2m"


class Relation(BaseModel):
    collection: str
    related_collection: Optional[str] = None
    field: Optional[str] = None
    kind: RelationKind = RelationKind.MANY_TO_ONE

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Relation":
        return cls(
            collection=payload.get("collection") or "",
            related_collection=payload.get("related_collection"),
            field=payload.get("field"),
            kind=payload.get("kind") or RelationKind.MANY_TO_ONE,
        )

    def as_edge(self) -> Optional[Edge]:
        if not self.collection or not self.related_collection:
            return None
        if self.kind == RelationKind.ONE_TO_MANY:
            return Edge(dependent=self.related_collection, prerequisite=self.collection)
        return Edge(dependent=self.collection, prerequisite=self.related_collection)


@dataclass
class NormalizedRelations:
    edges: list[Edge] = field(default_factory=list)
    # Edges whose prerequisite lives in the reserved namespace.
    external: list[Edge] = field(default_factory=list)


def is_reserved(name: str, reserved_prefix: str = DEFAULT_RESERVED_PREFIX) -> bool:
    return bool(reserved_prefix) and name.startswith(reserved_prefix)


def normalize_relations(
    relations: Iterable[Union[Relation, dict[str, Any]]],
    reserved_prefix: str = DEFAULT_RESERVED_PREFIX,
) -> NormalizedRelations:
    """Filter relations down to inter-entity edges.

    Self references and edges whose dependent is reserved are dropped. Edges
    pointing at a reserved entity are kept aside as external references.
    """
    result = NormalizedRelations()
    seen: set[Edge] = set()

    for raw in relations:
        relation = raw if isinstance(raw, Relation) else Relation.from_payload(raw)
        edge = relation.as_edge()
        if edge is None or edge.dependent == edge.prerequisite:
            continue
        if is_reserved(edge.dependent, reserved_prefix):
            continue
        if edge in seen:
            continue
        seen.add(edge)
        if is_reserved(edge.prerequisite, reserved_prefix):
            result.external.append(edge)
        else:
            result.edges.append(edge)

    return result
