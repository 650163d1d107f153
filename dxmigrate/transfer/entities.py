"""Entity type registry — how each record type is matched, cleaned and linked."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Union

from dxmigrate.analysis.relations import DEFAULT_RESERVED_PREFIX, Relation, RelationKind

# Remote-managed audit fields on collection items.
ITEM_SYSTEM_FIELDS = ("date_created", "date_updated", "user_created", "user_updated")

# Reserved collections that map onto a built-in entity type.
SYSTEM_COLLECTION_TYPES = {
    "directus_files": "files",
    "directus_folders": "folders",
    "directus_roles": "roles",
    "directus_policies": "policies",
}


@dataclass(frozen=True)
class EntitySpec:
    name: str
    id_field: str = "id"
    # Fields that identify a record when identifiers are not preserved.
    natural_key: tuple[str, ...] = ()
    # Relationship collections owned by other entities; never sent.
    strip_fields: tuple[str, ...] = ()
    # Field → prerequisite entity type.
    references: dict[str, str] = field(default_factory=dict)
    admin_flag: Optional[str] = None
    # Fields sent as null when missing on the source (opaque rule payloads).
    nullable_fields: tuple[str, ...] = ()
    # Records with any of these fields set are out of scope (e.g. user links).
    skip_when_set: tuple[str, ...] = ()
    immutable: bool = False
    import_from_source: bool = False
    snapshot_optional: bool = False
    # Field → entity type that is transferred later; linked in a second pass.
    deferred_references: dict[str, str] = field(default_factory=dict)

    def record_id(self, record: dict) -> Any:
        return record.get(self.id_field)

    def label(self, record: dict) -> str:
        for key in ("name", "title", "filename_download", "collection", "key"):
            value = record.get(key)
            if value:
                if key == "collection" and record.get("action"):
                    return f"{value}:{record['action']}"
                return str(value)
        return str(self.record_id(record))

    def is_admin(self, record: dict) -> bool:
        return bool(self.admin_flag and record.get(self.admin_flag))

    def key_of(self, record: dict) -> Optional[tuple]:
        if not self.natural_key:
            return None
        return tuple(_hashable(record.get(k)) for k in self.natural_key)

    @property
    def self_referencing(self) -> bool:
        return self.name in self.references.values()


ROLES = EntitySpec(
    name="roles",
    natural_key=("name",),
    strip_fields=("users", "policies", "children"),
    references={"parent": "roles"},
    admin_flag="admin_access",
)

POLICIES = EntitySpec(
    name="policies",
    natural_key=("name",),
    strip_fields=("users", "roles", "permissions"),
    admin_flag="admin_access",
    nullable_fields=("ip_access",),
)

PERMISSIONS = EntitySpec(
    name="permissions",
    natural_key=("policy", "collection", "action"),
    references={"policy": "policies"},
    nullable_fields=("permissions", "validation", "presets", "fields"),
)

ACCESS = EntitySpec(
    name="access",
    natural_key=("role", "policy"),
    skip_when_set=("user",),
    references={"role": "roles", "policy": "policies"},
    immutable=True,
    snapshot_optional=True,
)

FOLDERS = EntitySpec(
    name="folders",
    natural_key=("name", "parent"),
    references={"parent": "folders"},
)

FILES = EntitySpec(
    name="files",
    strip_fields=(
        "storage", "uploaded_by", "uploaded_on", "modified_by", "modified_on",
        "created_on", "focal_point_x", "focal_point_y",
    ),
    references={"folder": "folders"},
    import_from_source=True,
)

FLOWS = EntitySpec(
    name="flows",
    strip_fields=("operations", "date_created", "user_created"),
    deferred_references={"operation": "operations"},
)

# resolve/reject chain operations inside a flow; targets are created first.
OPERATIONS = EntitySpec(
    name="operations",
    natural_key=("flow", "key"),
    strip_fields=("date_created", "user_created"),
    references={"flow": "flows", "resolve": "operations", "reject": "operations"},
)

BUILTIN_SPECS: dict[str, EntitySpec] = {
    spec.name: spec
    for spec in (ROLES, POLICIES, PERMISSIONS, ACCESS, FOLDERS, FILES, FLOWS, OPERATIONS)
}

CANONICAL_ORDER = (
    "roles", "policies", "permissions", "access", "folders", "files", "flows", "operations",
)


def collection_spec(
    name: str,
    relations: Iterable[Union[Relation, dict[str, Any]]] = (),
    reserved_prefix: str = DEFAULT_RESERVED_PREFIX,
) -> EntitySpec:
    """Spec for items of a user collection; many-to-one fields become references."""
    references: dict[str, str] = {}
    for raw in relations:
        relation = raw if isinstance(raw, Relation) else Relation.from_payload(raw)
        if relation.collection != name or relation.kind != RelationKind.MANY_TO_ONE:
            continue
        if not relation.field or not relation.related_collection:
            continue
        target = relation.related_collection
        if target.startswith(reserved_prefix):
            target = SYSTEM_COLLECTION_TYPES.get(target)
            if target is None:
                continue
        references[relation.field] = target

    return EntitySpec(name=name, strip_fields=ITEM_SYSTEM_FIELDS, references=references)


def get_spec(
    name: str,
    relations: Iterable[Union[Relation, dict[str, Any]]] = (),
    reserved_prefix: str = DEFAULT_RESERVED_PREFIX,
) -> EntitySpec:
    return BUILTIN_SPECS.get(name) or collection_spec(name, relations, reserved_prefix)


def _hashable(value: Any) -> Any:
    if isinstance(value, dict):
        return value.get("id")
    if isinstance(value, list):
        return tuple(_hashable(v) for v in value)
    return None if value is None else str(value)
