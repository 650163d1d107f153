"""Collection schema loading, from a live instance or an exported JSON file."""

from __future__ import annotations

import json
from pathlib import Path

from dxmigrate.analysis.relations import DEFAULT_RESERVED_PREFIX, is_reserved
from dxmigrate.errors import ConnectivityError
from dxmigrate.transport.base import Transport


def user_collections(collections: list, reserved_prefix: str = DEFAULT_RESERVED_PREFIX) -> list[str]:
    """Names of migratable collections: no system collections, no folder groups."""
    names = []
    for entry in collections:
        if isinstance(entry, str):
            name, meta = entry, {}
        else:
            name, meta = entry.get("collection", ""), entry.get("meta") or {}
        if not name or is_reserved(name, reserved_prefix) or meta.get("is_folder"):
            continue
        names.append(name)
    return names


def fetch_schema(
    transport: Transport, reserved_prefix: str = DEFAULT_RESERVED_PREFIX
) -> tuple[list[str], list[dict]]:
    """Read collections and relations; both are required for any analysis."""
    collections = transport.fetch("collections")
    if not collections.success:
        raise ConnectivityError(f"Could not read collections from {transport.url}: {collections.error}")
    relations = transport.fetch("relations")
    if not relations.success:
        raise ConnectivityError(f"Could not read relations from {transport.url}: {relations.error}")
    return user_collections(collections.records, reserved_prefix), relations.records


def load_schema_file(
    path: Path, reserved_prefix: str = DEFAULT_RESERVED_PREFIX
) -> tuple[list[str], list[dict]]:
    """Read ``{"collections": [...], "relations": [...]}`` exported earlier."""
    if not path.exists():
        raise FileNotFoundError(f"No schema file at {path}")
    data = json.loads(path.read_text())
    if isinstance(data.get("data"), dict):
        data = data["data"]
    return user_collections(data.get("collections", []), reserved_prefix), data.get("relations", [])
