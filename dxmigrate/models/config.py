"""Pydantic models for migration.yaml configuration."""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, model_validator


class UpdatePolicy(str, Enum):
    REPLACE = "replace"
    MERGE = "merge"


class ConnectionConfig(BaseModel):
    url: str
    token: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    timeout: int = 60

    @model_validator(mode="after")
    def _check_credentials(self) -> "ConnectionConfig":
        if not self.token and not (self.email and self.password):
            raise ValueError("connection needs either a token or email and password")
        return self

    @property
    def uses_login(self) -> bool:
        return not self.token


class TransferOptions(BaseModel):
    preserve_ids: bool = True
    skip_if_missing_prerequisite: bool = True
    skip_admin: bool = False
    update_policy: UpdatePolicy = UpdatePolicy.REPLACE


class MigrationSelection(BaseModel):
    roles: bool = False
    policies: bool = False
    permissions: bool = False
    access: bool = False
    folders: bool = False
    files: bool = False
    # Flows always travel with their operations.
    flows: bool = False
    folder_ids: list[str] = Field(default_factory=list)
    collections: list[str] = Field(default_factory=list)
    custom_order: Optional[list[str]] = None
    use_batches: bool = False
    include_asset_dependencies: bool = True

    def entity_types(self) -> list[str]:
        """Selected built-in types in canonical order, then collections."""
        names = [
            name
            for name in ("roles", "policies", "permissions", "access", "folders", "files")
            if getattr(self, name) or (name == "folders" and self.folder_ids)
        ]
        if self.flows:
            names += ["flows", "operations"]
        return names + [c for c in self.collections if c not in names]


class FlowMapping(BaseModel):
    """Rewrites applied to operation options when flows move between environments."""

    collections: dict[str, str] = Field(default_factory=dict)
    users: dict[str, str] = Field(default_factory=dict)
    roles: dict[str, str] = Field(default_factory=dict)
    base_url: Optional[str] = None

    @property
    def empty(self) -> bool:
        return not (self.collections or self.users or self.roles or self.base_url)


class MigrationConfig(BaseModel):
    source: ConnectionConfig
    target: ConnectionConfig
    selection: MigrationSelection = Field(default_factory=MigrationSelection)
    defaults: TransferOptions = Field(default_factory=TransferOptions)
    # Per-type overrides, layered over `defaults`.
    options: dict[str, TransferOptions] = Field(default_factory=dict)
    flow_mapping: FlowMapping = Field(default_factory=FlowMapping)
    reserved_prefix: str = "directus_"
    results_dir: Path = Path("results")
    previous_run: Optional[Path] = None

    @model_validator(mode="before")
    @classmethod
    def _layer_overrides(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not data.get("options"):
            return data
        defaults = data.get("defaults") or {}
        if isinstance(defaults, BaseModel):
            defaults = defaults.model_dump()
        options = {}
        for name, override in data["options"].items():
            if isinstance(override, BaseModel):
                override = override.model_dump(exclude_unset=True)
            options[name] = {**defaults, **(override or {})}
        return {**data, "options": options}

    def options_for(self, entity_type: str) -> TransferOptions:
        return self.options.get(entity_type, self.defaults)


def resolve_env(value: Any) -> Any:
    """Expand ${VAR} placeholders in every string of a parsed YAML document."""
    if isinstance(value, str):
        return os.path.expandvars(value)
    if isinstance(value, dict):
        return {k: resolve_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_env(v) for v in value]
    return value


def load_migration_config(path: Path) -> MigrationConfig:
    """Load a migration config file."""
    if not path.exists():
        raise FileNotFoundError(f"No migration config at {path}")
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return MigrationConfig(**resolve_env(data))
