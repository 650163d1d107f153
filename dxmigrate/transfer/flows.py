"""Flow checks — operation chain validation and per-environment option rewrites."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Optional

from dxmigrate.analysis.ordering import detect_cycles
from dxmigrate.models.config import FlowMapping
from dxmigrate.models.graph import DependencyGraph

LOCALHOST_URL = re.compile(r"https?://localhost(:\d+)?")
URL_OPTIONS = ("url", "webhook_url", "endpoint", "callback_url")


@dataclass
class FlowValidation:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def operation_graph(operations: list[dict]) -> DependencyGraph:
    """Operations as nodes; each depends on the operations it resolves or rejects to."""
    graph = DependencyGraph()
    for operation in operations:
        graph.add_node(str(operation.get("id")))
    for operation in operations:
        for next_field in ("resolve", "reject"):
            next_id = _ref(operation.get(next_field))
            if next_id is not None:
                graph.add_edge(str(operation.get("id")), str(next_id))
    return graph


def validate_flows(
    flows: list[dict], operations: list[dict], mapping: Optional[FlowMapping] = None
) -> FlowValidation:
    """Check that flows and operations reference each other consistently.

    Broken references and circular chains are errors. Option values with no
    entry in a non-empty mapping are warnings.
    """
    validation = FlowValidation()
    flow_ids = {str(f.get("id")) for f in flows}
    operation_ids = {str(o.get("id")) for o in operations}

    for flow in flows:
        root = _ref(flow.get("operation"))
        if root is not None and str(root) not in operation_ids:
            validation.errors.append(f'Flow "{flow.get("name")}" references missing root operation: {root}')

    for operation in operations:
        name = operation.get("name") or operation.get("id")
        for next_field in ("resolve", "reject"):
            next_id = _ref(operation.get(next_field))
            if next_id is not None and str(next_id) not in operation_ids:
                validation.errors.append(
                    f'Operation "{name}" references missing {next_field} operation: {next_id}'
                )
        flow_id = _ref(operation.get("flow"))
        if str(flow_id) not in flow_ids:
            validation.errors.append(f'Operation "{name}" references missing flow: {flow_id}')

    for cycle in detect_cycles(operation_graph(operations)):
        validation.errors.append(f"Circular reference detected in operation chain starting from: {cycle[0]}")

    if mapping is not None and not mapping.empty:
        for operation in operations:
            name = operation.get("name") or operation.get("id")
            options = operation.get("options") or {}
            collection = options.get("collection")
            if collection and mapping.collections and collection not in mapping.collections:
                validation.warnings.append(f'Operation "{name}" references unmapped collection: {collection}')
            user = options.get("user")
            if user and mapping.users and user not in mapping.users:
                validation.warnings.append(f'Operation "{name}" references unmapped user: {user}')

    return validation


def transform_operation_options(operation: dict, mapping: FlowMapping) -> dict:
    """Return a copy of `operation` with its options rewritten for the target."""
    options = operation.get("options")
    if not isinstance(options, dict):
        return operation

    rewritten = dict(options)
    for option, table in (("collection", mapping.collections), ("user", mapping.users), ("role", mapping.roles)):
        value = rewritten.get(option)
        if value and value in table:
            rewritten[option] = table[value]

    if mapping.base_url:
        for option in URL_OPTIONS:
            value = rewritten.get(option)
            if isinstance(value, str):
                rewritten[option] = LOCALHOST_URL.sub(lambda _: mapping.base_url, value)

    return {**operation, "options": rewritten}


def _ref(value: Any) -> Any:
    if isinstance(value, dict):
        return value.get("id")
    return value
