"""Migration orchestrator — drives the transfer engine across entity types.

Types run in dependency order: roles, policies, permissions, access links,
folders, files, flows, operations, then user collections in schema order. The
order is computed with the same analysis used for collections, over a graph
whose edges come from each type's references. Everything is read before
anything is written: connection checks, target snapshots and source records.
A failure in that phase ends the run; failures while writing are recorded per
item. Losing connectivity while writing ends the run with RunInterrupted,
which carries everything written up to that point.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from rich.console import Console

from dxmigrate.analysis.ordering import (
    calculate_order,
    group_into_batches,
    validate_custom_order,
)
from dxmigrate.errors import ConnectivityError, OrderingViolation, RunInterrupted
from dxmigrate.models.config import FlowMapping, MigrationConfig, MigrationSelection, TransferOptions
from dxmigrate.models.graph import DependencyGraph, MigrationOrder
from dxmigrate.models.transfer import MigrationRun, TransferResult
from dxmigrate.transfer.engine import CancellationToken, TransferEngine
from dxmigrate.transfer.entities import CANONICAL_ORDER, EntitySpec, get_spec
from dxmigrate.transfer.flows import transform_operation_options, validate_flows
from dxmigrate.transport.base import Transport
from dxmigrate.transport.directus import get_transport

console = Console()


class MigrationOrchestrator:
    """Runs one migration from `source` into `target`."""

    def __init__(
        self,
        source: Transport,
        target: Transport,
        defaults: Optional[TransferOptions] = None,
        options: Optional[dict[str, TransferOptions]] = None,
        reserved_prefix: str = "directus_",
        cancel: Optional[CancellationToken] = None,
        quiet: bool = False,
        flow_mapping: Optional[FlowMapping] = None,
    ):
        self.source = source
        self.target = target
        self.defaults = defaults or TransferOptions()
        self.options = options or {}
        self.reserved_prefix = reserved_prefix
        self.cancel = cancel or CancellationToken()
        self.quiet = quiet
        self.flow_mapping = flow_mapping or FlowMapping()

    @classmethod
    def from_config(
        cls, config: MigrationConfig, cancel: Optional[CancellationToken] = None
    ) -> "MigrationOrchestrator":
        return cls(
            source=get_transport(config.source),
            target=get_transport(config.target),
            defaults=config.defaults,
            options=config.options,
            reserved_prefix=config.reserved_prefix,
            cancel=cancel,
            flow_mapping=config.flow_mapping,
        )

    def options_for(self, entity_type: str) -> TransferOptions:
        return self.options.get(entity_type, self.defaults)

    def run(self, selection: MigrationSelection, previous: Optional[MigrationRun] = None) -> MigrationRun:
        """Execute the selection. Raises ConnectivityError or OrderingViolation.

        `previous` is an earlier run between the same instances. Its identifier
        maps let records created without preserved ids be found again.
        """
        run = MigrationRun(source_url=self.source.url, target_url=self.target.url)

        console.print("\n[bold]Checking connections...[/bold]")
        self.source.check_connection()
        self.target.check_connection()

        types = selection.entity_types()
        relations: list[dict] = []
        if selection.collections:
            fetched = self.source.fetch("relations")
            if not fetched.success:
                raise ConnectivityError(f"Could not read relations from source: {fetched.error}")
            relations = fetched.records

        specs = {name: get_spec(name, relations, self.reserved_prefix) for name in types}
        if selection.include_asset_dependencies:
            for added in self._add_asset_dependencies(specs, selection, run):
                specs[added] = get_spec(added)
                types.append(added)

        graph = type_graph(specs)
        analysis = self._plan(graph, types, selection.custom_order)
        run.order = analysis.order
        run.warnings.extend(analysis.warnings)
        if selection.use_batches:
            run.batches = group_into_batches(analysis.dependencies, analysis.order)
        else:
            run.batches = [list(analysis.order)]
        console.print(f"  [dim]Order: {' → '.join(run.order)}[/dim]")

        console.print("\n[bold]Reading target snapshots...[/bold]")
        snapshots = self._snapshots(specs, run)

        console.print("[bold]Reading source records...[/bold]")
        records = {name: self._source_records(specs[name], selection) for name in run.order}
        if "flows" in specs:
            self._prepare_flows(records, run)

        engine = TransferEngine(
            self.target, snapshots=snapshots, source=self.source, cancel=self.cancel, quiet=self.quiet
        )
        if previous is not None:
            self._seed_previous(engine, previous, run)

        try:
            for number, batch in enumerate(run.batches, start=1):
                if selection.use_batches:
                    console.print(f"\n[bold]Batch {number}: {', '.join(batch)}[/bold]")
                for name in batch:
                    console.print(f"\n[bold]Migrating {name} ({len(records[name])} record(s))...[/bold]")
                    result = engine.transfer(specs[name], records[name], self.options_for(name))
                    if selection.use_batches:
                        result.batch = number
                    run.per_type[name] = result
                    _print_counts(name, result)

            for name in run.order:
                if specs[name].deferred_references:
                    console.print(f"\n[bold]Linking {name}...[/bold]")
                    linked = engine.link_deferred(specs[name], records[name])
                    if linked.items:
                        run.per_type[f"{name} links"] = linked
                        _print_counts(f"{name} links", linked)
        except ConnectivityError as e:
            for name, partial in engine.results.items():
                run.per_type.setdefault(name, partial)
            run.error = str(e)
            run.cancelled = self.cancel.cancelled
            run.finished_at = datetime.now()
            console.print(f"\n[red]Run interrupted: {e}[/red]")
            raise RunInterrupted(str(e), run) from e

        run.cancelled = self.cancel.cancelled
        run.finished_at = datetime.now()
        return run

    def _prepare_flows(self, records: dict[str, list[dict]], run: MigrationRun) -> None:
        """Validate flow chains and rewrite operation options for the target."""
        operations = records.get("operations", [])
        validation = validate_flows(records.get("flows", []), operations, self.flow_mapping)
        for message in validation.errors + validation.warnings:
            console.print(f"  [yellow]{message}[/yellow]")
        run.warnings.extend(validation.errors + validation.warnings)
        if not self.flow_mapping.empty:
            records["operations"] = [transform_operation_options(o, self.flow_mapping) for o in operations]

    def _seed_previous(self, engine: TransferEngine, previous: MigrationRun, run: MigrationRun) -> None:
        if _same_url(previous.source_url, self.source.url) and _same_url(previous.target_url, self.target.url):
            for name, result in previous.per_type.items():
                if name == result.entity_type:
                    engine.seed(result, previous=True)
            return
        run.warnings.append(
            f"Previous run ({previous.source_url} → {previous.target_url}) is for other instances; ignored"
        )

    def _plan(
        self, graph: DependencyGraph, types: list[str], custom_order: Optional[list[str]]
    ) -> MigrationOrder:
        computed = calculate_order(graph, types)
        if not custom_order:
            return computed

        unknown = [name for name in custom_order if name not in graph]
        proposed = list(custom_order) + [name for name in computed.order if name not in custom_order]
        validation = validate_custom_order(graph, proposed)
        errors = [f"{name} is not part of this migration" for name in unknown] + validation.errors
        if errors:
            for error in errors:
                console.print(f"  [red]{error}[/red]")
            raise OrderingViolation(errors)

        computed.order = proposed
        return computed

    def _add_asset_dependencies(
        self, specs: dict[str, EntitySpec], selection: MigrationSelection, run: MigrationRun
    ) -> list[str]:
        """Pull in files/folders referenced by selected collections."""
        added: list[str] = []
        for name in selection.collections:
            for ref_type in specs[name].references.values():
                wanted = [ref_type] + (["folders"] if ref_type == "files" else [])
                for dependency in wanted:
                    if dependency in ("files", "folders") and dependency not in specs and dependency not in added:
                        added.append(dependency)
                        run.warnings.append(f"Auto-added {dependency} (required by {name})")
        return sorted(added, key=CANONICAL_ORDER.index)

    def _snapshots(self, specs: dict[str, EntitySpec], run: MigrationRun) -> dict[str, list[dict]]:
        """One read per type, covering selected types and every referenced type."""
        needed = list(specs)
        for spec in specs.values():
            for ref_type in spec.references.values():
                if ref_type not in needed:
                    needed.append(ref_type)

        snapshots: dict[str, list[dict]] = {}
        for name in needed:
            result = self.target.fetch(name)
            if result.success:
                snapshots[name] = result.records
                console.print(f"  [dim]{name}: {len(result.records)} existing[/dim]")
                continue
            required = name in specs and not specs[name].snapshot_optional
            if required:
                raise ConnectivityError(f"Could not read existing {name} from target: {result.error}")
            run.warnings.append(f"Could not read {name} from target ({result.error}); treating as empty")
            console.print(f"  [yellow]{name}: unreadable, treated as empty ({result.error})[/yellow]")
            snapshots[name] = []
        return snapshots

    def _source_records(self, spec: EntitySpec, selection: MigrationSelection) -> list[dict]:
        result = self.source.fetch(spec.name)
        if not result.success:
            if spec.snapshot_optional:
                console.print(f"  [yellow]{spec.name}: unreadable on source ({result.error})[/yellow]")
                return []
            raise ConnectivityError(f"Could not read {spec.name} from source: {result.error}")
        records = result.records
        if spec.name == "folders" and selection.folder_ids:
            records = with_ancestors(records, selection.folder_ids)
        console.print(f"  [dim]{spec.name}: {len(records)} to migrate[/dim]")
        return records


def type_graph(specs: dict[str, EntitySpec]) -> DependencyGraph:
    """Graph over entity types; self references (folder parents) are dropped."""
    graph = DependencyGraph()
    for name in specs:
        graph.add_node(name)
    for name, spec in specs.items():
        for ref_type in spec.references.values():
            if ref_type in specs:
                graph.add_edge(name, ref_type)
    return graph


def with_ancestors(folders: list[dict], selected_ids: list[str]) -> list[dict]:
    """Restrict folders to the selection plus every ancestor of it."""
    by_id = {str(f.get("id")): f for f in folders}
    keep: set[str] = set()
    for folder_id in selected_ids:
        current = by_id.get(str(folder_id))
        while current is not None and str(current.get("id")) not in keep:
            keep.add(str(current.get("id")))
            parent = current.get("parent")
            current = by_id.get(str(parent)) if parent is not None else None
    return [f for f in folders if str(f.get("id")) in keep]


def _print_counts(name: str, result: TransferResult) -> None:
    console.print(
        f"  {name}: [green]{result.success_count} ok[/green], "
        f"[red]{result.error_count} failed[/red], "
        f"[yellow]{result.skipped_count} skipped[/yellow]"
    )


def _same_url(a: str, b: str) -> bool:
    return (a or "").rstrip("/") == (b or "").rstrip("/")


def run_migration(
    config: MigrationConfig,
    cancel: Optional[CancellationToken] = None,
    previous: Optional[MigrationRun] = None,
) -> MigrationRun:
    """Build transports from `config` and run its selection."""
    orchestrator = MigrationOrchestrator.from_config(config, cancel=cancel)
    return orchestrator.run(config.selection, previous=previous)
