"""Entity transfer engine — idempotent upsert of one entity type into a target.

Each record is processed to a TransferItem on its own. Remote failures are
captured on the item and the loop moves on; only connectivity failures end
the batch, because every following write would fail the same way.
"""

from __future__ import annotations

import threading
from typing import Any, Iterable, Optional

from rich.console import Console

from dxmigrate.analysis.ordering import topological_order
from dxmigrate.errors import ConnectivityError, DirectusError, PrerequisiteMissingError
from dxmigrate.models.config import TransferOptions, UpdatePolicy
from dxmigrate.models.graph import DependencyGraph
from dxmigrate.models.transfer import TransferAction, TransferItem, TransferResult, TransferStatus
from dxmigrate.transfer.entities import ITEM_SYSTEM_FIELDS, EntitySpec
from dxmigrate.transport.base import Transport

console = Console()

CANCELLED = "cancelled"


class CancellationToken:
    """Cooperative cancellation flag, checked between records."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class TransferEngine:
    """Transfers entity types into one target, sharing state across types of a run.

    `snapshots` holds the target's existing records per type, fetched once by
    the caller and never modified here. `results` holds the result of every
    type transferred by this engine, registered before its first record is
    processed, so a run interrupted mid-type can still report what was written.

    Identifier maps come in two layers. Maps built in this run are trusted as
    they are. Maps seeded from an earlier run are used only where the mapped
    target record still exists in the snapshot.
    """

    def __init__(
        self,
        target: Transport,
        snapshots: Optional[dict[str, list[dict]]] = None,
        source: Optional[Transport] = None,
        cancel: Optional[CancellationToken] = None,
        quiet: bool = False,
    ):
        self.target = target
        self.source = source
        self.snapshots = snapshots if snapshots is not None else {}
        self.cancel = cancel or CancellationToken()
        self.quiet = quiet
        self.results: dict[str, TransferResult] = {}
        self._id_maps: dict[str, dict[str, Any]] = {}
        self._previous_maps: dict[str, dict[str, Any]] = {}
        self._snapshot_ids: dict[str, set[str]] = {}

    def transfer(
        self,
        spec: EntitySpec,
        records: Iterable[dict],
        options: Optional[TransferOptions] = None,
        snapshot: Optional[list[dict]] = None,
    ) -> TransferResult:
        options = options or TransferOptions()
        if snapshot is None:
            snapshot = self.snapshots.get(spec.name, [])
        by_id = {str(r[spec.id_field]): r for r in snapshot if r.get(spec.id_field) is not None}
        by_key = {}
        if spec.natural_key:
            for r in snapshot:
                by_key.setdefault(spec.key_of(r), r)

        ordered = dependency_sorted(spec, list(records))
        result = TransferResult(entity_type=spec.name)
        self.results[spec.name] = result
        id_map = self._id_maps.setdefault(spec.name, {})

        for index, record in enumerate(ordered):
            if self.cancel.cancelled:
                for rest in ordered[index:]:
                    result.items.append(_skipped(spec, rest, CANCELLED))
                console.print(f"  [yellow]{spec.name}: cancelled, {len(ordered) - index} record(s) not attempted[/yellow]")
                break

            item = self._capture(spec, record, lambda: self._transfer_one(spec, record, options, by_id, by_key))
            result.items.append(item)
            if item.status == TransferStatus.SUCCESS and item.target_id is not None:
                id_map[str(item.source_id)] = item.target_id
            self._print_item(spec, item)

        return result

    def link_deferred(self, spec: EntitySpec, records: Iterable[dict]) -> TransferResult:
        """Second pass: set fields pointing at a type transferred after `spec`.

        Only records transferred by this engine are linked. Records without a
        value in any deferred field need no write and produce no item.
        """
        result = TransferResult(entity_type=spec.name)
        own = self._id_maps.get(spec.name, {})

        for record in records:
            target_id = own.get(str(spec.record_id(record)))
            values = {f: _ref_value(record.get(f)) for f in spec.deferred_references}
            if target_id is None or all(v is None for v in values.values()):
                continue
            if self.cancel.cancelled:
                result.items.append(_skipped(spec, record, CANCELLED))
                continue

            item = self._capture(spec, record, lambda: self._link_one(spec, record, target_id, values))
            result.items.append(item)
            self._print_item(spec, item)

        return result

    def _capture(self, spec: EntitySpec, record: dict, work) -> TransferItem:
        try:
            return work()
        except ConnectivityError:
            raise
        except PrerequisiteMissingError as e:
            return _skipped(spec, record, str(e))
        except DirectusError as e:
            return TransferItem(
                source_id=spec.record_id(record),
                status=TransferStatus.ERROR,
                label=spec.label(record),
                detail=e.message,
                http_status=e.status,
            )
        except Exception as e:
            return TransferItem(
                source_id=spec.record_id(record),
                status=TransferStatus.ERROR,
                label=spec.label(record),
                detail=str(e),
            )

    def _transfer_one(
        self,
        spec: EntitySpec,
        record: dict,
        options: TransferOptions,
        by_id: dict[str, dict],
        by_key: dict[Any, dict],
    ) -> TransferItem:
        source_id = spec.record_id(record)
        label = spec.label(record)

        if options.skip_admin and spec.is_admin(record):
            return _skipped(spec, record, "admin access record")

        for field_name in spec.skip_when_set:
            if record.get(field_name) is not None:
                return _skipped(spec, record, f"{field_name} assignment not migrated")

        body = self._clean(spec, record)

        for field_name, ref_type in spec.references.items():
            ref_id = _ref_value(body.get(field_name))
            if ref_id is None:
                continue
            if options.skip_if_missing_prerequisite and not self.prerequisite_present(ref_type, ref_id):
                raise PrerequisiteMissingError(ref_type, ref_id)
            body[field_name] = self.map_id(ref_type, ref_id)

        existing = self._find_existing(spec, source_id, body, options, by_id, by_key)

        if existing is not None:
            target_id = existing[spec.id_field]
            if spec.immutable:
                return TransferItem(
                    source_id=source_id, target_id=target_id, status=TransferStatus.SUCCESS,
                    action=TransferAction.UNCHANGED, label=label,
                )
            payload = dict(body)
            if options.update_policy == UpdatePolicy.REPLACE:
                for key in existing:
                    if key not in payload and not self._protected(spec, key):
                        payload[key] = None
            self.target.update(spec.name, target_id, payload)
            return TransferItem(
                source_id=source_id, target_id=target_id, status=TransferStatus.SUCCESS,
                action=TransferAction.UPDATED, label=label,
            )

        payload = dict(body)
        if options.preserve_ids and source_id is not None:
            payload[spec.id_field] = source_id

        if spec.import_from_source:
            if self.source is None:
                raise ValueError(f"{spec.name} are imported from the source but no source transport was given")
            created = self.target.import_file(self.source.asset_url(source_id), payload)
        else:
            created = self.target.create(spec.name, payload)

        target_id = (created or {}).get(spec.id_field)
        if target_id is None and options.preserve_ids:
            target_id = source_id
        if target_id is None:
            raise ValueError("create succeeded but no identifier was returned")

        return TransferItem(
            source_id=source_id, target_id=target_id, status=TransferStatus.SUCCESS,
            action=TransferAction.CREATED, label=label,
        )

    def _link_one(self, spec: EntitySpec, record: dict, target_id: Any, values: dict[str, Any]) -> TransferItem:
        body = {}
        for field_name, ref_id in values.items():
            ref_type = spec.deferred_references[field_name]
            if ref_id is not None and not self.prerequisite_present(ref_type, ref_id):
                raise PrerequisiteMissingError(ref_type, ref_id)
            body[field_name] = None if ref_id is None else self.map_id(ref_type, ref_id)
        self.target.update(spec.name, target_id, body)
        return TransferItem(
            source_id=spec.record_id(record), target_id=target_id, status=TransferStatus.SUCCESS,
            action=TransferAction.UPDATED, label=spec.label(record),
        )

    def _find_existing(
        self,
        spec: EntitySpec,
        source_id: Any,
        body: dict,
        options: TransferOptions,
        by_id: dict[str, dict],
        by_key: dict[Any, dict],
    ) -> Optional[dict]:
        """Match by the previously mapped id, then the source id, then the natural key.

        The source id is tried when ids are preserved, and for types without a
        natural key, whose only identity is their id.
        """
        candidates = []
        if source_id is not None:
            previous = self._previous_maps.get(spec.name, {}).get(str(source_id))
            if previous is not None:
                candidates.append(previous)
            if options.preserve_ids or not spec.natural_key:
                candidates.append(source_id)

        for candidate in candidates:
            existing = by_id.get(str(candidate))
            if existing is not None:
                return existing
        if spec.natural_key:
            return by_key.get(spec.key_of(body))
        return None

    def prerequisite_present(self, entity_type: str, ref_id: Any) -> bool:
        """True if `ref_id` exists in the target snapshot or was transferred in this run."""
        key = str(ref_id)
        if key in self._id_maps.get(entity_type, {}):
            return True
        ids = self._target_ids(entity_type)
        if key in ids:
            return True
        previous = self._previous_maps.get(entity_type, {}).get(key)
        return previous is not None and str(previous) in ids

    def map_id(self, entity_type: str, source_id: Any) -> Any:
        key = str(source_id)
        current = self._id_maps.get(entity_type, {})
        if key in current:
            return current[key]
        previous = self._previous_maps.get(entity_type, {}).get(key)
        if previous is not None and str(previous) in self._target_ids(entity_type):
            return previous
        return source_id

    def seed(self, result: TransferResult, previous: bool = False) -> None:
        """Register identifiers of a type transferred outside this engine.

        With `previous`, the result comes from an earlier run and its mappings
        are checked against the snapshot before use.
        """
        maps = self._previous_maps if previous else self._id_maps
        maps[result.entity_type] = result.id_map()

    def _target_ids(self, entity_type: str) -> set[str]:
        ids = self._snapshot_ids.get(entity_type)
        if ids is None:
            ids = {str(r.get("id")) for r in self.snapshots.get(entity_type, [])}
            self._snapshot_ids[entity_type] = ids
        return ids

    def _clean(self, spec: EntitySpec, record: dict) -> dict:
        body = {
            k: v for k, v in record.items()
            if k != spec.id_field and k not in spec.strip_fields and k not in spec.deferred_references
        }
        for name in spec.nullable_fields:
            value = body.get(name)
            body[name] = None if value is None or value == "" else value
        return body

    def _protected(self, spec: EntitySpec, key: str) -> bool:
        return (
            key == spec.id_field
            or key in spec.strip_fields
            or key in spec.deferred_references
            or key in ITEM_SYSTEM_FIELDS
        )

    def _print_item(self, spec: EntitySpec, item: TransferItem) -> None:
        if self.quiet:
            return
        if item.status == TransferStatus.SUCCESS:
            console.print(f"  [dim]{spec.name} {item.label}: {item.action.value} → {item.target_id}[/dim]")
        elif item.status == TransferStatus.SKIPPED:
            console.print(f"  [yellow]{spec.name} {item.label}: skipped ({item.detail})[/yellow]")
        else:
            console.print(f"  [red]{spec.name} {item.label}: {item.detail}[/red]")


def transfer(
    spec: EntitySpec,
    records: Iterable[dict],
    target: Transport,
    snapshot: list[dict],
    options: Optional[TransferOptions] = None,
    snapshots: Optional[dict[str, list[dict]]] = None,
    prior: Optional[dict[str, TransferResult]] = None,
    source: Optional[Transport] = None,
    cancel: Optional[CancellationToken] = None,
    previous: Optional[dict[str, TransferResult]] = None,
) -> TransferResult:
    """Transfer one entity type with a throwaway engine.

    `prior` seeds the identifier maps with results of types transferred earlier
    in the same run; `previous` with results of an earlier run.
    """
    snapshots = dict(snapshots or {})
    snapshots.setdefault(spec.name, snapshot)
    engine = TransferEngine(target, snapshots=snapshots, source=source, cancel=cancel, quiet=True)
    for earlier in (prior or {}).values():
        engine.seed(earlier)
    for earlier in (previous or {}).values():
        engine.seed(earlier, previous=True)
    return engine.transfer(spec, records, options, snapshot=snapshot)


def dependency_sorted(spec: EntitySpec, records: list[dict]) -> list[dict]:
    """Order records so that self references (parent folders, next operations) come first."""
    if not spec.self_referencing:
        return records

    self_fields = [f for f, ref in spec.references.items() if ref == spec.name]
    by_id: dict[str, dict] = {}
    unkeyed: list[dict] = []
    for record in records:
        rid = spec.record_id(record)
        if rid is None:
            unkeyed.append(record)
        else:
            by_id.setdefault(str(rid), record)

    graph = DependencyGraph()
    for rid in by_id:
        graph.add_node(rid)
    for rid, record in by_id.items():
        for field_name in self_fields:
            parent = _ref_value(record.get(field_name))
            if parent is not None and str(parent) in by_id:
                graph.add_edge(rid, str(parent))

    return [by_id[rid] for rid in topological_order(graph, list(by_id))] + unkeyed


def _ref_value(value: Any) -> Any:
    if isinstance(value, dict):
        return value.get("id")
    return value


def _skipped(spec: EntitySpec, record: dict, reason: str) -> TransferItem:
    return TransferItem(
        source_id=spec.record_id(record),
        status=TransferStatus.SKIPPED,
        label=spec.label(record),
        detail=reason,
    )
