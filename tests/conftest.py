"""Shared fixtures: an in-memory Directus double."""

from __future__ import annotations

from typing import Any, Optional

import pytest

from dxmigrate.errors import ConnectivityError, FetchError, RemoteWriteError
from dxmigrate.transport.base import Transport


class InMemoryTransport(Transport):
    """Records per entity type held in dicts; every write is logged in `calls`."""

    def __init__(
        self,
        url: str = "http://memory",
        data: Optional[dict[str, list[dict]]] = None,
        fail_reads: tuple[str, ...] = (),
        fail_writes: Optional[dict[str, set]] = None,
        unreachable: bool = False,
        assign_ids: bool = True,
    ):
        self.url = url
        self.data = {name: [dict(r) for r in records] for name, records in (data or {}).items()}
        self.fail_reads = set(fail_reads)
        self.fail_writes = fail_writes or {}
        self.unreachable = unreachable
        self.assign_ids = assign_ids
        self.calls: list[tuple[str, str, Any, dict]] = []
        self.on_write = None
        self._counter = 0

    def check_connection(self) -> dict:
        if self.unreachable:
            raise ConnectivityError(f"{self.url} unreachable")
        return {"directus": {"version": "test"}}

    def list(self, entity_type: str, params: Optional[dict[str, Any]] = None) -> list[dict]:
        if self.unreachable:
            raise ConnectivityError(f"{self.url} unreachable")
        if entity_type in self.fail_reads:
            raise FetchError("You don't have permission to access this.", status=403)
        return [dict(r) for r in self.data.get(entity_type, [])]

    def create(self, entity_type: str, body: dict[str, Any]) -> dict:
        self._check_write(entity_type, body)
        record = dict(body)
        if record.get("id") is None and self.assign_ids:
            self._counter += 1
            record["id"] = f"{entity_type}-new-{self._counter}"
        self.data.setdefault(entity_type, []).append(record)
        self.calls.append(("create", entity_type, record.get("id"), dict(body)))
        self._after_write()
        return dict(record)

    def update(self, entity_type: str, record_id: Any, body: dict[str, Any]) -> dict:
        self._check_write(entity_type, body)
        for record in self.data.get(entity_type, []):
            if str(record.get("id")) == str(record_id):
                record.update(body)
                self.calls.append(("update", entity_type, record_id, dict(body)))
                self._after_write()
                return dict(record)
        raise RemoteWriteError("Item not found", status=404)

    def import_file(self, url: str, metadata: dict[str, Any]) -> dict:
        record = self.create("files", metadata)
        self.calls[-1] = ("import", "files", record.get("id"), {"url": url, **metadata})
        return record

    def writes(self, method: Optional[str] = None) -> list[tuple[str, str, Any, dict]]:
        return [c for c in self.calls if method is None or c[0] == method]

    def _check_write(self, entity_type: str, body: dict) -> None:
        if self.unreachable:
            raise ConnectivityError(f"{self.url} unreachable")
        if body.get("name") in self.fail_writes.get(entity_type, set()):
            raise RemoteWriteError(
                f'Value for field "name" in collection "directus_{entity_type}" has to be unique.',
                status=400,
                details={"errors": [{"message": "RECORD_NOT_UNIQUE"}]},
            )

    def _after_write(self) -> None:
        if self.on_write is not None:
            self.on_write()


@pytest.fixture
def access_control_source() -> InMemoryTransport:
    return InMemoryTransport(
        url="http://source",
        data={
            "roles": [
                {"id": "r-admin", "name": "Administrator", "admin_access": True, "users": ["u1"], "policies": ["p-admin"]},
                {"id": "r-editor", "name": "Editor", "admin_access": False, "users": [], "policies": ["p-edit"]},
            ],
            "policies": [
                {"id": "p-admin", "name": "Admin", "admin_access": True, "app_access": True, "ip_access": "", "roles": ["r-admin"]},
                {"id": "p-edit", "name": "Edit content", "admin_access": False, "app_access": True, "ip_access": None, "permissions": [1, 2]},
            ],
            "permissions": [
                {"id": 1, "policy": "p-edit", "collection": "articles", "action": "read", "fields": ["*"], "permissions": {}, "validation": None},
                {"id": 2, "policy": "p-edit", "collection": "articles", "action": "update", "fields": ["title"], "permissions": {"status": {"_eq": "draft"}}},
                {"id": 3, "policy": "p-admin", "collection": "articles", "action": "delete"},
            ],
            "access": [
                {"id": "a1", "role": "r-admin", "policy": "p-admin", "user": None, "sort": 1},
                {"id": "a2", "role": "r-editor", "policy": "p-edit", "user": None, "sort": 1},
                {"id": "a3", "role": None, "policy": "p-edit", "user": "u7", "sort": 1},
            ],
        },
    )
