"""Exception taxonomy for migration runs."""

from __future__ import annotations

from typing import Any, Optional


class MigrationError(Exception):
    """Base class for all dxmigrate errors."""


class ConnectivityError(MigrationError):
    """Source or target unreachable, or authentication rejected. Fatal to a run."""


class RunInterrupted(ConnectivityError):
    """Connectivity was lost after writes began. Carries the partial run."""

    def __init__(self, message: str, run: Any):
        super().__init__(message)
        self.run = run


class OrderingViolation(MigrationError):
    """A custom processing order places an entity before one of its prerequisites."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("Custom order violates dependencies: " + "; ".join(self.errors))


class PrerequisiteMissingError(MigrationError):
    """A record references a prerequisite that is absent from the target."""

    def __init__(self, entity_type: str, record_id: Any):
        self.entity_type = entity_type
        self.record_id = record_id
        super().__init__(f"prerequisite not present in target: {entity_type} {record_id}")


class DirectusError(MigrationError):
    """Error response returned by a remote instance."""

    def __init__(self, message: str, status: Optional[int] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.details = details


class FetchError(DirectusError):
    """A read request was rejected."""


class RemoteWriteError(DirectusError):
    """A create or update request was rejected by the target."""
