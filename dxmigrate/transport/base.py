"""Transport abstract base class."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from dxmigrate.errors import ConnectivityError, DirectusError


@dataclass
class FetchResult:
    """Result of a read. Failures are values so callers decide how fatal they are."""

    records: list[dict] = field(default_factory=list)
    success: bool = True
    error: str = ""
    status: Optional[int] = None


class Transport(ABC):
    """Remote instance seen as typed record collections.

    Authentication is resolved before the transport is handed to the core.
    """

    url: str = ""

    @abstractmethod
    def list(self, entity_type: str, params: Optional[dict[str, Any]] = None) -> list[dict]:
        """Return all records of `entity_type`, optionally filtered."""
        ...

    @abstractmethod
    def create(self, entity_type: str, body: dict[str, Any]) -> dict:
        """Create one record and return it as stored by the remote."""
        ...

    @abstractmethod
    def update(self, entity_type: str, record_id: Any, body: dict[str, Any]) -> dict:
        """Update one record in place and return it."""
        ...

    @abstractmethod
    def import_file(self, url: str, metadata: dict[str, Any]) -> dict:
        """Create a file by letting the remote download it from `url`."""
        ...

    def asset_url(self, file_id: Any) -> str:
        return f"{self.url}/assets/{file_id}"

    def check_connection(self) -> dict:
        """Raise ConnectivityError if the instance is unreachable."""
        return {}

    def fetch(self, entity_type: str, params: Optional[dict[str, Any]] = None) -> FetchResult:
        """`list` with remote errors captured. Connectivity errors still raise."""
        try:
            return FetchResult(records=self.list(entity_type, params))
        except ConnectivityError:
            raise
        except DirectusError as e:
            return FetchResult(success=False, error=e.message, status=e.status)
