"""Pydantic models for transfer outcomes and run results."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, computed_field


class TransferStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class TransferAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class TransferItem(BaseModel):
    source_id: Any
    target_id: Any = None
    status: TransferStatus
    action: Optional[TransferAction] = None
    label: str = ""
    detail: Optional[str] = None
    http_status: Optional[int] = None

    model_config = {"frozen": True}


class TransferResult(BaseModel):
    entity_type: str
    items: list[TransferItem] = Field(default_factory=list)
    batch: Optional[int] = None

    @computed_field
    @property
    def success_count(self) -> int:
        return sum(1 for i in self.items if i.status == TransferStatus.SUCCESS)

    @computed_field
    @property
    def error_count(self) -> int:
        return sum(1 for i in self.items if i.status == TransferStatus.ERROR)

    @computed_field
    @property
    def skipped_count(self) -> int:
        return sum(1 for i in self.items if i.status == TransferStatus.SKIPPED)

    def id_map(self) -> dict[str, Any]:
        """Source id → target id for every successful item (keys as strings)."""
        return {
            str(i.source_id): i.target_id
            for i in self.items
            if i.status == TransferStatus.SUCCESS and i.target_id is not None
        }


class TypeSummary(BaseModel):
    success: int = 0
    error: int = 0
    skipped: int = 0


class MigrationRun(BaseModel):
    source_url: str = ""
    target_url: str = ""
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    order: list[str] = Field(default_factory=list)
    batches: list[list[str]] = Field(default_factory=list)
    per_type: dict[str, TransferResult] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    cancelled: bool = False
    error: Optional[str] = None

    @computed_field
    @property
    def summary(self) -> dict[str, TypeSummary]:
        out = {
            name: TypeSummary(
                success=r.success_count, error=r.error_count, skipped=r.skipped_count
            )
            for name, r in self.per_type.items()
        }
        out["total"] = TypeSummary(
            success=sum(s.success for s in out.values()),
            error=sum(s.error for s in out.values()),
            skipped=sum(s.skipped for s in out.values()),
        )
        return out

    @computed_field
    @property
    def succeeded(self) -> bool:
        return self.error is None and all(r.error_count == 0 for r in self.per_type.values())

    @computed_field
    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()
