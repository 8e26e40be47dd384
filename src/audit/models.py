# src/audit/models.py — v1
"""Audit log entry, query and statistics models."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from planvault.core.models import utcnow


class AuditEntry(BaseModel):
    """One line of ``update-history.jsonl``.

    Operations and batch brackets share this schema; brackets use
    ``target="batch"`` and ``operation_type`` batch_start/batch_complete.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str
    timestamp: datetime = Field(default_factory=utcnow)
    plan_id: str
    operation_type: str
    target: str
    target_id: str | None = None
    actor: str = "unknown"
    before: Any = None
    after: Any = None
    success: bool = True
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def batch_id(self) -> str | None:
        return self.metadata.get("batchId")

    def to_line(self) -> str:
        return self.model_dump_json(by_alias=True)


class AuditQuery(BaseModel):
    """Filters for query_log; every field is optional."""

    model_config = ConfigDict(extra="forbid")

    start_date: datetime | None = None
    end_date: datetime | None = None
    operation_type: str | None = None
    target: str | None = None
    target_id: str | None = None
    success: bool | None = None
    batch_id: str | None = None
    offset: int = Field(default=0, ge=0)
    limit: int | None = Field(default=None, ge=1)

    @field_validator("start_date", "end_date")
    @classmethod
    def assume_utc(cls, value: datetime | None) -> datetime | None:  # noqa: N805
        # Entries are stamped in UTC; naive bounds are read the same way.
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def matches(self, entry: AuditEntry) -> bool:
        if self.start_date is not None and entry.timestamp < self.start_date:
            return False
        if self.end_date is not None and entry.timestamp > self.end_date:
            return False
        if self.operation_type is not None and entry.operation_type != self.operation_type:
            return False
        if self.target is not None and entry.target != self.target:
            return False
        if self.target_id is not None and entry.target_id != self.target_id:
            return False
        if self.success is not None and entry.success != self.success:
            return False
        if self.batch_id is not None and entry.batch_id != self.batch_id:
            return False
        return True


class LogStats(BaseModel):
    total_entries: int = 0
    successful: int = 0
    failed: int = 0
    by_operation_type: dict[str, int] = Field(default_factory=dict)
    by_target: dict[str, int] = Field(default_factory=dict)
    first_entry: datetime | None = None
    last_entry: datetime | None = None
    file_size_bytes: int = 0
    rotated_files: int = 0
